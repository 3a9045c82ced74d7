"""Services package for LoanLedger business logic.

This package contains the focused service classes the LoanEngine facade
delegates to.
"""

from .schedule_engine import ScheduleEngine
from .arrears_classifier import ArrearsClassifier, classify_days
from .repayment_matcher import MatchIndex, RepaymentMatcher
from .batch_allocator import BatchAllocator, allocate_overpayment
from .reconciliation_matcher import ReconciliationMatcher, StatementUpload, detect_columns
from .balance_calculator import BalanceRecalculator
from .loan_service import LoanService
from .transaction_manager import TransactionManager

__all__ = ['ScheduleEngine', 'ArrearsClassifier', 'classify_days', 'MatchIndex',
           'RepaymentMatcher', 'BatchAllocator', 'allocate_overpayment',
           'ReconciliationMatcher', 'StatementUpload', 'detect_columns',
           'BalanceRecalculator', 'LoanService', 'TransactionManager']
