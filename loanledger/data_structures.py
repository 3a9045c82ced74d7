from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Dict, Any, Optional

import pandas as pd

from loanledger.config import SCHEDULE_ANNUITY, STATUS_ACTIVE, STATUS_COMPLETED

ZERO = Decimal("0.00")


@dataclass
class Loan:
    """Loan terms plus the cached ledger aggregates.

    ``id`` is the beneficiary id: a beneficiary carries exactly one loan.
    """
    id: Optional[int]
    principal: Decimal
    interest_rate: Decimal
    tenor_months: int
    moratorium_months: int
    disbursement_date: Optional[date]
    commencement_date: Optional[date] = None
    termination_date: Optional[date] = None
    monthly_emi: Decimal = ZERO
    total_expected: Decimal = ZERO
    total_paid: Decimal = ZERO
    outstanding_balance: Decimal = ZERO
    status: str = STATUS_ACTIVE
    batch_id: Optional[int] = None
    schedule_method: str = SCHEDULE_ANNUITY

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED


@dataclass
class Beneficiary:
    """Borrower identity as seen by the upload matcher."""
    id: int
    batch_id: Optional[int]
    surname: str = ""
    first_name: str = ""
    other_name: str = ""
    title: str = ""
    full_name: str = ""
    employee_id: str = ""
    nhf_number: str = ""
    loan_reference_number: str = ""
    state: str = ""
    branch: str = ""
    monthly_emi: Decimal = ZERO

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        parts = [self.surname, self.first_name, self.other_name]
        return " ".join(p for p in parts if p)


@dataclass
class ScheduleEntry:
    month: int
    entry_type: str
    due_date: date
    opening_balance: Decimal
    principal: Decimal
    interest: Decimal
    payment: Decimal
    closing_balance: Decimal
    days: Optional[int] = None


@dataclass
class LoanSummary:
    monthly_emi: Decimal
    total_interest: Decimal
    total_payment: Decimal
    commencement_date: date
    termination_date: date
    schedule: List[ScheduleEntry]


@dataclass
class Transaction:
    id: Optional[int]
    beneficiary_id: int
    amount: Decimal
    reference: str
    date_paid: Optional[date]
    month_for: int
    notes: str = ""
    batch_repayment_id: Optional[int] = None


@dataclass
class LoanBatch:
    id: Optional[int]
    batch_code: str
    name: str
    state: str = ""
    branch: str = ""
    status: str = "active"


@dataclass
class BatchRepayment:
    """One remittance covering several beneficiaries of a batch."""
    id: Optional[int]
    batch_id: int
    month_for: int
    expected_amount: Decimal
    actual_amount: Decimal
    reference: str
    payment_date: Optional[date]
    notes: str = ""


@dataclass
class RepaymentRow:
    """One parsed upload row and the outcome of matching it."""
    row_index: int
    reference: str = ""
    payment_date: Optional[date] = None
    amount: Optional[Decimal] = None
    month: Optional[int] = None
    title: str = ""
    surname: str = ""
    first_name: str = ""
    other_name: str = ""
    name: str = ""
    organisation: str = ""
    nhf_number: str = ""
    loan_reference: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)
    # Filled in by the matcher
    beneficiary_id: Optional[int] = None
    beneficiary_name: str = ""
    batch_id: Optional[int] = None
    batch_code: str = ""
    monthly_emi: Decimal = ZERO
    errors: List[Exception] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors and self.beneficiary_id is not None

    @property
    def error_messages(self) -> List[str]:
        return [getattr(e, 'message', str(e)) for e in self.errors]


@dataclass
class ArrearsState:
    classification: str
    days_overdue: int = 0
    months_due: int = 0
    months_paid: int = 0
    months_in_arrears: int = 0
    arrears_amount: Decimal = ZERO
    overdue_months: int = 0
    overdue_amount: Decimal = ZERO
    first_unpaid_month: Optional[int] = None
    first_unpaid_due_date: Optional[date] = None
    is_npl: bool = False
    loan_health: str = "performing"


@dataclass
class PortfolioRisk:
    loan_count: int
    total_outstanding: Decimal
    npl_count: int
    npl_amount: Decimal
    npl_ratio: Decimal
    par_counts: Dict[str, int]
    par_amounts: Dict[str, Decimal]
    max_days_overdue: int = 0
    by_group: Optional[pd.DataFrame] = None


@dataclass
class FailedGroup:
    batch_id: Optional[int]
    reference: str
    row_count: int
    error: Exception


@dataclass
class CommitReport:
    batch_repayments: List[BatchRepayment] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    success_count: int = 0
    error_count: int = 0
    failures: List[FailedGroup] = field(default_factory=list)
    # Loans written to but whose cached aggregates could not be refreshed
    stale_loans: List[int] = field(default_factory=list)


@dataclass
class StatementColumns:
    """Header bound to each statement field (None when not found)."""
    reference: Optional[str] = None
    amount: Optional[str] = None
    name: Optional[str] = None
    receipt: Optional[str] = None


@dataclass
class StatementRow:
    row_index: int
    reference: str
    amount: Decimal
    name: str = ""
    receipt_url: str = ""


@dataclass
class ReconciliationResult:
    row: StatementRow
    match_type: str
    ledger_amount: Optional[Decimal] = None
    variance: Optional[Decimal] = None
    source: Optional[str] = None


@dataclass
class ReconciliationStats:
    total_rows: int = 0
    exact_count: int = 0
    mismatch_count: int = 0
    unmatched_count: int = 0
    exact_value: Decimal = ZERO
    mismatch_value: Decimal = ZERO
    unmatched_value: Decimal = ZERO
    total_external_value: Decimal = ZERO
    matched_value: Decimal = ZERO


@dataclass
class ReconciliationReport:
    results: List[ReconciliationResult]
    stats: ReconciliationStats

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([
            {
                'row': r.row.row_index,
                'reference': r.row.reference,
                'name': r.row.name,
                'statement_amount': r.row.amount,
                'ledger_amount': r.ledger_amount,
                'variance': r.variance,
                'match_type': r.match_type,
                'source': r.source,
                'receipt_url': r.row.receipt_url,
            }
            for r in self.results
        ])


@dataclass
class IntegrityReport:
    loan_count: int
    system_total_paid: Decimal
    verified_total_paid: Decimal
    discrepancies: List[Dict[str, Any]] = field(default_factory=list)
    fixed_count: int = 0

    @property
    def has_discrepancies(self) -> bool:
        return bool(self.discrepancies)
