"""Business logic engine for LoanLedger.

This module provides the LoanEngine class, a facade over the focused
service classes in loanledger/services/.

Service Classes:
    - ScheduleEngine: amortization schedules and EMI
    - ArrearsClassifier: days past due, PAR buckets, NPL
    - RepaymentMatcher: upload row validation and beneficiary resolution
    - BatchAllocator: remittance groups and pro-rata allocation
    - ReconciliationMatcher: bank statement matching
    - BalanceRecalculator: cached loan aggregates and integrity check
    - LoanService / TransactionManager: lifecycle, manual entry, reversal
"""
import logging
from contextlib import contextmanager
from datetime import date
from pathlib import Path

from loanledger import spreadsheet
from loanledger.config import NPL_THRESHOLD_DAYS, SCHEDULE_ANNUITY, STATUS_COMPLETED
from loanledger.exceptions import (
    BatchNotFoundError,
    LoanNotFoundError,
    UploadInProgressError,
    ValidationError,
)
from loanledger.services import (
    ArrearsClassifier,
    BalanceRecalculator,
    BatchAllocator,
    LoanService,
    MatchIndex,
    ReconciliationMatcher,
    RepaymentMatcher,
    ScheduleEngine,
    TransactionManager,
)

logger = logging.getLogger(__name__)

GROUP_FIELDS = ('state', 'branch')


class LoanEngine:
    """Handles business logic, interfacing with DatabaseManager.

    Attributes:
        db: DatabaseManager instance for data persistence.
        schedule_engine: ScheduleEngine instance (lazy-loaded).
        arrears_classifier: ArrearsClassifier instance (lazy-loaded).
        balance_recalculator: BalanceRecalculator instance (lazy-loaded).
        loan_service: LoanService instance (lazy-loaded).
        transaction_manager: TransactionManager instance (lazy-loaded).
        batch_allocator: BatchAllocator instance (lazy-loaded).
        reconciliation_matcher: ReconciliationMatcher instance (lazy-loaded).
    """

    def __init__(self, db_manager, npl_threshold_days=NPL_THRESHOLD_DAYS):
        self.db = db_manager
        self.npl_threshold_days = npl_threshold_days
        self._schedule_engine = None
        self._arrears_classifier = None
        self._balance_recalculator = None
        self._loan_service = None
        self._transaction_manager = None
        self._batch_allocator = None
        self._reconciliation_matcher = None
        self._upload_in_progress = False

    @property
    def schedule_engine(self):
        """Lazy-load ScheduleEngine instance."""
        if self._schedule_engine is None:
            self._schedule_engine = ScheduleEngine()
        return self._schedule_engine

    @property
    def arrears_classifier(self):
        """Lazy-load ArrearsClassifier instance."""
        if self._arrears_classifier is None:
            self._arrears_classifier = ArrearsClassifier(self.schedule_engine,
                                                         self.npl_threshold_days)
        return self._arrears_classifier

    @property
    def balance_recalculator(self):
        """Lazy-load BalanceRecalculator instance."""
        if self._balance_recalculator is None:
            self._balance_recalculator = BalanceRecalculator(self.db)
        return self._balance_recalculator

    @property
    def loan_service(self):
        """Lazy-load LoanService instance."""
        if self._loan_service is None:
            self._loan_service = LoanService(self.db, self.schedule_engine)
        return self._loan_service

    @property
    def transaction_manager(self):
        """Lazy-load TransactionManager instance."""
        if self._transaction_manager is None:
            self._transaction_manager = TransactionManager(self.db, self.balance_recalculator)
        return self._transaction_manager

    @property
    def batch_allocator(self):
        """Lazy-load BatchAllocator instance."""
        if self._batch_allocator is None:
            self._batch_allocator = BatchAllocator(self.db, self.balance_recalculator)
        return self._batch_allocator

    @property
    def reconciliation_matcher(self):
        """Lazy-load ReconciliationMatcher instance."""
        if self._reconciliation_matcher is None:
            self._reconciliation_matcher = ReconciliationMatcher()
        return self._reconciliation_matcher

    @property
    def upload_in_progress(self) -> bool:
        """True while an upload is being parsed or committed."""
        return self._upload_in_progress

    @contextmanager
    def _upload(self):
        if self._upload_in_progress:
            raise UploadInProgressError()
        self._upload_in_progress = True
        try:
            yield
        finally:
            self._upload_in_progress = False

    # -------------------------------------------------------------------------
    # Batches and loans
    # -------------------------------------------------------------------------

    def create_batch(self, batch_code, name, state="", branch=""):
        return self.loan_service.create_batch(batch_code, name, state, branch)

    def close_batch(self, batch_id):
        return self.loan_service.close_batch(batch_id)

    def disburse_loan(self, principal, interest_rate, tenor_months, disbursement_date,
                      moratorium_months=0, batch_id=None, method=SCHEDULE_ANNUITY, **identity):
        """Create a beneficiary and disburse their loan.

        Delegates to LoanService.
        """
        return self.loan_service.disburse_loan(
            principal, interest_rate, tenor_months, disbursement_date,
            moratorium_months=moratorium_months, batch_id=batch_id, method=method, **identity
        )

    def mark_defaulted(self, beneficiary_id):
        return self.loan_service.mark_defaulted(beneficiary_id)

    def get_loan(self, beneficiary_id):
        loan = self.db.get_loan(beneficiary_id)
        if loan is None:
            raise LoanNotFoundError(beneficiary_id=beneficiary_id)
        return loan

    def get_schedule(self, beneficiary_id, method=None):
        """Schedule of a stored loan, by default in the method it was disbursed with."""
        loan = self.get_loan(beneficiary_id)
        return self.schedule_engine.generate(loan, method or loan.schedule_method)

    # -------------------------------------------------------------------------
    # Arrears and portfolio risk
    # -------------------------------------------------------------------------

    def evaluate_arrears(self, beneficiary_id, as_of=None):
        loan = self.get_loan(beneficiary_id)
        transactions = self.db.get_transactions(beneficiary_id=loan.id)
        return self.arrears_classifier.evaluate(loan, transactions, as_of or date.today())

    def portfolio_risk(self, as_of=None, group_by=None):
        """NPL ratio and PAR exposure over all open loans.

        Args:
            as_of: Evaluation date (defaults to today).
            group_by: None, "state" or "branch".

        Returns:
            PortfolioRisk.
        """
        if group_by is not None and group_by not in GROUP_FIELDS:
            raise ValidationError(f"Cannot group portfolio by '{group_by}'", field="group_by",
                                  value=group_by)
        as_of = as_of or date.today()

        by_beneficiary = {}
        for tx in self.db.get_transactions():
            by_beneficiary.setdefault(tx.beneficiary_id, []).append(tx)

        evaluations = []
        for loan in self.db.get_loans():
            if loan.status == STATUS_COMPLETED:
                continue
            state = self.arrears_classifier.evaluate(loan, by_beneficiary.get(loan.id, []), as_of)
            evaluations.append((loan, state))

        groups = None
        if group_by:
            groups = {b.id: getattr(b, group_by) for b in self.db.get_beneficiaries()}
        return self.arrears_classifier.summarize_portfolio(evaluations, groups)

    # -------------------------------------------------------------------------
    # Bulk repayment upload
    # -------------------------------------------------------------------------

    def build_match_index(self, batch_id=None):
        """Snapshot batches and beneficiaries for one upload."""
        if batch_id is not None:
            batch = self.db.get_batch(batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id=batch_id)
            return MatchIndex.build([batch], self.db.get_beneficiaries(batch_id=batch.id))
        return MatchIndex.build(self.db.get_batches(), self.db.get_beneficiaries())

    def parse_repayment_upload(self, path, batch_id=None):
        """Read an upload file and match every row.

        Args:
            path: Spreadsheet path (.xlsx/.xls/.csv).
            batch_id: Fixed batch for the single-batch shape; None for multi-batch.

        Returns:
            List of RepaymentRow, each annotated with its match or its errors.
        """
        with self._upload():
            rows = spreadsheet.read_repayment_rows(path)
            index = self.build_match_index(batch_id)
            batch = self.db.get_batch(batch_id) if batch_id is not None else None
            RepaymentMatcher(index).match_all(rows, batch=batch)
            return rows

    def submit_repayment_upload(self, rows, source_name=""):
        """Commit the valid rows of a parsed upload. Invalid rows are left out."""
        with self._upload():
            valid = [r for r in rows if r.valid]
            logger.info("Submitting %d of %d upload rows from %s", len(valid), len(rows),
                        source_name or "upload")
            return self.batch_allocator.commit(valid, source_name=source_name)

    def upload_repayments(self, path, batch_id=None):
        """Parse and commit an upload file in one call."""
        rows = self.parse_repayment_upload(path, batch_id)
        return rows, self.submit_repayment_upload(rows, source_name=Path(path).name)

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def load_statement(self, path):
        return spreadsheet.load_statement(path)

    def reconcile_statement(self, statement):
        """Reconcile a loaded statement (or a list of StatementRows) against the ledger."""
        return self.reconciliation_matcher.reconcile(
            statement,
            self.db.get_transactions(),
            self.db.get_batch_repayments(),
        )

    # -------------------------------------------------------------------------
    # Manual entry, reversal, integrity
    # -------------------------------------------------------------------------

    def record_repayment(self, beneficiary_id, amount, reference, date_paid, month_for, notes=""):
        return self.transaction_manager.record_repayment(
            beneficiary_id, amount, reference, date_paid, month_for, notes
        )

    def reverse_transactions(self, transaction_ids):
        return self.transaction_manager.reverse_transactions(transaction_ids)

    def reverse_batch_repayment(self, repayment_id):
        return self.transaction_manager.reverse_batch_repayment(repayment_id)

    def integrity_check(self, auto_fix=False):
        return self.balance_recalculator.integrity_check(auto_fix=auto_fix)
