"""Balance calculation service for LoanLedger.

This service owns the cached loan aggregates (``total_paid``,
``outstanding_balance``, ``status``). They are a denormalization of the
payment ledger and are always recomputed wholesale from it, never patched
incrementally. It also runs the ledger integrity check.
"""
import logging
from decimal import Decimal

from loanledger.config import MONEY_TOLERANCE, STATUS_ACTIVE, STATUS_COMPLETED
from loanledger.data_structures import IntegrityReport
from loanledger.exceptions import LoanNotFoundError
from loanledger.money import ZERO, money_sum

logger = logging.getLogger(__name__)


class BalanceRecalculator:
    """Handles balance recalculation operations.

    Every mutating write to the ledger (upload commit, manual entry,
    reversal) ends with a call into this service for the affected loans.
    """

    def __init__(self, db_manager):
        """Initialize BalanceRecalculator.

        Args:
            db_manager: DatabaseManager instance for data persistence.
        """
        self.db = db_manager

    @staticmethod
    def derive_status(current_status, outstanding):
        if outstanding < MONEY_TOLERANCE:
            return STATUS_COMPLETED
        if current_status == STATUS_COMPLETED:
            return STATUS_ACTIVE
        return current_status

    def recalculate_loan(self, beneficiary_id):
        """Recompute total paid, outstanding balance and status from the ledger.

        Args:
            beneficiary_id: ID of the beneficiary whose loan to refresh.

        Returns:
            The refreshed Loan.

        Raises:
            LoanNotFoundError: If the beneficiary does not exist.
        """
        loan = self.db.get_loan(beneficiary_id)
        if loan is None:
            raise LoanNotFoundError(beneficiary_id=beneficiary_id)

        total_paid = money_sum(t.amount for t in self.db.get_transactions(beneficiary_id=loan.id))
        outstanding = max(ZERO, loan.total_expected - total_paid)
        status = self.derive_status(loan.status, outstanding)

        if status != loan.status:
            logger.info("Loan %s status %s -> %s", loan.id, loan.status, status)

        self.db.update_loan_aggregates(loan.id, total_paid, outstanding, status)
        loan.total_paid = total_paid
        loan.outstanding_balance = outstanding
        loan.status = status
        return loan

    def recalculate_loans(self, beneficiary_ids):
        return [self.recalculate_loan(i) for i in sorted(set(beneficiary_ids))]

    def integrity_check(self, auto_fix=False) -> IntegrityReport:
        """Compare cached aggregates against the ledger.

        A loan is flagged when its cached total paid differs from the sum of
        its transactions, or its cached outstanding balance differs from the
        one implied by that sum, by more than the money tolerance.

        Args:
            auto_fix: Recalculate every flagged loan.

        Returns:
            IntegrityReport with portfolio totals and per-loan discrepancies.
        """
        loans = self.db.get_loans_df()
        txs = self.db.get_transactions_df()

        if txs.empty:
            verified = {}
        else:
            txs['amount'] = txs['amount'].map(lambda v: Decimal(str(v)))
            verified = txs.groupby('beneficiary_id')['amount'].agg(lambda s: money_sum(s)).to_dict()

        discrepancies = []
        system_total = ZERO
        for rec in loans.to_dict('records'):
            cached_paid = Decimal(str(rec['total_paid']))
            cached_outstanding = Decimal(str(rec['outstanding_balance']))
            verified_paid = verified.get(rec['id'], ZERO)
            verified_outstanding = max(ZERO, Decimal(str(rec['total_expected'])) - verified_paid)
            system_total += cached_paid

            if abs(cached_paid - verified_paid) > MONEY_TOLERANCE or \
                    abs(cached_outstanding - verified_outstanding) > MONEY_TOLERANCE:
                discrepancies.append({
                    'beneficiary_id': int(rec['id']),
                    'system_total_paid': cached_paid,
                    'verified_total_paid': verified_paid,
                    'difference': cached_paid - verified_paid,
                    'cached_outstanding': cached_outstanding,
                    'verified_outstanding': verified_outstanding,
                })

        report = IntegrityReport(
            loan_count=len(loans),
            system_total_paid=system_total,
            verified_total_paid=money_sum(verified.values()),
            discrepancies=discrepancies,
        )

        if discrepancies:
            logger.warning("Integrity check found %d discrepancies", len(discrepancies))
            if auto_fix:
                self.recalculate_loans(d['beneficiary_id'] for d in discrepancies)
                report.fixed_count = len(discrepancies)
        return report
