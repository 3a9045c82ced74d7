"""Transaction management service for LoanLedger.

This service handles manual repayment entry and the reversal path. Ledger
rows are immutable once written; the only way to change them is to delete
them here, which also refreshes the affected loans' cached aggregates.
"""
import logging

from loanledger.data_structures import Transaction
from loanledger.dates import to_date
from loanledger.exceptions import (
    DuplicateReferenceError,
    LoanLedgerError,
    LoanNotFoundError,
    ValidationError,
)
from loanledger.money import to_money

logger = logging.getLogger(__name__)


class TransactionManager:
    """Handles manual transaction entry and reversal."""

    def __init__(self, db_manager, balance_recalculator):
        """Initialize TransactionManager.

        Args:
            db_manager: DatabaseManager instance.
            balance_recalculator: BalanceRecalculator instance for triggering updates.
        """
        self.db = db_manager
        self.balance_recalculator = balance_recalculator

    def record_repayment(self, beneficiary_id, amount, reference, date_paid, month_for, notes=""):
        """Record a single manual repayment.

        Args:
            beneficiary_id: ID of the paying beneficiary.
            amount: Amount paid (> 0).
            reference: Remittance reference, unique across both ledgers.
            date_paid: Payment date (date or ISO string).
            month_for: Installment month the payment covers (>= 1).
            notes: Optional free text.

        Returns:
            The written Transaction.

        Raises:
            ValidationError: For a bad amount, month, date or reference.
            LoanNotFoundError: If the beneficiary does not exist.
            DuplicateReferenceError: If the reference is already recorded.
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Amount must be > 0", field="amount", value=amount)
        if not isinstance(month_for, int) or month_for < 1:
            raise ValidationError("Month of Payment must be >= 1", field="month", value=month_for)
        reference = (reference or "").strip()
        if not reference:
            raise ValidationError("Remita Number is required", field="reference")
        try:
            paid_on = to_date(date_paid)
        except ValueError:
            raise ValidationError("Payment date is invalid", field="date_paid", value=date_paid)

        if self.db.get_loan(beneficiary_id) is None:
            raise LoanNotFoundError(beneficiary_id=beneficiary_id)
        # Advisory: the storage constraint on batch_repayments is the hard guard
        if self.db.reference_exists(reference):
            raise DuplicateReferenceError(reference)

        tx = Transaction(
            id=None,
            beneficiary_id=beneficiary_id,
            amount=amount,
            reference=reference,
            date_paid=paid_on,
            month_for=month_for,
            notes=notes,
        )
        tx.id = self.db.add_transaction(tx)
        self.balance_recalculator.recalculate_loan(beneficiary_id)
        logger.info("Recorded repayment %s of %s for beneficiary %s", reference, amount, beneficiary_id)
        return tx

    def reverse_transactions(self, transaction_ids):
        """Delete transactions by id and refresh every affected loan.

        Returns:
            Number of transactions removed.
        """
        txs = self.db.get_transactions_by_ids(transaction_ids)
        if not txs:
            return 0
        with self.db.transaction():
            removed = self.db.delete_transactions([t.id for t in txs])
        self.balance_recalculator.recalculate_loans(t.beneficiary_id for t in txs)
        logger.info("Reversed %d transactions", removed)
        return removed

    def reverse_batch_repayment(self, repayment_id):
        """Delete a remittance record with its member transactions.

        Raises:
            LoanLedgerError: If the record does not exist.
        """
        record = self.db.get_batch_repayment(repayment_id)
        if record is None:
            raise LoanLedgerError("Batch repayment not found", {'batch_repayment_id': repayment_id})

        members = self.db.get_transactions(batch_repayment_id=record.id)
        with self.db.transaction():
            self.db.delete_transactions([t.id for t in members])
            self.db.delete_batch_repayment(record.id)
        self.balance_recalculator.recalculate_loans(t.beneficiary_id for t in members)
        logger.info("Reversed batch repayment %s (%d member transactions)",
                    record.reference, len(members))
        return len(members)
