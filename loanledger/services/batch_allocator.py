"""Commit matched upload rows as remittance records and member transactions.

Rows are grouped by (batch, remittance reference): one reference is one
remittance event for one batch. Groups are written strictly in order, each
one on its own, so a later group's duplicate check sees every earlier group
of the same run and a failure never undoes work already committed.
"""
import logging
from collections import OrderedDict
from decimal import Decimal

from loanledger.config import MONEY_TOLERANCE
from loanledger.data_structures import (
    BatchRepayment,
    CommitReport,
    FailedGroup,
    Transaction,
)
from loanledger.exceptions import DuplicateReferenceError, StorageError
from loanledger.money import ZERO, money_sum, round_money

logger = logging.getLogger(__name__)


def allocate_overpayment(emis, variance: Decimal, expected_total: Decimal):
    """Split an overpayment across members in proportion to their EMI.

    Each member gets EMI + round(variance * EMI / expected_total, 2). Shares
    are rounded independently, so the total may differ from the remitted
    amount by up to a cent per member.

    Args:
        emis: Member EMIs in row order.
        variance: Amount paid above expected_total.
        expected_total: Sum of the EMIs.

    Returns:
        List of allocated amounts in the same order.
    """
    return [emi + round_money(variance * emi / expected_total) for emi in emis]


def _group_key(row):
    return row.batch_id, row.reference.strip().lower()


class BatchAllocator:
    """Writes remittance groups to the ledger with per-group failure isolation."""

    def __init__(self, db_manager, balance_recalculator=None):
        """Initialize BatchAllocator.

        Args:
            db_manager: DatabaseManager instance.
            balance_recalculator: BalanceRecalculator refreshed after each group.
        """
        self.db = db_manager
        self.balance_recalculator = balance_recalculator

    @staticmethod
    def group_rows(rows):
        """Valid rows grouped by (batch id, reference) in order of first appearance."""
        groups = OrderedDict()
        for row in rows:
            if not row.valid:
                continue
            groups.setdefault(_group_key(row), []).append(row)
        return groups

    def commit(self, valid_rows, source_name="") -> CommitReport:
        """Persist matched rows.

        Args:
            valid_rows: RepaymentRows that matched (invalid rows are skipped).
            source_name: Upload file name recorded in the remittance notes.

        Returns:
            CommitReport with the written records and success/error counts.
        """
        report = CommitReport()
        for (batch_id, _), rows in self.group_rows(valid_rows).items():
            self._commit_group(batch_id, rows, source_name, report)

        logger.info("Upload committed: %d transactions, %d errors, %d failed groups",
                    report.success_count, report.error_count, len(report.failures))
        return report

    def _commit_group(self, batch_id, rows, source_name, report):
        reference = rows[0].reference.strip()

        try:
            duplicate = self.db.reference_exists(reference)
        except StorageError as e:
            logger.error("Duplicate check for %s failed: %s", reference, e)
            report.failures.append(FailedGroup(batch_id, reference, len(rows), e))
            report.error_count += len(rows)
            return
        if duplicate:
            err = DuplicateReferenceError(reference, row_count=len(rows))
            logger.warning("Skipping group: %s", err)
            report.failures.append(FailedGroup(batch_id, reference, len(rows), err))
            report.error_count += len(rows)
            return

        expected_total = money_sum(row.monthly_emi for row in rows)
        actual_total = money_sum(row.amount for row in rows)
        variance = actual_total - expected_total
        overpaid = variance > MONEY_TOLERANCE and expected_total > ZERO

        if overpaid:
            allocations = allocate_overpayment([row.monthly_emi for row in rows],
                                               variance, expected_total)
        else:
            allocations = [row.amount for row in rows]

        notes = f"Bulk upload from {source_name}" if source_name else "Bulk upload"
        if overpaid:
            notes += (f"; overpayment of {variance} distributed pro-rata across "
                      f"{len(rows)} beneficiaries")

        record = BatchRepayment(
            id=None,
            batch_id=batch_id,
            month_for=rows[0].month,
            expected_amount=expected_total,
            actual_amount=actual_total,
            reference=reference,
            payment_date=rows[0].payment_date,
            notes=notes,
        )
        try:
            record.id = self.db.add_batch_repayment(record)
        except StorageError as e:
            logger.error("Remittance record for %s failed: %s", reference, e)
            report.failures.append(FailedGroup(batch_id, reference, len(rows), e))
            report.error_count += len(rows)
            return
        report.batch_repayments.append(record)

        tx_notes = f"Batch repayment {reference}"
        if overpaid:
            tx_notes += " (includes pro-rata share of overpayment)"

        txs = [
            Transaction(
                id=None,
                beneficiary_id=row.beneficiary_id,
                amount=amount,
                reference=reference,
                date_paid=row.payment_date,
                month_for=row.month,
                notes=tx_notes,
                batch_repayment_id=record.id,
            )
            for row, amount in zip(rows, allocations)
        ]
        try:
            with self.db.transaction():
                self.db.bulk_insert_transactions(txs)
        except StorageError as e:
            logger.warning("Bulk insert under %s failed (%s), writing members one by one",
                           reference, e)
            written = self._insert_each(txs, batch_id, reference, report)
        else:
            stored = self.db.get_transactions(batch_repayment_id=record.id)
            for tx, saved in zip(txs, stored):
                tx.id = saved.id
            written = txs

        report.transactions.extend(written)
        report.success_count += len(written)
        affected = {tx.beneficiary_id for tx in written}

        if self.balance_recalculator is not None and affected:
            # Written rows stay; integrity_check(auto_fix=True) repairs the aggregates
            try:
                self.balance_recalculator.recalculate_loans(affected)
            except StorageError as e:
                logger.error("Recalculation after %s failed: %s", reference, e)
                report.stale_loans.extend(sorted(affected))

    def _insert_each(self, txs, batch_id, reference, report):
        """Write member transactions one at a time so a failure stays with its member."""
        written = []
        for tx in txs:
            try:
                tx.id = self.db.add_transaction(tx)
            except StorageError as e:
                logger.error("Transaction for beneficiary %s under %s failed: %s",
                             tx.beneficiary_id, reference, e)
                report.failures.append(FailedGroup(batch_id, reference, 1, e))
                report.error_count += 1
                continue
            written.append(tx)
        return written
