"""Tests for the SQLite storage layer."""
import unittest
from datetime import date
from decimal import Decimal

from loanledger.data_structures import BatchRepayment, Beneficiary, Loan, Transaction
from loanledger.database import DatabaseManager
from loanledger.exceptions import StorageError


class TestDatabase(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.batch_id = self.db.add_batch("BATCH-A", "Lagos Civil Service", "Lagos", "Ikeja")
        loan = Loan(id=None, principal=Decimal("12000.00"), interest_rate=Decimal("0"),
                    tenor_months=12, moratorium_months=0, disbursement_date=date(2024, 1, 15),
                    monthly_emi=Decimal("1000.00"), total_expected=Decimal("12000.00"),
                    outstanding_balance=Decimal("12000.00"))
        self.ben_id = self.db.add_beneficiary(
            Beneficiary(id=None, batch_id=self.batch_id, surname="Ade", first_name="Bola",
                        nhf_number="NHF-1", monthly_emi=Decimal("1000.00")),
            loan)

    def tearDown(self):
        self.db.close()

    def add_tx(self, reference, amount="1000.00", repayment_id=None):
        return self.db.add_transaction(Transaction(
            id=None, beneficiary_id=self.ben_id, amount=Decimal(amount), reference=reference,
            date_paid=date(2024, 2, 15), month_for=1, batch_repayment_id=repayment_id))

    def add_record(self, reference):
        return self.db.add_batch_repayment(BatchRepayment(
            id=None, batch_id=self.batch_id, month_for=1, expected_amount=Decimal("1000.00"),
            actual_amount=Decimal("1000.00"), reference=reference, payment_date=date(2024, 2, 15)))

    def test_money_round_trips_as_decimal(self):
        self.add_tx("RRR-1", "1234.56")
        tx = self.db.get_transactions()[0]
        self.assertEqual(tx.amount, Decimal("1234.56"))
        self.assertEqual(tx.date_paid, date(2024, 2, 15))
        loan = self.db.get_loan(self.ben_id)
        self.assertEqual(loan.monthly_emi, Decimal("1000.00"))
        self.assertEqual(loan.disbursement_date, date(2024, 1, 15))

    def test_reference_exists_across_both_ledgers(self):
        self.add_tx("RRR-1")
        self.add_record("RRR-2")
        self.assertTrue(self.db.reference_exists("rrr-1"))
        self.assertTrue(self.db.reference_exists(" RRR-2 "))
        self.assertFalse(self.db.reference_exists("RRR-3"))

    def test_remittance_reference_unique(self):
        self.add_record("RRR-9")
        with self.assertRaises(StorageError):
            self.add_record("rrr-9")

    def test_batch_code_unique(self):
        with self.assertRaises(StorageError):
            self.db.add_batch("batch-a", "Duplicate")

    def test_exact_match_filters(self):
        other = self.db.add_batch("BATCH-B", "Kano Teachers")
        self.assertEqual(len(self.db.get_beneficiaries(batch_id=self.batch_id)), 1)
        self.assertEqual(self.db.get_beneficiaries(batch_id=other), [])
        self.assertEqual(self.db.get_batches(batch_code="BATCH-B")[0].id, other)
        with self.assertRaises(StorageError):
            self.db.get_transactions(amount="1000.00")

    def test_bulk_insert_and_delete_by_ids(self):
        self.db.bulk_insert_transactions([
            Transaction(id=None, beneficiary_id=self.ben_id, amount=Decimal("100.00"),
                        reference=f"RRR-{i}", date_paid=date(2024, 2, 1), month_for=i)
            for i in range(1, 4)
        ])
        ids = [t.id for t in self.db.get_transactions()]
        self.assertEqual(len(ids), 3)
        self.assertEqual(self.db.delete_transactions(ids[:2]), 2)
        self.assertEqual([t.id for t in self.db.get_transactions()], ids[2:])
        self.assertEqual(self.db.delete_transactions([]), 0)

    def test_transaction_rolls_back(self):
        with self.assertRaises(RuntimeError):
            with self.db.transaction():
                self.add_tx("RRR-1")
                raise RuntimeError("abort")
        self.assertEqual(self.db.get_transactions(), [])

    def test_update_aggregates(self):
        self.db.update_loan_aggregates(self.ben_id, Decimal("12000.00"), Decimal("0.00"), "completed")
        loan = self.db.get_loan(self.ben_id)
        self.assertEqual(loan.status, "completed")
        self.assertTrue(loan.is_completed)
        self.assertEqual(loan.outstanding_balance, Decimal("0.00"))

    def test_context_manager_closes(self):
        with DatabaseManager(":memory:") as db:
            pass
        self.assertTrue(db._closed)


if __name__ == '__main__':
    unittest.main()
