"""Tests for upload row validation and beneficiary resolution."""
import unittest
from datetime import date
from decimal import Decimal

from loanledger.data_structures import Beneficiary, LoanBatch, RepaymentRow
from loanledger.exceptions import MatchError, ValidationError
from loanledger.result import ErrorType
from loanledger.services.repayment_matcher import MatchIndex, RepaymentMatcher


def make_row(**fields):
    base = dict(row_index=2, reference="RRR-1", payment_date=date(2024, 3, 1),
                amount=Decimal("1000.00"), month=1, organisation="BATCH-A")
    base.update(fields)
    return RepaymentRow(**base)


class MatcherTestCase(unittest.TestCase):

    def setUp(self):
        self.batch_a = LoanBatch(id=1, batch_code="BATCH-A", name="Lagos Civil Service")
        self.batch_b = LoanBatch(id=2, batch_code="BATCH-B", name="Kano Teachers")
        self.ade = Beneficiary(id=10, batch_id=1, surname="Ade", first_name="Bola",
                               other_name="Kemi", loan_reference_number="LR-001",
                               nhf_number="NHF-10", monthly_emi=Decimal("1000.00"))
        self.musa = Beneficiary(id=11, batch_id=1, surname="Musa", first_name="Ibrahim",
                                employee_id="EMP-77", nhf_number="NHF-11",
                                monthly_emi=Decimal("500.00"))
        self.other_batch = Beneficiary(id=20, batch_id=2, surname="Ade", first_name="Bola",
                                       nhf_number="NHF-20")
        self.index = MatchIndex.build([self.batch_a, self.batch_b],
                                      [self.ade, self.musa, self.other_batch])
        self.matcher = RepaymentMatcher(self.index)


class TestValidation(MatcherTestCase):

    def test_all_errors_collected(self):
        row = RepaymentRow(row_index=5, raw={'amount': 'abc'})
        result = self.matcher.match(row)

        self.assertFalse(result)
        self.assertEqual(result.error_type, ErrorType.VALIDATION)
        self.assertEqual(row.error_messages, [
            "Name is required",
            "Organizations/Batch is required",
            "Remita Number is required",
            "Date on Remita Receipt is invalid",
            "Amount must be > 0",
            "Month of Payment must be >= 1",
        ])
        self.assertTrue(all(isinstance(e, ValidationError) for e in result.errors))
        self.assertEqual(result.errors[0].details['row'], 5)
        self.assertFalse(row.valid)

    def test_zero_amount_and_month(self):
        row = make_row(surname="Ade", first_name="Bola", amount=Decimal("0"), month=0)
        result = self.matcher.match(row)
        self.assertEqual(row.error_messages, ["Amount must be > 0", "Month of Payment must be >= 1"])
        # Beneficiary is still resolved for the operator preview
        self.assertEqual(row.beneficiary_id, 10)
        self.assertFalse(result)

    def test_fractional_or_text_month(self):
        for cell in ("3.5", "abc"):
            row = make_row(surname="Ade", first_name="Bola", month=None, raw={'month': cell})
            self.matcher.match(row)
            self.assertEqual(row.error_messages, ["Month of Payment must be a whole number"], cell)
            self.assertEqual(row.errors[0].details['value'], cell)

        row = make_row(surname="Ade", first_name="Bola", month=None, raw={'month': "  "})
        self.matcher.match(row)
        self.assertEqual(row.error_messages, ["Month of Payment must be >= 1"])

    def test_unknown_batch(self):
        row = make_row(surname="Ade", first_name="Bola", organisation="Nowhere")
        result = self.matcher.match(row)
        self.assertEqual(result.error_type, ErrorType.MATCH)
        self.assertIsInstance(result.errors[0], MatchError)
        self.assertEqual(result.error, 'Batch "Nowhere" not found')
        with self.assertRaises(MatchError):
            result.unwrap()

    def test_no_beneficiary_in_batch(self):
        row = make_row(surname="Nobody", first_name="Here")
        result = self.matcher.match(row)
        self.assertEqual(row.error_messages, ["No matching beneficiary in batch"])
        self.assertEqual(row.batch_id, 1)
        self.assertFalse(result)


class TestResolution(MatcherTestCase):

    def test_loan_reference_beats_name(self):
        """Loan ref points at Ade while the name fields point at Musa."""
        row = make_row(loan_reference="lr-001", surname="Musa", first_name="Ibrahim")
        result = self.matcher.match(row)
        self.assertTrue(result)
        self.assertEqual(result.value.id, 10)
        self.assertEqual(row.beneficiary_id, 10)
        self.assertEqual(row.monthly_emi, Decimal("1000.00"))

    def test_employee_id_satisfies_first_rule(self):
        row = make_row(loan_reference="emp-77", name="Someone Else")
        self.assertEqual(self.matcher.match(row).value.id, 11)

    def test_nhf_beats_name(self):
        row = make_row(nhf_number="nhf-11", surname="Ade", first_name="Bola")
        self.assertEqual(self.matcher.match(row).value.id, 11)

    def test_full_name_case_and_spacing(self):
        row = make_row(name="  ADE   bola kemi ")
        self.assertEqual(self.matcher.match(row).value.id, 10)

    def test_surname_and_first_name_fallback(self):
        row = make_row(surname="ade", first_name="BOLA", other_name="Wrong")
        self.assertEqual(self.matcher.match(row).value.id, 10)

    def test_batch_resolved_by_display_name(self):
        row = make_row(organisation="kano teachers", surname="Ade", first_name="Bola")
        result = self.matcher.match(row)
        self.assertEqual(result.value.id, 20)
        self.assertEqual(row.batch_code, "BATCH-B")

    def test_membership_limited_to_batch(self):
        row = make_row(nhf_number="NHF-20", name="x")
        self.assertFalse(self.matcher.match(row))

    def test_single_batch_shape(self):
        row = make_row(organisation="", name="Musa Ibrahim")
        result = self.matcher.match(row, batch=self.batch_a)
        self.assertTrue(result)
        self.assertEqual(result.value.id, 11)

    def test_rows_resolve_independently(self):
        rows = [make_row(row_index=2, name="Musa Ibrahim"),
                make_row(row_index=3, name="Musa Ibrahim", reference="RRR-2")]
        summary = self.matcher.match_all(rows)
        self.assertEqual(summary, {'total': 2, 'valid': 2, 'invalid': 0})
        self.assertEqual({r.beneficiary_id for r in rows}, {11})


class TestMatchIndex(MatcherTestCase):

    def test_index_is_read_only(self):
        with self.assertRaises(TypeError):
            self.index.batches_by_code["new"] = self.batch_a
        with self.assertRaises(AttributeError):
            self.index.members = {}
        self.assertIsInstance(self.index.members_of(1), tuple)

    def test_find_batch(self):
        self.assertEqual(self.index.find_batch(" batch-a "), self.batch_a)
        self.assertIsNone(self.index.find_batch(""))


if __name__ == '__main__':
    unittest.main()
