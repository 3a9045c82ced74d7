"""Tests for arrears / DPD classification and portfolio risk."""
import unittest
from datetime import date, timedelta
from decimal import Decimal

from loanledger.config import STATUS_COMPLETED
from loanledger.data_structures import Loan, Transaction
from loanledger.services.arrears_classifier import ArrearsClassifier, classify_days


def make_loan(loan_id=1, outstanding="12000.00", status="active"):
    # Installment 1 falls due 2024-02-15, installment 2 on 2024-03-15, ...
    return Loan(id=loan_id, principal=Decimal("12000.00"), interest_rate=Decimal("0"),
                tenor_months=12, moratorium_months=0, disbursement_date=date(2024, 1, 15),
                monthly_emi=Decimal("1000.00"), total_expected=Decimal("12000.00"),
                outstanding_balance=Decimal(outstanding), status=status)


def paid(loan_id, *months):
    return [Transaction(id=i, beneficiary_id=loan_id, amount=Decimal("1000.00"),
                        reference=f"RRR-{loan_id}-{m}", date_paid=date(2024, 2, 1), month_for=m)
            for i, m in enumerate(months, start=1)]


class TestClassifyDays(unittest.TestCase):

    def test_bucket_thresholds(self):
        cases = {0: "Current", 1: "Delinquent", 29: "Delinquent", 30: "PAR30", 59: "PAR30",
                 60: "PAR60", 89: "PAR60", 90: "PAR90", 119: "PAR90", 120: "PAR120",
                 179: "PAR120", 180: "PAR180", 400: "PAR180"}
        for days, label in cases.items():
            self.assertEqual(classify_days(days), label, days)


class TestEvaluate(unittest.TestCase):

    def setUp(self):
        self.classifier = ArrearsClassifier()
        self.loan = make_loan()

    def test_before_first_due_date_is_current(self):
        state = self.classifier.evaluate(self.loan, [], date(2024, 2, 1))
        self.assertEqual(state.classification, "Current")
        self.assertEqual(state.months_due, 0)
        self.assertIsNone(state.first_unpaid_month)

    def test_due_date_itself_is_day_zero(self):
        state = self.classifier.evaluate(self.loan, [], date(2024, 2, 15))
        self.assertEqual(state.days_overdue, 0)
        self.assertEqual(state.classification, "Current")
        self.assertEqual(state.months_due, 1)
        # Overdue includes the month due today, arrears does not
        self.assertEqual(state.overdue_months, 1)
        self.assertEqual(state.months_in_arrears, 0)
        self.assertEqual(state.arrears_amount, Decimal("0.00"))

    def test_day_after_due_date(self):
        state = self.classifier.evaluate(self.loan, [], date(2024, 2, 16))
        self.assertEqual(state.days_overdue, 1)
        self.assertEqual(state.classification, "Delinquent")
        self.assertEqual(state.months_in_arrears, 1)
        self.assertEqual(state.arrears_amount, Decimal("1000.00"))
        self.assertEqual(state.loan_health, "delinquent")

    def test_par30(self):
        # 2024 is a leap year: 15 Feb -> 16 Mar is 30 days
        state = self.classifier.evaluate(self.loan, [], date(2024, 3, 16))
        self.assertEqual(state.days_overdue, 30)
        self.assertEqual(state.classification, "PAR30")
        self.assertFalse(state.is_npl)

    def test_npl_at_ninety_days(self):
        state = self.classifier.evaluate(self.loan, [], date(2024, 5, 15))
        self.assertEqual(state.days_overdue, 90)
        self.assertEqual(state.classification, "PAR90")
        self.assertTrue(state.is_npl)
        self.assertEqual(state.loan_health, "npl")
        self.assertEqual(state.months_in_arrears, 3)
        self.assertEqual(state.overdue_months, 4)
        self.assertEqual(state.overdue_amount, Decimal("4000.00"))

    def test_paying_earliest_month_moves_the_clock(self):
        state = self.classifier.evaluate(self.loan, paid(1, 1), date(2024, 5, 15))
        self.assertEqual(state.first_unpaid_month, 2)
        self.assertEqual(state.first_unpaid_due_date, date(2024, 3, 15))
        self.assertEqual(state.days_overdue, 61)
        self.assertEqual(state.classification, "PAR60")

    def test_partial_payment_counts_month_as_paid(self):
        txs = paid(1, 1)
        txs[0].amount = Decimal("1.00")
        state = self.classifier.evaluate(self.loan, txs, date(2024, 2, 20))
        self.assertEqual(state.classification, "Current")
        self.assertEqual(state.months_paid, 1)

    def test_other_beneficiaries_transactions_ignored(self):
        state = self.classifier.evaluate(self.loan, paid(2, 1), date(2024, 2, 20))
        self.assertEqual(state.first_unpaid_month, 1)

    def test_months_due_capped_at_tenor(self):
        state = self.classifier.evaluate(self.loan, [], date(2030, 1, 1))
        self.assertEqual(state.months_due, 12)
        self.assertEqual(state.classification, "PAR180")

    def test_days_overdue_non_decreasing(self):
        txs = paid(1, 1, 2)
        previous = 0
        day = date(2024, 1, 1)
        while day < date(2025, 6, 1):
            days = self.classifier.evaluate(self.loan, txs, day).days_overdue
            self.assertGreaterEqual(days, previous)
            previous = days
            day += timedelta(days=7)

    def test_fully_repaid_overrides_arrears(self):
        for loan in (make_loan(outstanding="0.00"), make_loan(status=STATUS_COMPLETED)):
            state = self.classifier.evaluate(loan, [], date(2025, 1, 1))
            self.assertEqual(state.classification, "Fully Repaid")
            self.assertEqual(state.days_overdue, 0)
            self.assertEqual(state.arrears_amount, Decimal("0.00"))
            self.assertFalse(state.is_npl)

    def test_configurable_npl_threshold(self):
        classifier = ArrearsClassifier(npl_threshold_days=30)
        state = classifier.evaluate(self.loan, [], date(2024, 3, 16))
        self.assertTrue(state.is_npl)


class TestPortfolio(unittest.TestCase):

    def setUp(self):
        self.classifier = ArrearsClassifier()

    def test_npl_ratio_and_par(self):
        npl_loan = make_loan(1, outstanding="6000.00")
        current_loan = make_loan(2, outstanding="4000.00")
        done = make_loan(3, outstanding="0.00", status=STATUS_COMPLETED)
        as_of = date(2024, 5, 20)
        evaluations = [
            (npl_loan, self.classifier.evaluate(npl_loan, [], as_of)),
            (current_loan, self.classifier.evaluate(current_loan, paid(2, 1, 2, 3, 4), as_of)),
            (done, self.classifier.evaluate(done, [], as_of)),
        ]
        risk = self.classifier.summarize_portfolio(evaluations)

        self.assertEqual(risk.loan_count, 2)
        self.assertEqual(risk.total_outstanding, Decimal("10000.00"))
        self.assertEqual(risk.npl_count, 1)
        self.assertEqual(risk.npl_amount, Decimal("6000.00"))
        self.assertEqual(risk.npl_ratio, Decimal("60.00"))
        self.assertEqual(risk.par_counts["PAR30"], 1)
        self.assertEqual(risk.par_amounts["PAR90"], Decimal("6000.00"))
        self.assertEqual(risk.par_counts["PAR120"], 0)
        self.assertEqual(risk.max_days_overdue, 95)
        self.assertIsNone(risk.by_group)

    def test_grouped(self):
        a, b = make_loan(1, "6000.00"), make_loan(2, "4000.00")
        as_of = date(2024, 5, 20)
        evaluations = [(a, self.classifier.evaluate(a, [], as_of)),
                       (b, self.classifier.evaluate(b, [], as_of))]
        risk = self.classifier.summarize_portfolio(evaluations, groups={1: "Lagos", 2: "Kano"})

        frame = risk.by_group.set_index('group')
        self.assertEqual(list(frame.index), ["Kano", "Lagos"])
        self.assertEqual(frame.loc["Lagos", "npl_amount"], Decimal("6000.00"))
        self.assertEqual(frame.loc["Kano", "npl_ratio"], Decimal("100.00"))

    def test_empty_portfolio(self):
        risk = self.classifier.summarize_portfolio([])
        self.assertEqual(risk.npl_ratio, Decimal("0.00"))
        self.assertEqual(risk.loan_count, 0)


if __name__ == '__main__':
    unittest.main()
