"""Amortization schedule service for LoanLedger.

This service turns loan terms into the expected repayment path:
- Annuity schedules (fixed EMI, monthly-rate interest)
- Actual/365 schedules (day-count interest with moratorium capitalization)
- Derived figures: EMI, due dates, commencement/termination, totals

Schedules are pure projections of the loan terms. Nothing here reads the
payment ledger or the database.
"""
import logging
from decimal import Decimal, InvalidOperation

from loanledger.config import (
    DAYS_PER_YEAR,
    ENTRY_CAPITALIZATION,
    ENTRY_DISBURSEMENT,
    ENTRY_REPAYMENT,
    MAX_TENOR_MONTHS,
    MIN_TENOR_MONTHS,
    MONTHS_PER_YEAR,
    SCHEDULE_ACTUAL_365,
    SCHEDULE_ANNUITY,
    SCHEDULE_METHODS,
)
from loanledger.data_structures import LoanSummary, ScheduleEntry
from loanledger.dates import add_months, days_between
from loanledger.exceptions import ValidationError
from loanledger.money import ZERO, money_sum, round_money

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


class ScheduleEngine:
    """Generates amortization schedules from loan terms."""

    def validate(self, loan):
        """Check loan terms, raising ValidationError on the first bad value.

        Args:
            loan: Loan (or any object with the same term attributes).
        """
        try:
            principal = Decimal(str(loan.principal))
            rate = Decimal(str(loan.interest_rate))
        except (InvalidOperation, TypeError):
            raise ValidationError("Principal and rate must be numeric",
                                  field="principal", value=loan.principal)
        if principal <= 0:
            raise ValidationError("Principal must be > 0", field="principal", value=loan.principal)
        if rate < 0:
            raise ValidationError("Interest rate must be >= 0", field="interest_rate",
                                  value=loan.interest_rate)
        tenor = loan.tenor_months
        if not isinstance(tenor, int) or isinstance(tenor, bool) \
                or not MIN_TENOR_MONTHS <= tenor <= MAX_TENOR_MONTHS:
            raise ValidationError(
                f"Tenor must be between {MIN_TENOR_MONTHS} and {MAX_TENOR_MONTHS} months",
                field="tenor_months", value=tenor)
        moratorium = loan.moratorium_months
        if not isinstance(moratorium, int) or isinstance(moratorium, bool) or moratorium < 0:
            raise ValidationError("Moratorium must be >= 0 months", field="moratorium_months",
                                  value=moratorium)
        if loan.disbursement_date is None:
            raise ValidationError("Disbursement date is required", field="disbursement_date")

    @staticmethod
    def monthly_rate(loan) -> Decimal:
        return Decimal(str(loan.interest_rate)) / MONTHS_PER_YEAR / HUNDRED

    def monthly_emi(self, loan, principal=None) -> Decimal:
        """Equated monthly installment for the loan.

        EMI = P * r * (1+r)^n / ((1+r)^n - 1) with r = annual rate / 12 / 100.
        A zero rate falls back to straight-line P / n.

        Args:
            loan: Loan terms.
            principal: Balance to amortize instead of ``loan.principal``
                (the capitalized balance for Actual/365 schedules).

        Returns:
            EMI rounded to the cent.
        """
        self.validate(loan)
        p = Decimal(str(loan.principal if principal is None else principal))
        n = loan.tenor_months
        r = self.monthly_rate(loan)
        if r == 0:
            return round_money(p / n)
        factor = (1 + r) ** n
        return round_money(p * r * factor / (factor - 1))

    def commencement_date(self, loan):
        return add_months(loan.disbursement_date, loan.moratorium_months)

    def due_date(self, loan, month: int):
        """Due date of installment ``month`` (1-based).

        Anchored on the disbursement date so a day clamped in a short month
        (31 Jan -> 29 Feb) does not shift the following installments.
        """
        return add_months(loan.disbursement_date, loan.moratorium_months + month)

    def due_dates(self, loan):
        self.validate(loan)
        return [self.due_date(loan, i) for i in range(1, loan.tenor_months + 1)]

    def generate(self, loan, method=SCHEDULE_ANNUITY):
        """Build the expected schedule for a loan.

        Args:
            loan: Loan terms.
            method: "annuity" or "actual_365".

        Returns:
            List of ScheduleEntry in ascending due-date order.

        Raises:
            ValidationError: If the terms or the method are invalid.
        """
        self.validate(loan)
        if method not in SCHEDULE_METHODS:
            raise ValidationError(f"Unknown schedule method '{method}'", field="method", value=method)
        if method == SCHEDULE_ACTUAL_365:
            return self._generate_actual_365(loan)
        return self._generate_annuity(loan)

    def _generate_annuity(self, loan):
        emi = self.monthly_emi(loan)
        r = self.monthly_rate(loan)
        balance = round_money(Decimal(str(loan.principal)))
        entries = []

        for month in range(1, loan.tenor_months + 1):
            opening = balance
            interest = round_money(opening * r)
            if month == loan.tenor_months:
                # Last installment clears whatever rounding left behind
                principal = opening
                payment = principal + interest
            else:
                principal = min(emi - interest, opening)
                payment = emi
            balance = opening - principal
            entries.append(ScheduleEntry(
                month=month,
                entry_type=ENTRY_REPAYMENT,
                due_date=self.due_date(loan, month),
                opening_balance=opening,
                principal=principal,
                interest=interest,
                payment=payment,
                closing_balance=balance,
            ))

        return entries

    def _generate_actual_365(self, loan):
        daily = Decimal(str(loan.interest_rate)) / HUNDRED / DAYS_PER_YEAR
        balance = round_money(Decimal(str(loan.principal)))
        previous = loan.disbursement_date
        entries = [ScheduleEntry(
            month=0,
            entry_type=ENTRY_DISBURSEMENT,
            due_date=previous,
            opening_balance=ZERO,
            principal=balance,
            interest=ZERO,
            payment=ZERO,
            closing_balance=balance,
            days=0,
        )]

        for month in range(1, loan.moratorium_months + 1):
            current = add_months(loan.disbursement_date, month)
            days = days_between(previous, current)
            interest = round_money(balance * daily * days)
            opening = balance
            balance = opening + interest
            entries.append(ScheduleEntry(
                month=month,
                entry_type=ENTRY_CAPITALIZATION,
                due_date=current,
                opening_balance=opening,
                principal=ZERO,
                interest=interest,
                payment=ZERO,
                closing_balance=balance,
                days=days,
            ))
            previous = current

        payment = self.monthly_emi(loan, principal=balance)

        for month in range(1, loan.tenor_months + 1):
            current = self.due_date(loan, month)
            days = days_between(previous, current)
            opening = balance
            interest = round_money(opening * daily * days)
            if month == loan.tenor_months:
                principal = opening
                period_payment = principal + interest
            else:
                principal = min(max(payment - interest, ZERO), opening)
                period_payment = payment
            balance = opening - principal
            entries.append(ScheduleEntry(
                month=loan.moratorium_months + month,
                entry_type=ENTRY_REPAYMENT,
                due_date=current,
                opening_balance=opening,
                principal=principal,
                interest=interest,
                payment=period_payment,
                closing_balance=balance,
                days=days,
            ))
            previous = current

        return entries

    def summarize(self, loan, method=SCHEDULE_ANNUITY) -> LoanSummary:
        """Schedule plus the headline figures stored on the loan at disbursement."""
        schedule = self.generate(loan, method)
        repayments = [e for e in schedule if e.entry_type == ENTRY_REPAYMENT]
        total_payment = money_sum(e.payment for e in repayments)
        total_interest = total_payment - round_money(Decimal(str(loan.principal)))
        if method == SCHEDULE_ACTUAL_365:
            # Entry at index `moratorium` holds the balance after capitalization
            capitalized = schedule[loan.moratorium_months].closing_balance
            emi = self.monthly_emi(loan, principal=capitalized)
        else:
            emi = self.monthly_emi(loan)
        summary = LoanSummary(
            monthly_emi=emi,
            total_interest=total_interest,
            total_payment=total_payment,
            commencement_date=self.commencement_date(loan),
            termination_date=repayments[-1].due_date,
            schedule=schedule,
        )
        logger.debug("Schedule for loan %s: %d entries, total %s",
                     loan.id, len(schedule), total_payment)
        return summary
