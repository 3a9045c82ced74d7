"""Arrears and days-past-due classification for LoanLedger.

One convention throughout: days overdue are counted in whole calendar days
from the due date of the earliest unpaid installment, and the due date
itself is day 0. A month counts as paid once any transaction names it in
``month_for``, whatever the amount.
"""
import logging
from decimal import Decimal

import pandas as pd

from loanledger.config import (
    CLASS_CURRENT,
    CLASS_DELINQUENT,
    CLASS_FULLY_REPAID,
    HEALTH_COMPLETED,
    HEALTH_DELINQUENT,
    HEALTH_NPL,
    HEALTH_PERFORMING,
    NPL_THRESHOLD_DAYS,
    PAR_BUCKETS,
    STATUS_COMPLETED,
)
from loanledger.data_structures import ArrearsState, PortfolioRisk
from loanledger.dates import days_between
from loanledger.money import ZERO, money_sum, round_money
from loanledger.services.schedule_engine import ScheduleEngine

logger = logging.getLogger(__name__)


def classify_days(days_overdue: int) -> str:
    """Bucket label for a days-past-due figure."""
    if days_overdue <= 0:
        return CLASS_CURRENT
    for threshold, label in PAR_BUCKETS:
        if days_overdue >= threshold:
            return label
    return CLASS_DELINQUENT


class ArrearsClassifier:
    """Evaluates one loan's arrears position and aggregates portfolio risk."""

    def __init__(self, schedule_engine=None, npl_threshold_days=NPL_THRESHOLD_DAYS):
        """Initialize ArrearsClassifier.

        Args:
            schedule_engine: ScheduleEngine supplying due dates.
            npl_threshold_days: Days past due from which a loan is non-performing.
        """
        self.schedule_engine = schedule_engine or ScheduleEngine()
        self.npl_threshold_days = npl_threshold_days

    def evaluate(self, loan, transactions, as_of) -> ArrearsState:
        """Arrears state of a loan as of a date.

        Args:
            loan: Loan with terms and cached aggregates.
            transactions: The loan's ledger (others are ignored).
            as_of: Evaluation date.

        Returns:
            ArrearsState.
        """
        paid_months = {
            t.month_for for t in transactions
            if t.month_for and (loan.id is None or t.beneficiary_id == loan.id)
        }

        if loan.status == STATUS_COMPLETED or loan.outstanding_balance <= 0:
            return ArrearsState(
                classification=CLASS_FULLY_REPAID,
                months_paid=len(paid_months),
                loan_health=HEALTH_COMPLETED,
            )

        due_dates = self.schedule_engine.due_dates(loan)
        months_due = sum(1 for d in due_dates if d <= as_of)
        unpaid = [m for m in range(1, months_due + 1) if m not in paid_months]

        if not unpaid:
            return ArrearsState(
                classification=CLASS_CURRENT,
                months_due=months_due,
                months_paid=len(paid_months),
            )

        first_unpaid = unpaid[0]
        first_due = due_dates[first_unpaid - 1]
        days_overdue = max(0, days_between(first_due, as_of))
        months_in_arrears = sum(1 for m in unpaid if due_dates[m - 1] < as_of)
        emi = loan.monthly_emi
        is_npl = days_overdue >= self.npl_threshold_days

        if is_npl:
            health = HEALTH_NPL
        elif days_overdue > 0:
            health = HEALTH_DELINQUENT
        else:
            health = HEALTH_PERFORMING

        return ArrearsState(
            classification=classify_days(days_overdue),
            days_overdue=days_overdue,
            months_due=months_due,
            months_paid=len(paid_months),
            months_in_arrears=months_in_arrears,
            arrears_amount=round_money(emi * months_in_arrears),
            overdue_months=len(unpaid),
            overdue_amount=round_money(emi * len(unpaid)),
            first_unpaid_month=first_unpaid,
            first_unpaid_due_date=first_due,
            is_npl=is_npl,
            loan_health=health,
        )

    def summarize_portfolio(self, evaluations, groups=None) -> PortfolioRisk:
        """Aggregate NPL and PAR figures over evaluated loans.

        Completed loans are left out of every figure, including the NPL
        ratio denominator.

        Args:
            evaluations: Iterable of (Loan, ArrearsState) pairs.
            groups: Optional mapping of loan id -> group label (state or branch).
                When given, ``by_group`` holds a per-group DataFrame.

        Returns:
            PortfolioRisk.
        """
        records = []
        for loan, state in evaluations:
            if loan.status == STATUS_COMPLETED or state.classification == CLASS_FULLY_REPAID:
                continue
            records.append({
                'loan_id': loan.id,
                'outstanding': loan.outstanding_balance,
                'days_overdue': state.days_overdue,
                'is_npl': state.is_npl,
                'group': (groups or {}).get(loan.id, "") or "Unassigned",
            })

        total = money_sum(r['outstanding'] for r in records)
        npl = [r for r in records if r['is_npl']]
        npl_amount = money_sum(r['outstanding'] for r in npl)

        par_counts, par_amounts = {}, {}
        for threshold, label in sorted(PAR_BUCKETS):
            at_risk = [r for r in records if r['days_overdue'] >= threshold]
            par_counts[label] = len(at_risk)
            par_amounts[label] = money_sum(r['outstanding'] for r in at_risk)

        by_group = None
        if groups is not None:
            by_group = self._group_frame(records)

        risk = PortfolioRisk(
            loan_count=len(records),
            total_outstanding=total,
            npl_count=len(npl),
            npl_amount=npl_amount,
            npl_ratio=_ratio(npl_amount, total),
            par_counts=par_counts,
            par_amounts=par_amounts,
            max_days_overdue=max((r['days_overdue'] for r in records), default=0),
            by_group=by_group,
        )
        logger.info("Portfolio: %d loans, NPL %d (%s%%)",
                    risk.loan_count, risk.npl_count, risk.npl_ratio)
        return risk

    @staticmethod
    def _group_frame(records):
        columns = ['group', 'loan_count', 'outstanding', 'npl_count', 'npl_amount', 'npl_ratio']
        if not records:
            return pd.DataFrame(columns=columns)
        df = pd.DataFrame(records)
        df['npl_amount'] = [o if n else ZERO for o, n in zip(df['outstanding'], df['is_npl'])]
        grouped = df.groupby('group', sort=True)
        out = pd.DataFrame({
            'loan_count': grouped['loan_id'].count(),
            'outstanding': grouped['outstanding'].agg(lambda s: money_sum(s)),
            'npl_count': grouped['is_npl'].sum().astype(int),
            'npl_amount': grouped['npl_amount'].agg(lambda s: money_sum(s)),
        }).reset_index()
        out['npl_ratio'] = [_ratio(a, t) for a, t in zip(out['npl_amount'], out['outstanding'])]
        return out[columns]


def _ratio(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return ZERO
    return round_money(part / whole * 100)
