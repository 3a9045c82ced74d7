"""Loan lifecycle service for LoanLedger.

This service handles batch setup, loan disbursement and loan status changes.
"""
import logging
from decimal import Decimal, InvalidOperation

from loanledger.config import SCHEDULE_ANNUITY, STATUS_ACTIVE, STATUS_DEFAULTED
from loanledger.data_structures import Beneficiary, Loan
from loanledger.dates import to_date
from loanledger.exceptions import (
    BatchClosedError,
    BatchNotFoundError,
    LoanNotFoundError,
    ValidationError,
)
from loanledger.money import to_money
from loanledger.services.schedule_engine import ScheduleEngine

logger = logging.getLogger(__name__)

IDENTITY_FIELDS = (
    'title', 'surname', 'first_name', 'other_name', 'full_name', 'employee_id',
    'nhf_number', 'loan_reference_number', 'state', 'branch',
)


class LoanService:
    """Handles batch and loan lifecycle operations."""

    def __init__(self, db_manager, schedule_engine=None):
        """Initialize LoanService.

        Args:
            db_manager: DatabaseManager instance for data persistence.
            schedule_engine: ScheduleEngine for EMI and date derivation.
        """
        self.db = db_manager
        self.schedule_engine = schedule_engine or ScheduleEngine()

    def create_batch(self, batch_code, name, state="", branch=""):
        batch_code = (batch_code or "").strip()
        if not batch_code:
            raise ValidationError("Batch code is required", field="batch_code")
        if self.db.get_batches(batch_code=batch_code):
            raise ValidationError(f"Batch code '{batch_code}' already exists",
                                  field="batch_code", value=batch_code)
        batch_id = self.db.add_batch(batch_code, name or batch_code, state, branch)
        logger.info("Created batch %s (%s)", batch_code, batch_id)
        return self.db.get_batch(batch_id)

    def close_batch(self, batch_id):
        batch = self.db.get_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id=batch_id)
        self.db.update_batch_status(batch.id, "closed")
        batch.status = "closed"
        return batch

    def disburse_loan(self, principal, interest_rate, tenor_months, disbursement_date,
                      moratorium_months=0, batch_id=None, method=SCHEDULE_ANNUITY, **identity):
        """Create a beneficiary with a newly disbursed loan.

        EMI, commencement/termination dates and total expected are taken
        from the loan's schedule. The outstanding balance starts at the
        total expected.

        Args:
            principal: Amount disbursed.
            interest_rate: Annual rate in percent (6 means 6%).
            tenor_months: Number of installments (1-60).
            disbursement_date: Date (or ISO string) of disbursement.
            moratorium_months: Grace months before the first installment period.
            batch_id: Owning batch; must be active.
            method: Schedule method used for the stored figures.
            **identity: Beneficiary identity fields (surname, first_name, nhf_number, ...).

        Returns:
            The stored Loan (its id is the beneficiary id).
        """
        unknown = set(identity) - set(IDENTITY_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown beneficiary fields {sorted(unknown)}")
        if not (identity.get('surname') or identity.get('first_name') or identity.get('full_name')):
            raise ValidationError("Name is required", field="name")

        if batch_id is not None:
            batch = self.db.get_batch(batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id=batch_id)
            if batch.status != "active":
                raise BatchClosedError(batch.batch_code)
            identity.setdefault('state', batch.state)
            identity.setdefault('branch', batch.branch)

        try:
            rate = Decimal(str(interest_rate))
        except InvalidOperation:
            raise ValidationError("Interest rate must be numeric", field="interest_rate",
                                  value=interest_rate)
        try:
            disbursed_on = to_date(disbursement_date)
        except ValueError:
            raise ValidationError("Disbursement date is invalid", field="disbursement_date",
                                  value=disbursement_date)

        loan = Loan(
            id=None,
            principal=to_money(principal, field="principal"),
            interest_rate=rate,
            tenor_months=tenor_months,
            moratorium_months=moratorium_months,
            disbursement_date=disbursed_on,
            batch_id=batch_id,
            schedule_method=method,
        )
        summary = self.schedule_engine.summarize(loan, method)
        loan.commencement_date = summary.commencement_date
        loan.termination_date = summary.termination_date
        loan.monthly_emi = summary.monthly_emi
        loan.total_expected = summary.total_payment
        loan.outstanding_balance = summary.total_payment
        loan.status = STATUS_ACTIVE

        beneficiary = Beneficiary(id=None, batch_id=batch_id, monthly_emi=loan.monthly_emi,
                                  **{k: v or "" for k, v in identity.items()})
        loan.id = self.db.add_beneficiary(beneficiary, loan)
        logger.info("Disbursed %s to beneficiary %s (EMI %s over %d months)",
                    loan.principal, loan.id, loan.monthly_emi, loan.tenor_months)
        return loan

    def mark_defaulted(self, beneficiary_id):
        loan = self.db.get_loan(beneficiary_id)
        if loan is None:
            raise LoanNotFoundError(beneficiary_id=beneficiary_id)
        self.db.update_loan_status(loan.id, STATUS_DEFAULTED)
        loan.status = STATUS_DEFAULTED
        return loan
