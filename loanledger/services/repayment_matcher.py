"""Bulk repayment row matching for LoanLedger.

Each uploaded row is validated and resolved to a batch and a beneficiary
against a ``MatchIndex``: an immutable snapshot of batches and their
members taken once per upload. Matching never touches the database, so a
whole file resolves against one consistent view.
"""
import logging
import re
from dataclasses import dataclass
from types import MappingProxyType

from loanledger.exceptions import MatchError, ValidationError
from loanledger.result import ErrorType, Result

logger = logging.getLogger(__name__)


def _norm(value) -> str:
    """Lower-case and collapse whitespace for case-insensitive exact comparison."""
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip().lower()


def _joined(*parts) -> str:
    return _norm(" ".join(str(p) for p in parts if p))


@dataclass(frozen=True)
class MatchIndex:
    """Read-only lookup tables for one upload.

    Attributes:
        batches_by_code: Normalized batch code -> LoanBatch.
        batches_by_name: Normalized batch display name -> LoanBatch.
        members: Batch id -> tuple of Beneficiary.
    """
    batches_by_code: MappingProxyType
    batches_by_name: MappingProxyType
    members: MappingProxyType

    @classmethod
    def build(cls, batches, beneficiaries) -> 'MatchIndex':
        """Snapshot batches and beneficiaries into an index.

        Args:
            batches: Iterable of LoanBatch.
            beneficiaries: Iterable of Beneficiary.
        """
        by_code, by_name, members = {}, {}, {}
        for batch in batches:
            by_code.setdefault(_norm(batch.batch_code), batch)
            if batch.name:
                by_name.setdefault(_norm(batch.name), batch)
        for ben in beneficiaries:
            members.setdefault(ben.batch_id, []).append(ben)
        return cls(
            batches_by_code=MappingProxyType(by_code),
            batches_by_name=MappingProxyType(by_name),
            members=MappingProxyType({k: tuple(v) for k, v in members.items()}),
        )

    def find_batch(self, text):
        key = _norm(text)
        if not key:
            return None
        return self.batches_by_code.get(key) or self.batches_by_name.get(key)

    def members_of(self, batch_id):
        return self.members.get(batch_id, ())


class RepaymentMatcher:
    """Validates upload rows and resolves them to beneficiaries."""

    def __init__(self, index: MatchIndex):
        self.index = index

    def match(self, row, batch=None) -> Result:
        """Validate one row and resolve its beneficiary.

        Every problem on the row is collected; nothing short-circuits. The
        row itself is annotated with the match (or the errors) so the
        operator preview can show it either way.

        Args:
            row: RepaymentRow from the spreadsheet reader.
            batch: Fixed LoanBatch for single-batch uploads. When None the
                row's organisation column selects the batch.

        Returns:
            Result with the matched Beneficiary, or a failure carrying every error.
        """
        errors = self._validate(row, single_batch=batch is not None)

        if batch is None and row.organisation:
            batch = self.index.find_batch(row.organisation)
            if batch is None:
                errors.append(MatchError(f'Batch "{row.organisation}" not found',
                                         row_index=row.row_index, batch=row.organisation))

        beneficiary = None
        if batch is not None:
            row.batch_id = batch.id
            row.batch_code = batch.batch_code
            beneficiary = self.resolve_beneficiary(row, self.index.members_of(batch.id))
            if beneficiary is None:
                errors.append(MatchError("No matching beneficiary in batch",
                                         row_index=row.row_index, batch=batch.batch_code))

        if beneficiary is not None:
            row.beneficiary_id = beneficiary.id
            row.beneficiary_name = beneficiary.display_name
            row.monthly_emi = beneficiary.monthly_emi

        row.errors = errors
        if errors:
            error_type = ErrorType.VALIDATION if isinstance(errors[0], ValidationError) \
                else ErrorType.MATCH
            return Result.fail(errors, error_type)
        return Result.ok(beneficiary)

    def match_all(self, rows, batch=None):
        """Match every row; returns counts for the operator summary."""
        valid = 0
        for row in rows:
            if self.match(row, batch=batch):
                valid += 1
        summary = {'total': len(rows), 'valid': valid, 'invalid': len(rows) - valid}
        logger.info("Matched upload rows: %(valid)d valid, %(invalid)d invalid of %(total)d",
                    summary)
        return summary

    @staticmethod
    def _validate(row, single_batch=False):
        errors = []
        idx = row.row_index
        if not (row.name or row.surname or row.first_name):
            errors.append(ValidationError("Name is required", field="name", row_index=idx))
        if not single_batch and not row.organisation:
            errors.append(ValidationError("Organizations/Batch is required",
                                          field="organisation", row_index=idx))
        if not row.reference:
            errors.append(ValidationError("Remita Number is required",
                                          field="reference", row_index=idx))
        if row.payment_date is None:
            errors.append(ValidationError("Date on Remita Receipt is invalid",
                                          field="payment_date",
                                          value=row.raw.get('payment_date'), row_index=idx))
        if row.amount is None or row.amount <= 0:
            errors.append(ValidationError("Amount must be > 0", field="amount",
                                          value=row.raw.get('amount'), row_index=idx))
        raw_month = row.raw.get('month')
        if row.month is None and str(raw_month if raw_month is not None else "").strip():
            errors.append(ValidationError("Month of Payment must be a whole number", field="month",
                                          value=raw_month, row_index=idx))
        elif row.month is None or row.month < 1:
            errors.append(ValidationError("Month of Payment must be >= 1", field="month",
                                          value=row.raw.get('month'), row_index=idx))
        return errors

    @staticmethod
    def resolve_beneficiary(row, members):
        """First rule that hits wins: loan ref/employee id, NHF, full name, surname + first name."""
        loan_ref = _norm(row.loan_reference)
        if loan_ref:
            for ben in members:
                if loan_ref in (_norm(ben.loan_reference_number), _norm(ben.employee_id)):
                    return ben

        nhf = _norm(row.nhf_number)
        if nhf:
            for ben in members:
                if nhf == _norm(ben.nhf_number):
                    return ben

        full = _norm(row.name) or _joined(row.surname, row.first_name, row.other_name)
        if full:
            for ben in members:
                names = {_joined(ben.surname, ben.first_name, ben.other_name)}
                if ben.full_name:
                    names.add(_norm(ben.full_name))
                if full in names:
                    return ben

        surname, first = _norm(row.surname), _norm(row.first_name)
        if surname and first:
            for ben in members:
                if _norm(ben.surname) == surname and _norm(ben.first_name) == first:
                    return ben

        return None
