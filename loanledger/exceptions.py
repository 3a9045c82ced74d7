"""Custom exceptions for the LoanLedger engine."""


class LoanLedgerError(Exception):
    """Base exception for all LoanLedger errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ValidationError(LoanLedgerError):
    """Raised (or collected on an upload row) when an input value is invalid."""

    def __init__(self, message: str, field: str = None, value=None, row_index: int = None):
        details = {}
        if field:
            details['field'] = field
        if value is not None:
            details['value'] = value
        if row_index is not None:
            details['row'] = row_index
        super().__init__(message, details)
        self.field = field


class MatchError(LoanLedgerError):
    """Collected on an upload row when no batch or beneficiary matches it."""

    def __init__(self, message: str, row_index: int = None, batch: str = None):
        details = {}
        if row_index is not None:
            details['row'] = row_index
        if batch:
            details['batch'] = batch
        super().__init__(message, details)


class DuplicateReferenceError(LoanLedgerError):
    """Raised when a remittance reference has already been recorded."""

    def __init__(self, reference: str, row_count: int = None):
        details = {'reference': reference}
        if row_count is not None:
            details['rows'] = row_count
        super().__init__(f"RRR {reference} already exists", details)
        self.reference = reference


class StorageError(LoanLedgerError):
    """Raised when a storage operation fails."""
    pass


class TransactionError(StorageError):
    """Raised when a database transaction fails to complete."""
    pass


class ReconciliationError(LoanLedgerError):
    """Raised when a statement cannot be reconciled at all."""
    pass


class SpreadsheetError(LoanLedgerError):
    """Raised when an upload file cannot be read."""

    def __init__(self, message: str, path: str = None):
        details = {'path': str(path)} if path else {}
        super().__init__(message, details)


class LoanNotFoundError(LoanLedgerError):
    """Raised when a loan cannot be found."""

    def __init__(self, beneficiary_id: int = None, reference: str = None):
        details = {}
        if beneficiary_id is not None:
            details['beneficiary_id'] = beneficiary_id
        if reference:
            details['loan_ref'] = reference

        message = "Loan not found"
        if reference:
            message = f"Loan '{reference}' not found"
        elif beneficiary_id is not None:
            message = f"Loan for beneficiary {beneficiary_id} not found"

        super().__init__(message, details)


class BatchNotFoundError(LoanLedgerError):
    """Raised when a loan batch cannot be found."""

    def __init__(self, batch_id: int = None, code: str = None):
        details = {}
        if batch_id is not None:
            details['batch_id'] = batch_id
        if code:
            details['batch'] = code

        message = "Batch not found"
        if code:
            message = f'Batch "{code}" not found'
        elif batch_id is not None:
            message = f"Batch with ID {batch_id} not found"

        super().__init__(message, details)


class BatchClosedError(LoanLedgerError):
    """Raised when an operation requires an active batch but the batch is closed."""

    def __init__(self, code: str):
        super().__init__(f"Batch '{code}' is closed", {'batch': code})


class UploadInProgressError(LoanLedgerError):
    """Raised when an upload is started while another one is running."""

    def __init__(self):
        super().__init__("An upload is already in progress")
