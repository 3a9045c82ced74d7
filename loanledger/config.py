"""Centralized configuration for LoanLedger.

This module holds the business-rule constants shared by the schedule,
arrears, upload and reconciliation services, plus the environment-driven
runtime settings used by the command line entry point.
"""
import os
from dataclasses import dataclass
from decimal import Decimal

# =============================================================================
# LOAN TERMS
# =============================================================================

# Tenor bounds in months (inclusive)
MIN_TENOR_MONTHS = 1
MAX_TENOR_MONTHS = 60

# Months per year for the nominal monthly rate
MONTHS_PER_YEAR = 12

# Day-count basis for the Actual/365 method
DAYS_PER_YEAR = 365

# Supported schedule methods
SCHEDULE_ANNUITY = "annuity"
SCHEDULE_ACTUAL_365 = "actual_365"
SCHEDULE_METHODS = (SCHEDULE_ANNUITY, SCHEDULE_ACTUAL_365)

# Schedule entry types
ENTRY_DISBURSEMENT = "Disbursement"
ENTRY_CAPITALIZATION = "Interest Capitalization"
ENTRY_REPAYMENT = "Repayment"

# Loan status values
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_DEFAULTED = "defaulted"

# =============================================================================
# MONEY
# =============================================================================

# All amounts are quantized to this unit
CENT = Decimal("0.01")

# Amounts closer than this are treated as equal
MONEY_TOLERANCE = Decimal("0.01")

# =============================================================================
# ARREARS / PORTFOLIO AT RISK
# =============================================================================

# Days past due at which a loan becomes non-performing
NPL_THRESHOLD_DAYS = 90

# PAR buckets, highest first so the first hit wins
PAR_BUCKETS = (
    (180, "PAR180"),
    (120, "PAR120"),
    (90, "PAR90"),
    (60, "PAR60"),
    (30, "PAR30"),
)

CLASS_CURRENT = "Current"
CLASS_DELINQUENT = "Delinquent"
CLASS_FULLY_REPAID = "Fully Repaid"

HEALTH_PERFORMING = "performing"
HEALTH_DELINQUENT = "delinquent"
HEALTH_NPL = "npl"
HEALTH_COMPLETED = "completed"

# =============================================================================
# BULK REPAYMENT UPLOAD
# =============================================================================

UPLOAD_SINGLE_BATCH = "single"
UPLOAD_MULTI_BATCH = "multi"

# Normalized header text -> canonical row field
UPLOAD_HEADER_SYNONYMS = {
    "title": "title",
    "surname": "surname",
    "last name": "surname",
    "first name": "first_name",
    "firstname": "first_name",
    "other name": "other_name",
    "other names": "other_name",
    "middle name": "other_name",
    "names": "name",
    "name": "name",
    "full name": "name",
    "beneficiary name": "name",
    "organizations batch": "organisation",
    "organisations batch": "organisation",
    "organization batch": "organisation",
    "organisation batch": "organisation",
    "organizations": "organisation",
    "organisations": "organisation",
    "organization": "organisation",
    "organisation": "organisation",
    "batch": "organisation",
    "batch code": "organisation",
    "nhf number": "nhf_number",
    "nhf no": "nhf_number",
    "nhf": "nhf_number",
    "loan reference number": "loan_reference",
    "loan reference": "loan_reference",
    "loan ref no": "loan_reference",
    "loan ref": "loan_reference",
    "remita number": "reference",
    "remita rrr": "reference",
    "rrr": "reference",
    "rrr number": "reference",
    "remittance reference": "reference",
    "date on remita receipt": "payment_date",
    "date on receipt": "payment_date",
    "payment date": "payment_date",
    "date paid": "payment_date",
    "amount": "amount",
    "amount paid": "amount",
    "month of payment": "month",
    "month for": "month",
    "month": "month",
}

# Template headers written for each upload shape
UPLOAD_TEMPLATE_HEADERS = {
    UPLOAD_SINGLE_BATCH: [
        "Names", "NHF Number", "Loan Reference Number", "Remita Number",
        "Date on Remita Receipt", "Amount", "Month of Payment",
    ],
    UPLOAD_MULTI_BATCH: [
        "Title", "Surname", "First Name", "Other Name", "Organizations/Batch",
        "NHF Number", "Loan Reference Number", "Remita Number",
        "Date on Remita Receipt", "Amount", "Month of Payment",
    ],
}

# =============================================================================
# STATEMENT RECONCILIATION
# =============================================================================

# Substring patterns per statement field, strongest first
STATEMENT_COLUMN_PATTERNS = {
    "reference": ("rrr", "remita", "retrieval", "reference", "ref"),
    "amount": ("amount", "sum", "value", "paid", "credit"),
    "name": ("name", "beneficiary", "customer", "payer", "subscriber"),
    "receipt": ("receipt", "url", "link", "proof"),
}

MATCH_EXACT = "exact"
MATCH_AMOUNT_MISMATCH = "amount_mismatch"
MATCH_UNMATCHED = "unmatched"

# =============================================================================
# DATES
# =============================================================================

# Date format for storage (ISO 8601)
DATE_FORMAT_STORAGE = "%Y-%m-%d"

# Day-first formats accepted from spreadsheets, tried in order
SPREADSHEET_DATE_FORMATS = (
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
)

# Excel serial day zero (accounts for the 1900 leap-year bug)
EXCEL_EPOCH = "1899-12-30"

# Serial numbers outside this window are not treated as dates
EXCEL_SERIAL_RANGE = (1, 2958465)


# =============================================================================
# RUNTIME SETTINGS
# =============================================================================

@dataclass
class EngineSettings:
    """Runtime settings for the command line entry point."""

    database: str = "loan_ledger.db"
    log_level: str = "INFO"
    log_format: str = "standard"
    npl_threshold_days: int = NPL_THRESHOLD_DAYS

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Create settings from environment variables."""
        return cls(
            database=os.getenv("LOANLEDGER_DB", "loan_ledger.db"),
            log_level=os.getenv("LOANLEDGER_LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOANLEDGER_LOG_FORMAT", "standard"),
            npl_threshold_days=int(os.getenv("LOANLEDGER_NPL_DAYS", str(NPL_THRESHOLD_DAYS))),
        )
