"""Calendar helpers shared by the schedule, arrears and upload code."""
import re
from datetime import date, datetime, timedelta
from decimal import Decimal

from dateutil.relativedelta import relativedelta

from loanledger.config import (
    DATE_FORMAT_STORAGE,
    EXCEL_EPOCH,
    EXCEL_SERIAL_RANGE,
    SPREADSHEET_DATE_FORMATS,
)

_EPOCH = datetime.strptime(EXCEL_EPOCH, DATE_FORMAT_STORAGE).date()
_ISO_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
_SERIAL_RE = re.compile(r"^\d+(?:\.\d+)?$")
_ORDINAL_RE = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)\b", re.IGNORECASE)


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the end of shorter months.

    Always anchor on the same start date when generating a series
    (``add_months(d, i)`` for each i) so a clamped day never carries over.
    """
    return start + relativedelta(months=months)


def days_between(start: date, end: date) -> int:
    return (end - start).days


def to_date(value):
    """Coerce a date, datetime or ISO string to a date. None passes through."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value)[:10], DATE_FORMAT_STORAGE).date()


def format_date(value) -> str:
    if value is None:
        return None
    return value.strftime(DATE_FORMAT_STORAGE)


def _from_serial(serial) -> date:
    low, high = EXCEL_SERIAL_RANGE
    if serial < low or serial > high:
        return None
    return _EPOCH + timedelta(days=int(serial))


def parse_spreadsheet_date(value):
    """Parse a payment date as typed into a spreadsheet.

    Accepted forms:
        - date / datetime objects (including pandas Timestamps)
        - Excel serial day numbers, as numbers or numeric strings
        - ISO ``YYYY-MM-DD`` with an optional time part
        - day-first ``DD/MM/YYYY`` with ``/``, ``-`` or ``.`` separators
        - ``21st January 2022`` and ``January 21, 2022``

    Args:
        value: Raw cell value.

    Returns:
        The parsed date, or None if the value is blank or not a real calendar date.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float, Decimal)):
        if value != value:  # NaN
            return None
        return _from_serial(value)

    text = str(value).strip()
    if not text:
        return None

    if _SERIAL_RE.match(text):
        return _from_serial(float(text))

    iso = _ISO_RE.match(text)
    if iso:
        try:
            return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
        except ValueError:
            return None

    text = _ORDINAL_RE.sub(r"\1", text)
    text = re.sub(r"\s+", " ", text)
    for fmt in SPREADSHEET_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None
