"""Spreadsheet input/output for repayment uploads and bank statements.

Reading goes through pandas (openpyxl for .xlsx, the C parser for .csv)
with every cell kept as the raw object the engine saw in the sheet; the
parsing of dates, amounts and months happens here, row by row, so a bad
cell becomes a row error instead of a failed file.
"""
import logging
import re
from decimal import Decimal
from pathlib import Path

import pandas as pd

from loanledger.config import (
    UPLOAD_HEADER_SYNONYMS,
    UPLOAD_MULTI_BATCH,
    UPLOAD_TEMPLATE_HEADERS,
)
from loanledger.data_structures import RepaymentRow
from loanledger.dates import parse_spreadsheet_date
from loanledger.exceptions import ReconciliationError, SpreadsheetError
from loanledger.money import parse_amount
from loanledger.services.reconciliation_matcher import StatementUpload

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = {'.xlsx', '.xlsm', '.xls'}
TEXT_FIELDS = (
    'title', 'surname', 'first_name', 'other_name', 'name', 'organisation',
    'nhf_number', 'loan_reference', 'reference',
)


def normalize_header(header) -> str:
    """Lower-case, turn punctuation into spaces and collapse whitespace."""
    return re.sub(r"[^a-z0-9]+", " ", str(header).lower()).strip()


def map_upload_headers(columns):
    """Map sheet headers to row fields; unknown headers are ignored.

    Returns:
        Dict of original header -> canonical field. When two headers map to
        the same field the first one wins.
    """
    mapping, seen = {}, set()
    for col in columns:
        fld = UPLOAD_HEADER_SYNONYMS.get(normalize_header(col))
        if fld and fld not in seen:
            mapping[col] = fld
            seen.add(fld)
    return mapping


def read_table(path) -> pd.DataFrame:
    """Read an .xlsx/.xls/.csv file into a DataFrame of raw cell values.

    Blank cells come back as empty strings and fully blank rows are dropped.

    Raises:
        SpreadsheetError: If the file is missing, of an unsupported type or unreadable.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    try:
        if suffix in EXCEL_SUFFIXES:
            df = pd.read_excel(path, dtype=object, keep_default_na=False)
        elif suffix == '.csv':
            df = pd.read_csv(path, dtype=object, keep_default_na=False, skipinitialspace=True)
        else:
            raise SpreadsheetError(f"Unsupported file type '{suffix}'", path)
    except pd.errors.EmptyDataError:
        return pd.DataFrame()
    except (OSError, ValueError, pd.errors.ParserError) as e:
        raise SpreadsheetError(f"Could not read spreadsheet: {e}", path)

    df.columns = [str(c).strip() for c in df.columns]
    df = df.fillna("")
    if not df.empty:
        blank = df.apply(lambda col: col.map(lambda v: str(v).strip() == "")).all(axis=1)
        df = df[~blank].reset_index(drop=True)
    logger.debug("Read %d rows from %s", len(df), path.name)
    return df


def parse_month(value):
    """Whole month number from a cell, or None (3, 3.0 and "3" are all 3)."""
    amount = parse_amount(value)
    if amount is None or amount != amount.to_integral_value():
        return None
    return int(amount)


def rows_from_frame(df):
    """Build RepaymentRows from an upload DataFrame.

    Row numbers follow the sheet, so the first data row is row 2.
    """
    mapping = map_upload_headers(df.columns)
    rows = []
    for i, record in enumerate(df.to_dict('records'), start=2):
        raw = {fld: record[col] for col, fld in mapping.items()}
        text = {f: str(raw.get(f, "") or "").strip() for f in TEXT_FIELDS}
        rows.append(RepaymentRow(
            row_index=i,
            payment_date=parse_spreadsheet_date(raw.get('payment_date')),
            amount=parse_amount(raw.get('amount')),
            month=parse_month(raw.get('month')),
            raw=raw,
            **text,
        ))
    return rows


def read_repayment_rows(path):
    """Read a repayment upload file (either shape) into RepaymentRows."""
    return rows_from_frame(read_table(path))


def load_statement(path) -> StatementUpload:
    """Read a bank statement and auto-bind its columns.

    Raises:
        ReconciliationError: If the file cannot be read or has no data rows.
    """
    try:
        df = read_table(path)
    except SpreadsheetError as e:
        raise ReconciliationError(e.message, e.details)
    if df.empty:
        raise ReconciliationError("Statement has no data rows", {'path': str(path)})
    upload = StatementUpload(df, source_name=Path(path).name)
    logger.info("Loaded statement %s: %d rows, columns %s",
                upload.source_name, len(upload.rows), upload.columns)
    return upload


def write_upload_template(path, shape=UPLOAD_MULTI_BATCH):
    """Write an upload template workbook with the expected headers and one sample row."""
    headers = UPLOAD_TEMPLATE_HEADERS[shape]
    sample = {
        "Title": "Mr", "Surname": "Okafor", "First Name": "Chinedu", "Other Name": "",
        "Names": "Okafor Chinedu", "Organizations/Batch": "BATCH-001",
        "NHF Number": "NHF0001", "Loan Reference Number": "LR-0001",
        "Remita Number": "123456789012", "Date on Remita Receipt": "2024-03-15",
        "Amount": Decimal("75000.00"), "Month of Payment": 1,
    }
    df = pd.DataFrame([{h: sample[h] for h in headers}], columns=headers)
    df['Amount'] = df['Amount'].astype(float)

    with pd.ExcelWriter(path, engine='xlsxwriter') as writer:
        df.to_excel(writer, index=False, sheet_name='Repayments')
        workbook = writer.book
        worksheet = writer.sheets['Repayments']

        header_fmt = workbook.add_format({'bold': True, 'border': 1, 'bg_color': '#f0f0f0'})
        for col_num, value in enumerate(df.columns.values):
            worksheet.write(0, col_num, value, header_fmt)
        worksheet.set_column(0, len(headers) - 1, 22)
    logger.info("Wrote %s upload template to %s", shape, path)
    return path
