"""Bank statement reconciliation for LoanLedger.

External statement lines are matched to the payment ledger by remittance
reference (case-insensitive) and classified as exact, amount mismatch, or
unmatched. Variance is always statement amount minus ledger amount.
"""
import logging
import re
from collections import defaultdict

from loanledger.config import (
    MATCH_AMOUNT_MISMATCH,
    MATCH_EXACT,
    MATCH_UNMATCHED,
    STATEMENT_COLUMN_PATTERNS,
)
from loanledger.data_structures import (
    ReconciliationReport,
    ReconciliationResult,
    ReconciliationStats,
    StatementColumns,
    StatementRow,
)
from loanledger.exceptions import ReconciliationError
from loanledger.money import ZERO, money_equal, money_sum, parse_amount

logger = logging.getLogger(__name__)

SOURCE_INDIVIDUAL = "individual"
SOURCE_BATCH = "batch"


def _norm_header(header) -> str:
    return re.sub(r"[^a-z0-9]+", " ", str(header).lower()).strip()


def _ref_key(reference) -> str:
    return str(reference or "").strip().lower()


def detect_columns(headers) -> StatementColumns:
    """Guess which header holds each statement field.

    Fields are bound in order (reference, amount, name, receipt) and a
    header bound to one field is not offered to the next. Within a field
    the strongest pattern is tried against every header before weaker ones.

    Args:
        headers: Column headers of the statement, in sheet order.

    Returns:
        StatementColumns with None for any field no header matched.
    """
    normalized = [(h, _norm_header(h)) for h in headers]
    taken = set()
    bound = {}
    for fld, patterns in STATEMENT_COLUMN_PATTERNS.items():
        bound[fld] = None
        for pattern in patterns:
            hit = next((h for h, n in normalized if h not in taken and pattern in n), None)
            if hit is not None:
                bound[fld] = hit
                taken.add(hit)
                break
    return StatementColumns(**bound)


class StatementUpload:
    """A loaded statement: the raw frame, the column binding and extracted rows."""

    def __init__(self, frame, columns=None, source_name=""):
        """Initialize StatementUpload.

        Args:
            frame: pandas DataFrame with the statement cells as text.
            columns: Column binding; auto-detected from the headers when None.
            source_name: File name, for logs.
        """
        self.frame = frame
        self.source_name = source_name
        self.columns = columns or detect_columns(list(frame.columns))
        self.rows = self._extract()

    @property
    def headers(self):
        return list(self.frame.columns)

    def rebind(self, **overrides):
        """Override column bindings and re-extract every row.

        Args:
            **overrides: field=header pairs, e.g. ``reference="Txn Ref"``.
                Pass None to unbind a field.

        Raises:
            ReconciliationError: For an unknown field or a header not in the sheet.
        """
        for fld, header in overrides.items():
            if not hasattr(self.columns, fld):
                raise ReconciliationError(f"Unknown statement field '{fld}'")
            if header is not None and header not in self.frame.columns:
                raise ReconciliationError(f"Column '{header}' not found in statement",
                                          {'available': self.headers})
            setattr(self.columns, fld, header)
        self.rows = self._extract()
        return self

    def _extract(self):
        cols = self.columns
        rows = []
        # Row numbers follow the sheet: header is row 1
        for i, record in enumerate(self.frame.to_dict('records'), start=2):
            amount = parse_amount(record.get(cols.amount)) if cols.amount else None
            rows.append(StatementRow(
                row_index=i,
                reference=str(record.get(cols.reference, "") or "").strip() if cols.reference else "",
                amount=amount if amount is not None else ZERO,
                name=str(record.get(cols.name, "") or "").strip() if cols.name else "",
                receipt_url=str(record.get(cols.receipt, "") or "").strip() if cols.receipt else "",
            ))
        return rows


class ReconciliationMatcher:
    """Classifies statement rows against the individual and batch ledgers."""

    @staticmethod
    def build_lookup(records, amount_attr):
        """Reference -> summed amount, keyed by stripped lower-cased reference."""
        totals = defaultdict(list)
        for rec in records:
            key = _ref_key(rec.reference)
            if key:
                totals[key].append(getattr(rec, amount_attr))
        return {k: money_sum(v) for k, v in totals.items()}

    def reconcile(self, external_rows, transactions, batch_repayments) -> ReconciliationReport:
        """Match statement rows to the ledger.

        Transactions written as members of a remittance record are covered
        by that record in the batch ledger, so only stand-alone transactions
        feed the individual ledger.

        Args:
            external_rows: StatementRows (or a StatementUpload).
            transactions: Transactions from storage.
            batch_repayments: BatchRepayments from storage.

        Returns:
            ReconciliationReport with one result per row and aggregate stats.

        Raises:
            ReconciliationError: If there are no rows or no reference column.
        """
        if isinstance(external_rows, StatementUpload):
            if external_rows.columns.reference is None:
                raise ReconciliationError("No reference column bound",
                                          {'available': external_rows.headers})
            external_rows = external_rows.rows
        if not external_rows:
            raise ReconciliationError("Statement has no data rows")

        individual = self.build_lookup(
            [t for t in transactions if t.batch_repayment_id is None], 'amount')
        batch = self.build_lookup(batch_repayments, 'actual_amount')

        results = [self._classify(row, individual, batch) for row in external_rows]
        report = ReconciliationReport(results=results, stats=self._stats(results))
        logger.info("Reconciled %d rows: %d exact, %d mismatch, %d unmatched",
                    report.stats.total_rows, report.stats.exact_count,
                    report.stats.mismatch_count, report.stats.unmatched_count)
        return report

    @staticmethod
    def _classify(row, individual, batch):
        key = _ref_key(row.reference)
        if key in individual:
            ledger, source = individual[key], SOURCE_INDIVIDUAL
        elif key in batch:
            ledger, source = batch[key], SOURCE_BATCH
        else:
            return ReconciliationResult(row=row, match_type=MATCH_UNMATCHED)

        match_type = MATCH_EXACT if money_equal(row.amount, ledger) else MATCH_AMOUNT_MISMATCH
        return ReconciliationResult(
            row=row,
            match_type=match_type,
            ledger_amount=ledger,
            variance=row.amount - ledger,
            source=source,
        )

    @staticmethod
    def _stats(results):
        by_type = defaultdict(list)
        for r in results:
            by_type[r.match_type].append(r.row.amount)
        exact_value = money_sum(by_type[MATCH_EXACT])
        return ReconciliationStats(
            total_rows=len(results),
            exact_count=len(by_type[MATCH_EXACT]),
            mismatch_count=len(by_type[MATCH_AMOUNT_MISMATCH]),
            unmatched_count=len(by_type[MATCH_UNMATCHED]),
            exact_value=exact_value,
            mismatch_value=money_sum(by_type[MATCH_AMOUNT_MISMATCH]),
            unmatched_value=money_sum(by_type[MATCH_UNMATCHED]),
            total_external_value=money_sum(r.row.amount for r in results),
            matched_value=exact_value,
        )
