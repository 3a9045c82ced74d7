"""Command line entry point for LoanLedger.

Examples:
  loanledger schedule --principal 2500000 --rate 6 --tenor 36 --moratorium 1 --disbursed 2024-01-15
  loanledger template repayments.xlsx --shape multi
  loanledger upload repayments.xlsx --dry-run
  loanledger reconcile statement.xlsx --reference "Txn Ref" --out recon.csv
  loanledger arrears --as-of 2024-12-31 --group-by state
  loanledger integrity --fix
"""
import argparse
import logging
import sys
from datetime import date
from decimal import Decimal

import pandas as pd

from loanledger import spreadsheet
from loanledger.config import (
    SCHEDULE_METHODS,
    SCHEDULE_ANNUITY,
    UPLOAD_MULTI_BATCH,
    UPLOAD_SINGLE_BATCH,
    EngineSettings,
)
from loanledger.data_structures import Loan
from loanledger.database import DatabaseManager
from loanledger.dates import to_date
from loanledger.engine import LoanEngine
from loanledger.exceptions import LoanLedgerError
from loanledger.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _date_arg(value):
    try:
        return to_date(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {value}")


def build_parser(settings):
    ap = argparse.ArgumentParser(
        prog="loanledger",
        description="Loan schedules, arrears, bulk repayment upload and statement reconciliation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("\n", 1)[1],
    )
    ap.add_argument("--db", default=settings.database, help="SQLite database path")
    ap.add_argument("--log-level", default=settings.log_level)
    ap.add_argument("--log-format", default=settings.log_format, choices=["standard", "json"])
    ap.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("schedule", help="Print an amortization schedule for given terms")
    sp.add_argument("--principal", required=True, type=Decimal)
    sp.add_argument("--rate", required=True, type=Decimal, help="Annual rate in percent")
    sp.add_argument("--tenor", required=True, type=int, help="Months (1-60)")
    sp.add_argument("--moratorium", default=0, type=int, help="Months")
    sp.add_argument("--disbursed", required=True, type=_date_arg)
    sp.add_argument("--method", default=SCHEDULE_ANNUITY, choices=SCHEDULE_METHODS)

    sp = sub.add_parser("template", help="Write a blank repayment upload template")
    sp.add_argument("out")
    sp.add_argument("--shape", default=UPLOAD_MULTI_BATCH,
                    choices=[UPLOAD_SINGLE_BATCH, UPLOAD_MULTI_BATCH])

    sp = sub.add_parser("upload", help="Match and commit a repayment upload")
    sp.add_argument("file")
    sp.add_argument("--batch-id", type=int, default=None,
                    help="Fixed batch for single-batch uploads")
    sp.add_argument("--dry-run", action="store_true", help="Match only, do not commit")

    sp = sub.add_parser("reconcile", help="Reconcile a bank statement against the ledger")
    sp.add_argument("file")
    sp.add_argument("--reference", default=None, help="Override the reference column")
    sp.add_argument("--amount", default=None, help="Override the amount column")
    sp.add_argument("--out", default=None, help="Write classified rows to CSV")

    sp = sub.add_parser("arrears", help="Portfolio NPL and PAR summary")
    sp.add_argument("--as-of", type=_date_arg, default=None)
    sp.add_argument("--group-by", choices=["state", "branch"], default=None)

    sp = sub.add_parser("integrity", help="Compare cached loan totals with the ledger")
    sp.add_argument("--fix", action="store_true", help="Recalculate loans with discrepancies")
    return ap


def cmd_schedule(engine, args):
    loan = Loan(id=None, principal=args.principal, interest_rate=args.rate,
                tenor_months=args.tenor, moratorium_months=args.moratorium,
                disbursement_date=args.disbursed)
    summary = engine.schedule_engine.summarize(loan, args.method)
    df = pd.DataFrame([vars(e) for e in summary.schedule])
    print(df.to_string(index=False))
    print(f"\nEMI: {summary.monthly_emi}  Total interest: {summary.total_interest}  "
          f"Total payment: {summary.total_payment}")
    print(f"Commencement: {summary.commencement_date}  Termination: {summary.termination_date}")


def cmd_template(engine, args):
    spreadsheet.write_upload_template(args.out, args.shape)
    print(f"Template written to {args.out}")


def cmd_upload(engine, args):
    rows = engine.parse_repayment_upload(args.file, batch_id=args.batch_id)
    for row in rows:
        if not row.valid:
            print(f"Row {row.row_index}: " + "; ".join(row.error_messages))
    valid = sum(1 for r in rows if r.valid)
    print(f"{valid} of {len(rows)} rows matched")
    if args.dry_run or not valid:
        return
    report = engine.submit_repayment_upload(rows, source_name=args.file)
    for failure in report.failures:
        print(f"Failed {failure.reference} ({failure.row_count} rows): {failure.error}")
    print(f"Committed {report.success_count} transactions, {report.error_count} errors")
    if report.stale_loans:
        print(f"Balances not refreshed for {report.stale_loans}; run 'integrity --fix'")


def cmd_reconcile(engine, args):
    statement = engine.load_statement(args.file)
    overrides = {k: v for k, v in (("reference", args.reference), ("amount", args.amount)) if v}
    if overrides:
        statement.rebind(**overrides)
    report = engine.reconcile_statement(statement)
    s = report.stats
    print(f"Rows: {s.total_rows}  exact: {s.exact_count}  mismatch: {s.mismatch_count}  "
          f"unmatched: {s.unmatched_count}")
    print(f"Matched {s.matched_value} of {s.total_external_value}")
    if args.out:
        report.to_dataframe().to_csv(args.out, index=False)
        print(f"Rows written to {args.out}")


def cmd_arrears(engine, args):
    risk = engine.portfolio_risk(as_of=args.as_of or date.today(), group_by=args.group_by)
    print(f"Open loans: {risk.loan_count}  Outstanding: {risk.total_outstanding}")
    print(f"NPL: {risk.npl_count} loans, {risk.npl_amount} ({risk.npl_ratio}%)")
    for label, amount in risk.par_amounts.items():
        print(f"{label}: {risk.par_counts[label]} loans, {amount}")
    if risk.by_group is not None:
        print(risk.by_group.to_string(index=False))


def cmd_integrity(engine, args):
    report = engine.integrity_check(auto_fix=args.fix)
    print(f"Loans: {report.loan_count}  System paid: {report.system_total_paid}  "
          f"Verified paid: {report.verified_total_paid}")
    for d in report.discrepancies:
        print(f"Beneficiary {d['beneficiary_id']}: cached {d['system_total_paid']}, "
              f"ledger {d['verified_total_paid']}")
    if report.fixed_count:
        print(f"Fixed {report.fixed_count} loans")


COMMANDS = {
    "schedule": cmd_schedule,
    "template": cmd_template,
    "upload": cmd_upload,
    "reconcile": cmd_reconcile,
    "arrears": cmd_arrears,
    "integrity": cmd_integrity,
}


def main(argv=None):
    settings = EngineSettings.from_env()
    args = build_parser(settings).parse_args(argv)
    setup_logging("DEBUG" if args.verbose else args.log_level, args.log_format)

    try:
        with DatabaseManager(args.db) as db:
            engine = LoanEngine(db, npl_threshold_days=settings.npl_threshold_days)
            COMMANDS[args.command](engine, args)
    except LoanLedgerError as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
