"""Tests for spreadsheet parsing: dates, amounts, headers, files and templates."""
import os
import shutil
import tempfile
import unittest
from datetime import date, datetime
from decimal import Decimal

import pandas as pd

from loanledger import spreadsheet
from loanledger.dates import add_months, parse_spreadsheet_date
from loanledger.exceptions import ReconciliationError, SpreadsheetError
from loanledger.money import parse_amount


class TestDates(unittest.TestCase):

    def test_accepted_forms(self):
        cases = {
            "2024-01-15": date(2024, 1, 15),
            "2024-01-15 10:30:00": date(2024, 1, 15),
            "2024-01-15T10:30:00": date(2024, 1, 15),
            "15/01/2024": date(2024, 1, 15),
            "15-01-2024": date(2024, 1, 15),
            "15.01.2024": date(2024, 1, 15),
            "5/3/2024": date(2024, 3, 5),
            "21st January 2022": date(2022, 1, 21),
            "2nd Feb 2023": date(2023, 2, 2),
            "January 21, 2022": date(2022, 1, 21),
            "45306": date(2024, 1, 15),
            45306: date(2024, 1, 15),
            45306.75: date(2024, 1, 15),
            datetime(2024, 1, 15, 9, 0): date(2024, 1, 15),
            date(2024, 1, 15): date(2024, 1, 15),
        }
        for raw, expected in cases.items():
            self.assertEqual(parse_spreadsheet_date(raw), expected, raw)

    def test_rejected_forms(self):
        for raw in [None, "", "   ", "abc", "31/02/2024", "2024-02-30", "13/13/2024", 0, True,
                    float("nan")]:
            self.assertIsNone(parse_spreadsheet_date(raw), raw)

    def test_add_months_clamps(self):
        self.assertEqual(add_months(date(2024, 1, 31), 1), date(2024, 2, 29))
        self.assertEqual(add_months(date(2023, 1, 31), 1), date(2023, 2, 28))


class TestAmounts(unittest.TestCase):

    def test_parse_amount(self):
        self.assertEqual(parse_amount("1,250.50"), Decimal("1250.50"))
        self.assertEqual(parse_amount(" 800 "), Decimal("800.00"))
        self.assertEqual(parse_amount(0.1), Decimal("0.10"))
        self.assertEqual(parse_amount(1000.005), Decimal("1000.01"))
        self.assertEqual(parse_amount(7), Decimal("7.00"))
        for bad in [None, "", "N/A", True, float("nan"), float("inf")]:
            self.assertIsNone(parse_amount(bad), bad)


class TestHeaders(unittest.TestCase):

    def test_synonyms_and_spacing(self):
        mapping = spreadsheet.map_upload_headers([
            "  Organisation/Batch ", "Loan Ref No", "Month of payment", "Other Names",
            "Remita Number", "NHF number", "Date on Remita Receipt", "Unrelated",
        ])
        self.assertEqual(mapping, {
            "  Organisation/Batch ": "organisation",
            "Loan Ref No": "loan_reference",
            "Month of payment": "month",
            "Other Names": "other_name",
            "Remita Number": "reference",
            "NHF number": "nhf_number",
            "Date on Remita Receipt": "payment_date",
        })

    def test_first_header_wins(self):
        mapping = spreadsheet.map_upload_headers(["Organizations", "Batch"])
        self.assertEqual(mapping, {"Organizations": "organisation"})

    def test_rows_from_frame(self):
        df = pd.DataFrame([{
            "Surname": " Ade ", "First Name": "Bola", "Organizations/Batch": "BATCH-A",
            "Remita Number": "RRR-1", "Date on Remita Receipt": "21/02/2024",
            "Amount": "1,000.00", "Month of Payment": "3",
        }, {
            "Surname": "", "First Name": "", "Organizations/Batch": "",
            "Remita Number": "", "Date on Remita Receipt": "not a date",
            "Amount": "", "Month of Payment": "2.5",
        }])
        first, second = spreadsheet.rows_from_frame(df)

        self.assertEqual(first.row_index, 2)
        self.assertEqual(first.surname, "Ade")
        self.assertEqual(first.organisation, "BATCH-A")
        self.assertEqual(first.payment_date, date(2024, 2, 21))
        self.assertEqual(first.amount, Decimal("1000.00"))
        self.assertEqual(first.month, 3)

        self.assertEqual(second.row_index, 3)
        self.assertIsNone(second.payment_date)
        self.assertIsNone(second.amount)
        self.assertIsNone(second.month)
        self.assertEqual(second.raw['payment_date'], "not a date")


class TestFiles(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def path(self, name):
        return os.path.join(self.tmpdir, name)

    def test_csv_blank_rows_dropped(self):
        p = self.path("upload.csv")
        with open(p, "w") as f:
            f.write("Names,Remita Number,Amount\nAde Bola,RRR-1,\"1,000\"\n,,\n")
        rows = spreadsheet.read_repayment_rows(p)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].name, "Ade Bola")
        self.assertEqual(rows[0].amount, Decimal("1000.00"))

    def test_unsupported_and_missing_files(self):
        with self.assertRaises(SpreadsheetError):
            spreadsheet.read_table(self.path("notes.txt"))
        with self.assertRaises(SpreadsheetError):
            spreadsheet.read_table(self.path("missing.xlsx"))

    def test_template_reads_back(self):
        p = self.path("template.xlsx")
        spreadsheet.write_upload_template(p, "multi")
        rows = spreadsheet.read_repayment_rows(p)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].organisation, "BATCH-001")
        self.assertEqual(rows[0].payment_date, date(2024, 3, 15))
        self.assertEqual(rows[0].amount, Decimal("75000.00"))
        self.assertEqual(rows[0].month, 1)

    def test_single_batch_template_headers(self):
        p = self.path("single.xlsx")
        spreadsheet.write_upload_template(p, "single")
        df = pd.read_excel(p)
        self.assertIn("Names", df.columns)
        self.assertNotIn("Organizations/Batch", df.columns)

    def test_statement_without_rows(self):
        p = self.path("statement.csv")
        with open(p, "w") as f:
            f.write("RRR,Amount\n")
        with self.assertRaises(ReconciliationError):
            spreadsheet.load_statement(p)

    def test_unreadable_statement(self):
        with self.assertRaises(ReconciliationError):
            spreadsheet.load_statement(self.path("missing.csv"))

    def test_statement_loaded(self):
        p = self.path("statement.csv")
        with open(p, "w") as f:
            f.write("Transaction Ref,Customer Name,Credit\nRRR-1,Ade Bola,\"5,000.00\"\n")
        upload = spreadsheet.load_statement(p)
        self.assertEqual(upload.columns.reference, "Transaction Ref")
        self.assertEqual(upload.rows[0].amount, Decimal("5000.00"))
        self.assertEqual(upload.rows[0].name, "Ade Bola")


if __name__ == '__main__':
    unittest.main()
