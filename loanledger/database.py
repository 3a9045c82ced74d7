"""Database management module for LoanLedger."""
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

import pandas as pd

from loanledger.config import SCHEDULE_ANNUITY, STATUS_ACTIVE
from loanledger.dates import format_date, to_date
from loanledger.data_structures import (
    Beneficiary,
    BatchRepayment,
    Loan,
    LoanBatch,
    Transaction,
)
from loanledger.exceptions import StorageError, TransactionError

logger = logging.getLogger(__name__)

# Columns callers may filter on, per table
_FILTERABLE = {
    'loan_batches': {'id', 'batch_code', 'name', 'state', 'branch', 'status'},
    'beneficiaries': {'id', 'batch_id', 'nhf_number', 'employee_id',
                      'loan_reference_number', 'state', 'branch', 'status'},
    'transactions': {'id', 'beneficiary_id', 'rrr_number', 'month_for', 'batch_repayment_id'},
    'batch_repayments': {'id', 'batch_id', 'rrr_number', 'month_for'},
}


def _money(value):
    return Decimal(str(value)) if value not in (None, "") else Decimal("0.00")


def _text(value):
    return "" if value is None else str(value)


class DatabaseManager:
    """Handles all SQLite storage for batches, beneficiaries, loans and the payment ledger.

    Money is stored as decimal text so no amount ever passes through a float.
    Every ``sqlite3.Error`` is re-raised as ``StorageError``.
    """

    def __init__(self, db_name="loan_ledger.db"):
        self.db_name = db_name
        self.conn = sqlite3.connect(db_name)
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._closed = False
        self._depth = 0
        self.create_tables()

    def close(self):
        """Close the database connection."""
        if self.conn and not self._closed:
            self.conn.close()
            self._closed = True

    def __del__(self):
        self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @contextmanager
    def transaction(self):
        """Context manager for database transactions with automatic rollback on failure.

        Usage:
            with db.transaction():
                repayment_id = db.add_batch_repayment(...)
                db.add_transaction(...)

        Writes inside the block are committed together. If any exception
        occurs, everything written in the block is rolled back.
        """
        self._depth += 1
        try:
            yield
            self._depth -= 1
            if self._depth == 0:
                self.conn.commit()
        except sqlite3.Error as e:
            self._depth -= 1
            self.conn.rollback()
            raise TransactionError(f"Transaction failed: {str(e)}")
        except Exception:
            self._depth -= 1
            self.conn.rollback()
            raise

    def _execute(self, query, params=()):
        try:
            cursor = self.conn.cursor()
            cursor.execute(query, params)
        except sqlite3.Error as e:
            logger.warning("Statement failed: %s", e)
            if self._depth == 0:
                self.conn.rollback()
            raise StorageError(f"Database error: {str(e)}", {'query': query.split()[0]})
        if self._depth == 0:
            self.conn.commit()
        return cursor

    def _fetch(self, query, params=()):
        try:
            cursor = self.conn.cursor()
            cursor.execute(query, params)
            cols = [c[0] for c in cursor.description]
            return [dict(zip(cols, row)) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {str(e)}")

    def _select(self, table, filters=None, order_by="id"):
        """SELECT * with exact-match filters on whitelisted columns."""
        filters = filters or {}
        unknown = set(filters) - _FILTERABLE[table]
        if unknown:
            raise StorageError(f"Cannot filter {table} on {sorted(unknown)}")
        query = f"SELECT * FROM {table}"
        params = []
        if filters:
            clauses = []
            for col, val in filters.items():
                clauses.append(f"{col} = ?")
                params.append(val)
            query += " WHERE " + " AND ".join(clauses)
        query += f" ORDER BY {order_by}"
        return self._fetch(query, tuple(params))

    def create_tables(self):
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loan_batches (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                batch_code TEXT NOT NULL UNIQUE COLLATE NOCASE,
                name TEXT NOT NULL,
                state TEXT,
                branch TEXT,
                status TEXT DEFAULT 'active',
                created_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS beneficiaries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                batch_id INTEGER,
                title TEXT,
                surname TEXT,
                first_name TEXT,
                other_name TEXT,
                full_name TEXT,
                employee_id TEXT,
                nhf_number TEXT,
                loan_reference_number TEXT,
                state TEXT,
                branch TEXT,
                principal TEXT NOT NULL,
                interest_rate TEXT NOT NULL,
                tenor_months INTEGER NOT NULL,
                moratorium_months INTEGER DEFAULT 0,
                schedule_method TEXT DEFAULT 'annuity',
                disbursement_date TEXT,
                commencement_date TEXT,
                termination_date TEXT,
                monthly_emi TEXT DEFAULT '0.00',
                total_expected TEXT DEFAULT '0.00',
                total_paid TEXT DEFAULT '0.00',
                outstanding_balance TEXT DEFAULT '0.00',
                status TEXT DEFAULT 'active',
                created_at TEXT,
                FOREIGN KEY(batch_id) REFERENCES loan_batches(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS batch_repayments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                batch_id INTEGER NOT NULL,
                month_for INTEGER,
                expected_amount TEXT,
                actual_amount TEXT,
                rrr_number TEXT NOT NULL UNIQUE COLLATE NOCASE,
                payment_date TEXT,
                notes TEXT,
                created_at TEXT,
                FOREIGN KEY(batch_id) REFERENCES loan_batches(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                beneficiary_id INTEGER NOT NULL,
                amount TEXT NOT NULL,
                rrr_number TEXT NOT NULL COLLATE NOCASE,
                date_paid TEXT,
                month_for INTEGER,
                notes TEXT,
                batch_repayment_id INTEGER,
                created_at TEXT,
                FOREIGN KEY(beneficiary_id) REFERENCES beneficiaries(id),
                FOREIGN KEY(batch_repayment_id) REFERENCES batch_repayments(id)
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_tx_beneficiary ON transactions(beneficiary_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_tx_rrr ON transactions(rrr_number)")
        self.conn.commit()

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def add_batch(self, batch_code, name, state="", branch=""):
        cursor = self._execute("""
            INSERT INTO loan_batches (batch_code, name, state, branch, status, created_at)
            VALUES (?, ?, ?, ?, 'active', ?)
        """, (batch_code, name, state, branch, datetime.now().isoformat()))
        return cursor.lastrowid

    def get_batch(self, batch_id):
        rows = self._select('loan_batches', {'id': int(batch_id)})
        return self._to_batch(rows[0]) if rows else None

    def get_batches(self, **filters):
        return [self._to_batch(r) for r in self._select('loan_batches', filters)]

    def update_batch_status(self, batch_id, status):
        self._execute("UPDATE loan_batches SET status = ? WHERE id = ?", (status, int(batch_id)))

    @staticmethod
    def _to_batch(row):
        return LoanBatch(
            id=row['id'],
            batch_code=row['batch_code'],
            name=row['name'],
            state=_text(row['state']),
            branch=_text(row['branch']),
            status=row['status'],
        )

    # -------------------------------------------------------------------------
    # Beneficiaries and loans
    # -------------------------------------------------------------------------

    def add_beneficiary(self, beneficiary: Beneficiary, loan: Loan):
        """Insert a beneficiary together with the terms of their loan."""
        cursor = self._execute("""
            INSERT INTO beneficiaries (
                batch_id, title, surname, first_name, other_name, full_name,
                employee_id, nhf_number, loan_reference_number, state, branch,
                principal, interest_rate, tenor_months, moratorium_months, schedule_method,
                disbursement_date, commencement_date, termination_date,
                monthly_emi, total_expected, total_paid, outstanding_balance,
                status, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            beneficiary.batch_id, beneficiary.title, beneficiary.surname,
            beneficiary.first_name, beneficiary.other_name, beneficiary.full_name,
            beneficiary.employee_id, beneficiary.nhf_number,
            beneficiary.loan_reference_number, beneficiary.state, beneficiary.branch,
            str(loan.principal), str(loan.interest_rate), loan.tenor_months,
            loan.moratorium_months, loan.schedule_method, format_date(loan.disbursement_date),
            format_date(loan.commencement_date), format_date(loan.termination_date),
            str(loan.monthly_emi), str(loan.total_expected), str(loan.total_paid),
            str(loan.outstanding_balance), loan.status or STATUS_ACTIVE,
            datetime.now().isoformat(),
        ))
        return cursor.lastrowid

    def get_beneficiaries(self, batch_id=None):
        filters = {'batch_id': int(batch_id)} if batch_id is not None else {}
        return [self._to_beneficiary(r) for r in self._select('beneficiaries', filters)]

    def get_beneficiary(self, beneficiary_id):
        rows = self._select('beneficiaries', {'id': int(beneficiary_id)})
        return self._to_beneficiary(rows[0]) if rows else None

    def get_loan(self, beneficiary_id):
        rows = self._select('beneficiaries', {'id': int(beneficiary_id)})
        return self._to_loan(rows[0]) if rows else None

    def get_loans(self, **filters):
        return [self._to_loan(r) for r in self._select('beneficiaries', filters)]

    def update_loan_aggregates(self, beneficiary_id, total_paid, outstanding_balance, status):
        self._execute("""
            UPDATE beneficiaries
            SET total_paid = ?, outstanding_balance = ?, status = ?
            WHERE id = ?
        """, (str(total_paid), str(outstanding_balance), status, int(beneficiary_id)))

    def update_loan_status(self, beneficiary_id, status):
        self._execute("UPDATE beneficiaries SET status = ? WHERE id = ?",
                      (status, int(beneficiary_id)))

    @staticmethod
    def _to_beneficiary(row):
        return Beneficiary(
            id=row['id'],
            batch_id=row['batch_id'],
            title=_text(row['title']),
            surname=_text(row['surname']),
            first_name=_text(row['first_name']),
            other_name=_text(row['other_name']),
            full_name=_text(row['full_name']),
            employee_id=_text(row['employee_id']),
            nhf_number=_text(row['nhf_number']),
            loan_reference_number=_text(row['loan_reference_number']),
            state=_text(row['state']),
            branch=_text(row['branch']),
            monthly_emi=_money(row['monthly_emi']),
        )

    @staticmethod
    def _to_loan(row):
        return Loan(
            id=row['id'],
            principal=_money(row['principal']),
            interest_rate=Decimal(str(row['interest_rate'])),
            tenor_months=int(row['tenor_months']),
            moratorium_months=int(row['moratorium_months'] or 0),
            schedule_method=row['schedule_method'] or SCHEDULE_ANNUITY,
            disbursement_date=to_date(row['disbursement_date']),
            commencement_date=to_date(row['commencement_date']),
            termination_date=to_date(row['termination_date']),
            monthly_emi=_money(row['monthly_emi']),
            total_expected=_money(row['total_expected']),
            total_paid=_money(row['total_paid']),
            outstanding_balance=_money(row['outstanding_balance']),
            status=row['status'],
            batch_id=row['batch_id'],
        )

    # -------------------------------------------------------------------------
    # Payment ledger
    # -------------------------------------------------------------------------

    def reference_exists(self, reference):
        """True if the remittance reference is already in either ledger (case-insensitive)."""
        rows = self._fetch("""
            SELECT 1 FROM transactions WHERE lower(trim(rrr_number)) = lower(trim(?))
            UNION ALL
            SELECT 1 FROM batch_repayments WHERE lower(trim(rrr_number)) = lower(trim(?))
            LIMIT 1
        """, (reference, reference))
        return bool(rows)

    def add_transaction(self, tx: Transaction):
        cursor = self._execute("""
            INSERT INTO transactions (
                beneficiary_id, amount, rrr_number, date_paid, month_for, notes,
                batch_repayment_id, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (int(tx.beneficiary_id), str(tx.amount), tx.reference, format_date(tx.date_paid),
              tx.month_for, tx.notes, tx.batch_repayment_id, datetime.now().isoformat()))
        return cursor.lastrowid

    def bulk_insert_transactions(self, transactions):
        """Bulk insert multiple transactions into the ledger."""
        if not transactions:
            return

        now = datetime.now().isoformat()
        vals = []
        for tx in transactions:
            vals.append((
                int(tx.beneficiary_id),
                str(tx.amount),
                tx.reference,
                format_date(tx.date_paid),
                tx.month_for,
                tx.notes,
                tx.batch_repayment_id,
                now,
            ))

        try:
            self.conn.executemany("""
                INSERT INTO transactions (
                    beneficiary_id, amount, rrr_number, date_paid, month_for, notes,
                    batch_repayment_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, vals)
        except sqlite3.Error as e:
            if self._depth == 0:
                self.conn.rollback()
            raise StorageError(f"Bulk insert failed: {str(e)}", {'rows': len(vals)})
        if self._depth == 0:
            self.conn.commit()

    def get_transactions(self, **filters):
        return [self._to_transaction(r) for r in self._select('transactions', filters)]

    def get_transactions_by_ids(self, ids):
        ids = [int(i) for i in ids]
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        rows = self._fetch(f"SELECT * FROM transactions WHERE id IN ({placeholders}) ORDER BY id",
                           tuple(ids))
        return [self._to_transaction(r) for r in rows]

    def delete_transactions(self, ids):
        """Delete transactions by id list. Returns the number of rows removed."""
        ids = [int(i) for i in ids]
        if not ids:
            return 0
        placeholders = ",".join("?" * len(ids))
        cursor = self._execute(f"DELETE FROM transactions WHERE id IN ({placeholders})", tuple(ids))
        return cursor.rowcount

    def get_transactions_df(self):
        """All transactions as a DataFrame (amounts still decimal text)."""
        try:
            return pd.read_sql_query(
                "SELECT id, beneficiary_id, amount, rrr_number, month_for, batch_repayment_id "
                "FROM transactions ORDER BY id",
                self.conn,
            )
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise StorageError(f"Database error: {str(e)}")

    def get_loans_df(self):
        try:
            return pd.read_sql_query(
                "SELECT id, batch_id, state, branch, total_expected, total_paid, "
                "outstanding_balance, status FROM beneficiaries ORDER BY id",
                self.conn,
            )
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise StorageError(f"Database error: {str(e)}")

    @staticmethod
    def _to_transaction(row):
        return Transaction(
            id=row['id'],
            beneficiary_id=row['beneficiary_id'],
            amount=_money(row['amount']),
            reference=row['rrr_number'],
            date_paid=to_date(row['date_paid']),
            month_for=row['month_for'],
            notes=_text(row['notes']),
            batch_repayment_id=row['batch_repayment_id'],
        )

    # -------------------------------------------------------------------------
    # Batch repayments (remittance records)
    # -------------------------------------------------------------------------

    def add_batch_repayment(self, record: BatchRepayment):
        cursor = self._execute("""
            INSERT INTO batch_repayments (
                batch_id, month_for, expected_amount, actual_amount, rrr_number,
                payment_date, notes, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (int(record.batch_id), record.month_for, str(record.expected_amount),
              str(record.actual_amount), record.reference, format_date(record.payment_date),
              record.notes, datetime.now().isoformat()))
        return cursor.lastrowid

    def get_batch_repayment(self, repayment_id):
        rows = self._select('batch_repayments', {'id': int(repayment_id)})
        return self._to_batch_repayment(rows[0]) if rows else None

    def get_batch_repayments(self, **filters):
        return [self._to_batch_repayment(r) for r in self._select('batch_repayments', filters)]

    def delete_batch_repayment(self, repayment_id):
        self._execute("DELETE FROM batch_repayments WHERE id = ?", (int(repayment_id),))

    @staticmethod
    def _to_batch_repayment(row):
        return BatchRepayment(
            id=row['id'],
            batch_id=row['batch_id'],
            month_for=row['month_for'],
            expected_amount=_money(row['expected_amount']),
            actual_amount=_money(row['actual_amount']),
            reference=row['rrr_number'],
            payment_date=to_date(row['payment_date']),
            notes=_text(row['notes']),
        )
