from __future__ import annotations

import logging
import shutil
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from .models import Payment, Student


logger = logging.getLogger(__name__)


class UnknownStudent(LookupError):
    def __init__(self, student_id: str) -> None:
        super().__init__(f"Student not found: {student_id}")
        self.student_id = student_id


class DuplicateStudent(ValueError):
    def __init__(self, student_id: str) -> None:
        super().__init__(f"Admission number already exists: {student_id}")
        self.student_id = student_id


class DuplicateApplication(RuntimeError):
    def __init__(self, payment_id: str) -> None:
        super().__init__(f"Payment {payment_id} has already been recorded")
        self.payment_id = payment_id


class StaleStudent(RuntimeError):
    def __init__(self, student_id: str) -> None:
        super().__init__(f"Student {student_id} changed since dues were computed; recompute and retry")
        self.student_id = student_id


class FeeStore(Protocol):
    """Persistence collaborator for the payment workflow and reports."""

    def get_student(self, student_id: str) -> Student: ...

    def put_student(self, student: Student) -> None: ...

    def add_student(self, student: Student) -> None: ...

    def delete_student(self, student_id: str) -> None: ...

    def list_students(self) -> list[Student]: ...

    def has_payment(self, payment_id: str) -> bool: ...

    def append_payment(self, payment: Payment) -> None: ...

    def list_payments(
        self,
        *,
        student_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Payment]: ...

    def record_payment(self, payment: Payment, student: Student, *, expected: Optional[Student] = None) -> None: ...

    def next_receipt_no(self) -> str: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteFeeStore:
    """
    Students and payments as JSON documents in a single SQLite file.

    Payments are append-only. `record_payment` writes the payment and the updated student
    in one transaction.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._backup_path = self.db_path.with_name(self.db_path.name + ".bak")

        # Self-heal on corrupted/missing DB: restore from backup when possible.
        self._conn = self._open_or_restore()
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

        # Ensure we have *some* backup available for next time.
        self._maybe_backup(if_missing=True)

    def close(self) -> None:
        self._conn.close()

    def _open_or_restore(self) -> sqlite3.Connection:
        """
        Open the ledger DB. If it looks corrupted, move it aside and restore from the last-known-good backup.
        """
        if self.db_path.exists():
            try:
                conn = sqlite3.connect(self.db_path)
                if self._connection_is_healthy(conn):
                    return conn
                conn.close()
                raise sqlite3.DatabaseError("SQLite quick_check failed")
            except sqlite3.Error as e:
                logger.warning("Ledger DB appears corrupted/unreadable; attempting restore from backup. (%s)", e)
                self._quarantine_db_files()

                if self._backup_path.exists():
                    try:
                        shutil.copy2(self._backup_path, self.db_path)
                        conn = sqlite3.connect(self.db_path)
                        if self._connection_is_healthy(conn):
                            logger.warning("Restored ledger DB from backup: %s", self._backup_path)
                            return conn
                        conn.close()
                    except (OSError, sqlite3.Error):
                        logger.warning("Failed to restore ledger DB from backup; creating a fresh DB.", exc_info=True)
                else:
                    logger.warning("No ledger DB backup found; creating a fresh DB.")

        return sqlite3.connect(self.db_path)

    def _connection_is_healthy(self, conn: sqlite3.Connection) -> bool:
        try:
            # Touch schema_version to fail fast on "file is not a database".
            _ = conn.execute("PRAGMA schema_version;").fetchone()
            row = conn.execute("PRAGMA quick_check;").fetchone()
            return bool(row and row[0] == "ok")
        except sqlite3.Error:
            return False

    def _quarantine_db_files(self) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        for p in (self.db_path, Path(str(self.db_path) + "-wal"), Path(str(self.db_path) + "-shm")):
            try:
                if p.exists():
                    p.replace(p.with_name(p.name + f".corrupt-{stamp}"))
            except OSError:
                logger.debug("Failed to quarantine path=%s", p, exc_info=True)

    def _maybe_backup(self, *, if_missing: bool) -> None:
        if if_missing and self._backup_path.exists():
            return

        try:
            self.backup()
        except (OSError, sqlite3.Error):
            logger.debug("Failed to write ledger DB backup.", exc_info=True)

    def backup(self) -> None:
        """
        Write/refresh a last-known-good backup of the ledger DB at `<db_path>.bak`.
        """
        out = self._backup_path
        out.parent.mkdir(parents=True, exist_ok=True)
        tmp = out.with_name(out.name + ".tmp")
        if tmp.exists():
            tmp.unlink()

        # Use SQLite online backup API for a consistent snapshot.
        dst = sqlite3.connect(tmp)
        try:
            self._conn.backup(dst)
            dst.commit()
        finally:
            dst.close()

        tmp.replace(out)

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS students (
              id TEXT PRIMARY KEY,
              data TEXT NOT NULL,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS payments (
              seq INTEGER PRIMARY KEY AUTOINCREMENT,
              id TEXT NOT NULL UNIQUE,
              student_id TEXT NOT NULL,
              payment_date TEXT NOT NULL,
              receipt_no TEXT NOT NULL UNIQUE,
              data TEXT NOT NULL,
              created_at TEXT NOT NULL
            );
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS payments_student ON payments(student_id);")
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              started_at TEXT NOT NULL,
              finished_at TEXT,
              ok INTEGER,
              message TEXT
            );
            """
        )
        self._conn.commit()

    # --- students ---

    def _load_student(self, student_id: str) -> Optional[Student]:
        row = self._conn.execute("SELECT data FROM students WHERE id = ?;", (student_id,)).fetchone()
        if not row:
            return None
        return Student.model_validate_json(row[0])

    def _write_student(self, student: Student) -> None:
        now = _now()
        self._conn.execute(
            """
            INSERT INTO students(id, data, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              data = excluded.data,
              updated_at = excluded.updated_at;
            """,
            (student.id, student.model_dump_json(), now, now),
        )

    def get_student(self, student_id: str) -> Student:
        student = self._load_student(student_id)
        if student is None:
            raise UnknownStudent(student_id)
        return student

    def put_student(self, student: Student) -> None:
        self._write_student(student)
        self._conn.commit()

    def add_student(self, student: Student) -> None:
        if self._load_student(student.id) is not None:
            raise DuplicateStudent(student.id)
        self._write_student(student)
        self._conn.commit()

    def delete_student(self, student_id: str) -> None:
        cur = self._conn.execute("DELETE FROM students WHERE id = ?;", (student_id,))
        self._conn.commit()
        if cur.rowcount == 0:
            raise UnknownStudent(student_id)

    def list_students(self) -> list[Student]:
        rows = self._conn.execute("SELECT data FROM students ORDER BY id;").fetchall()
        return [Student.model_validate_json(r[0]) for r in rows]

    # --- payments ---

    def has_payment(self, payment_id: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM payments WHERE id = ? LIMIT 1;", (payment_id,)).fetchone()
        return row is not None

    def _insert_payment(self, payment: Payment) -> None:
        if self.has_payment(payment.id):
            raise DuplicateApplication(payment.id)
        self._conn.execute(
            """
            INSERT INTO payments(id, student_id, payment_date, receipt_no, data, created_at)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (
                payment.id,
                payment.student_id,
                payment.date.isoformat(),
                payment.receipt_no,
                payment.model_dump_json(),
                _now(),
            ),
        )

    def append_payment(self, payment: Payment) -> None:
        self._insert_payment(payment)
        self._conn.commit()

    def list_payments(
        self,
        *,
        student_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Payment]:
        clauses: list[str] = []
        params: list[str] = []
        if student_id is not None:
            clauses.append("student_id = ?")
            params.append(student_id)
        if date_from is not None:
            clauses.append("payment_date >= ?")
            params.append(date_from.isoformat())
        if date_to is not None:
            clauses.append("payment_date <= ?")
            params.append(date_to.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT data FROM payments {where} ORDER BY payment_date, seq;",
            params,
        ).fetchall()
        return [Payment.model_validate_json(r[0]) for r in rows]

    def record_payment(self, payment: Payment, student: Student, *, expected: Optional[Student] = None) -> None:
        """
        Append `payment` and store `student` atomically.

        With `expected`, the stored student must still equal that snapshot, otherwise
        `StaleStudent` is raised and nothing is written.
        """
        if payment.student_id != student.id:
            raise ValueError(f"Payment {payment.id} is for {payment.student_id}, not {student.id}")

        self._conn.execute("BEGIN IMMEDIATE;")
        try:
            if expected is not None:
                current = self._load_student(student.id)
                if current is None:
                    raise UnknownStudent(student.id)
                if current != expected:
                    raise StaleStudent(student.id)
            self._insert_payment(payment)
            self._write_student(student)
        except Exception:
            self._conn.rollback()
            raise
        self._conn.commit()

    def next_receipt_no(self) -> str:
        row = self._conn.execute("SELECT COALESCE(MAX(seq), 0) FROM payments;").fetchone()
        return f"REC-{int(row[0]) + 1:04d}"

    # --- runs ---

    def record_run_start(self) -> int:
        cur = self._conn.execute("INSERT INTO runs(started_at) VALUES (?);", (_now(),))
        self._conn.commit()
        return int(cur.lastrowid)

    def record_run_finish(self, run_id: int, *, ok: bool, message: Optional[str] = None) -> None:
        self._conn.execute(
            "UPDATE runs SET finished_at = ?, ok = ?, message = ? WHERE id = ?;",
            (_now(), 1 if ok else 0, message, run_id),
        )
        self._conn.commit()

        # Only refresh backups after a successful run (avoid snapshotting a potentially bad state).
        if ok:
            self._maybe_backup(if_missing=False)
