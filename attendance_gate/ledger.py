"""
Attendance ledger adapters. Both are append-only: the gate never updates or
deletes rows.
"""
import asyncio
import logging
import sqlite3
from datetime import date as Date, datetime
from pathlib import Path
from typing import List, Optional
from .recognize.errors import LedgerReadFailure, LedgerWriteFailure
from .recognize.types import AttendanceLogEntry, ScanType

logger = logging.getLogger(__name__)

_TIME_FMT = "%H:%M:%S.%f"  # fixed width, so text order == time order

class SqliteLedger:
    """gate_logs table in a local SQLite file. Blocking calls run in a worker thread."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.init_database()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def init_database(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS gate_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    roll_number TEXT NOT NULL,
                    student_name TEXT NOT NULL,
                    scan_type TEXT NOT NULL CHECK (scan_type IN ('IN', 'OUT')),
                    date_only TEXT NOT NULL,
                    scan_time TEXT NOT NULL,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_gate_logs_roll_date
                ON gate_logs (roll_number, date_only)
            ''')
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Attendance ledger ready at {self.db_path}")

    @staticmethod
    def _row_to_entry(row) -> AttendanceLogEntry:
        roll, name, scan_type, day, scan_time = row
        return AttendanceLogEntry(
            roll_number=roll,
            student_name=name,
            scan_type=ScanType(scan_type),
            date=Date.fromisoformat(day),
            time=datetime.strptime(scan_time, _TIME_FMT).time(),
        )

    def _latest_entry_sync(self, roll_number: str, day: Date) -> Optional[AttendanceLogEntry]:
        conn = self._connect()
        try:
            row = conn.execute('''
                SELECT roll_number, student_name, scan_type, date_only, scan_time
                FROM gate_logs
                WHERE roll_number = ? AND date_only = ?
                ORDER BY scan_time DESC, id DESC
                LIMIT 1
            ''', (roll_number, day.isoformat())).fetchone()
        finally:
            conn.close()
        return self._row_to_entry(row) if row else None

    def _insert_entry_sync(self, entry: AttendanceLogEntry):
        conn = self._connect()
        try:
            conn.execute('''
                INSERT INTO gate_logs (roll_number, student_name, scan_type, date_only, scan_time)
                VALUES (?, ?, ?, ?, ?)
            ''', (
                entry.roll_number,
                entry.student_name,
                entry.scan_type.value,
                entry.date.isoformat(),
                entry.time.strftime(_TIME_FMT),
            ))
            conn.commit()
        finally:
            conn.close()

    def entries_for(self, day: Date) -> List[AttendanceLogEntry]:
        conn = self._connect()
        try:
            rows = conn.execute('''
                SELECT roll_number, student_name, scan_type, date_only, scan_time
                FROM gate_logs
                WHERE date_only = ?
                ORDER BY scan_time, id
            ''', (day.isoformat(),)).fetchall()
        finally:
            conn.close()
        return [self._row_to_entry(r) for r in rows]

    async def latest_entry(self, roll_number: str, date: Date) -> Optional[AttendanceLogEntry]:
        try:
            return await asyncio.to_thread(self._latest_entry_sync, roll_number, date)
        except sqlite3.Error as e:
            raise LedgerReadFailure(f"sqlite read failed: {e}") from e

    async def insert_entry(self, entry: AttendanceLogEntry) -> None:
        try:
            await asyncio.to_thread(self._insert_entry_sync, entry)
        except sqlite3.Error as e:
            raise LedgerWriteFailure(f"sqlite write failed: {e}") from e

class MemoryLedger:
    """In-process ledger for dry runs and tests."""

    def __init__(self, entries: Optional[List[AttendanceLogEntry]] = None):
        self.entries: List[AttendanceLogEntry] = list(entries or [])

    def entries_for(self, day: Date) -> List[AttendanceLogEntry]:
        return [e for e in self.entries if e.date == day]

    async def latest_entry(self, roll_number: str, date: Date) -> Optional[AttendanceLogEntry]:
        todays = [e for e in self.entries if e.roll_number == roll_number and e.date == date]
        if not todays:
            return None
        # stable sort keeps insertion order for equal times
        return sorted(todays, key=lambda e: e.time)[-1]

    async def insert_entry(self, entry: AttendanceLogEntry) -> None:
        self.entries.append(entry)
