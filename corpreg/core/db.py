"""
SQLite connection handling and schema for the registration record store.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from .config import get_db_path, ensure_db_directory


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    ensure_db_directory()
    conn = sqlite3.connect(get_db_path())
    try:
        yield conn
    finally:
        conn.close()


def init_db():
    """Initialize the database with required tables. Safe to call repeatedly."""
    with get_db() as conn:
        cursor = conn.cursor()

        # Whole-record JSON plus the columns the store filters and sweeps on
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS registrations (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                current_stage TEXT NOT NULL,
                status TEXT NOT NULL,
                expire_date TEXT,
                is_expired BOOLEAN DEFAULT FALSE,
                pinned BOOLEAN DEFAULT FALSE,
                cancelled_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 0,
                data TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS renewal_payments (
                id TEXT PRIMARY KEY,
                registration_id TEXT NOT NULL,
                amount REAL NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                receipt_reference TEXT,
                approved_by TEXT,
                approved_at TEXT,
                rejected_by TEXT,
                rejected_at TEXT,
                extension_days INTEGER,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_registrations_user ON registrations(user_id, created_at DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_registrations_expiry ON registrations(is_expired, expire_date)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_renewal_registration ON renewal_payments(registration_id, created_at DESC)')

        # At most one outstanding renewal per registration
        cursor.execute('''
            CREATE UNIQUE INDEX IF NOT EXISTS idx_renewal_one_pending
            ON renewal_payments(registration_id) WHERE status = 'pending'
        ''')

        conn.commit()


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            required_tables = ['registrations', 'renewal_payments']
            return all(table in table_names for table in required_tables)
    except sqlite3.Error:
        return False
