"""
Registration record store on SQLite.

Registrations are stored whole (JSON) with a few denormalized columns for
filtering and the expiry sweep. Writes are whole-record replacements; the
``version`` column increments on every write and can be used as an optional
optimistic check.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional

from .db import get_db, init_db
from .errors import ConflictError, NotFoundError, TransientStoreError
from .schema import Registration, RenewalPayment, RENEWAL_PENDING
from ..util.logging import logger


@contextmanager
def _store(operation: str):
    """Translate sqlite3 failures into the core error taxonomy."""
    try:
        yield
    except sqlite3.IntegrityError as e:
        logger.log_operation(f"store.{operation}", "conflict", {"error": str(e)[:100]})
        raise ConflictError(f"{operation} violates a store constraint: {e}") from e
    except sqlite3.Error as e:
        logger.error(f"Database error during {operation}: {e}")
        raise TransientStoreError(f"{operation} failed: {e}") from e


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _registration_row(reg: Registration):
    return (
        reg.user_id,
        reg.current_stage,
        reg.status,
        _iso(reg.expire_date),
        reg.is_expired,
        reg.pinned,
        _iso(reg.cancelled_at),
        _iso(reg.created_at),
        _iso(reg.updated_at),
        reg.version,
        json.dumps(reg.to_dict()),
    )


def _load_registration(data: str, version: int) -> Registration:
    reg = Registration.from_dict(json.loads(data))
    reg.version = version
    return reg


def ensure_schema():
    with _store("init"):
        init_db()


# --- Registrations ---

def get_registration(registration_id: str) -> Optional[Registration]:
    """Get a registration by id, or None when it does not exist."""
    with _store("get_registration"):
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT data, version FROM registrations WHERE id = ?", (registration_id,))
            row = cursor.fetchone()

    if row is None:
        return None
    return _load_registration(*row)


def insert_registration(reg: Registration) -> Registration:
    """Insert a new registration. The id must be unused."""
    reg.version = 1
    with _store("insert_registration"):
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                '''INSERT INTO registrations (user_id, current_stage, status, expire_date, is_expired, pinned,
                       cancelled_at, created_at, updated_at, version, data, id)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
                _registration_row(reg) + (reg.id,)
            )
            conn.commit()

    logger.log_operation("store.insert_registration", "success", {"registration_id": reg.id})
    return reg


def _update_registration(cursor: sqlite3.Cursor, reg: Registration, expected_version: Optional[int]) -> Registration:
    current_version = reg.version if expected_version is None else expected_version
    updated = Registration.from_dict(reg.to_dict())
    updated.version = current_version + 1

    query = '''UPDATE registrations SET user_id = ?, current_stage = ?, status = ?, expire_date = ?, is_expired = ?,
                   pinned = ?, cancelled_at = ?, created_at = ?, updated_at = ?, version = ?, data = ?
               WHERE id = ?'''
    params = _registration_row(updated) + (reg.id,)
    if expected_version is not None:
        query += " AND version = ?"
        params += (expected_version,)
    else:
        # Last write wins: take whatever version is stored
        cursor.execute("SELECT version FROM registrations WHERE id = ?", (reg.id,))
        row = cursor.fetchone()
        if row is None:
            raise NotFoundError("registration", reg.id)
        updated.version = row[0] + 1
        params = _registration_row(updated) + (reg.id,)

    cursor.execute(query, params)
    if cursor.rowcount == 0:
        cursor.execute("SELECT version FROM registrations WHERE id = ?", (reg.id,))
        row = cursor.fetchone()
        if row is None:
            raise NotFoundError("registration", reg.id)
        raise ConflictError(
            f"registration {reg.id} is at version {row[0]}, expected {expected_version}"
        )
    return updated


def save_registration(reg: Registration, expected_version: Optional[int] = None) -> Registration:
    """Replace the whole stored record. Returns the record with its new version."""
    with _store("save_registration"):
        with get_db() as conn:
            cursor = conn.cursor()
            saved = _update_registration(cursor, reg, expected_version)
            conn.commit()
    return saved


def list_registrations(user_id: Optional[str] = None, status: Optional[str] = None, stage: Optional[str] = None,
                       pinned: Optional[bool] = None, include_cancelled: bool = False) -> List[Registration]:
    """List registrations, newest first."""
    query = "SELECT data, version FROM registrations"
    clauses = []
    params = []
    if user_id:
        clauses.append("user_id = ?")
        params.append(user_id)
    if status:
        clauses.append("status = ?")
        params.append(status)
    if stage:
        clauses.append("current_stage = ?")
        params.append(stage)
    if pinned is not None:
        clauses.append("pinned = ?")
        params.append(pinned)
    if not include_cancelled:
        clauses.append("cancelled_at IS NULL")
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY created_at DESC"

    with _store("list_registrations"):
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            rows = cursor.fetchall()

    return [_load_registration(data, version) for data, version in rows]


def delete_registration(registration_id: str) -> bool:
    """Physically delete a registration and its renewal payments."""
    with _store("delete_registration"):
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM renewal_payments WHERE registration_id = ?", (registration_id,))
            cursor.execute("DELETE FROM registrations WHERE id = ?", (registration_id,))
            deleted = cursor.rowcount > 0
            conn.commit()
    return deleted


def list_sweep_candidates() -> List[Registration]:
    """Registrations with an expire date whose stored flag is still false."""
    with _store("list_sweep_candidates"):
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT data, version FROM registrations WHERE expire_date IS NOT NULL AND is_expired = 0"
            )
            rows = cursor.fetchall()
    return [_load_registration(data, version) for data, version in rows]


def mark_expired(registration_id: str) -> bool:
    """Set the stored expiry flag. Only ever writes true, so concurrent sweeps agree."""
    with _store("mark_expired"):
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                '''UPDATE registrations
                   SET is_expired = 1, data = json_set(data, '$.isExpired', json('true')), version = version + 1
                   WHERE id = ? AND is_expired = 0''',
                (registration_id,)
            )
            changed = cursor.rowcount > 0
            conn.commit()
    return changed


def get_registration_count() -> int:
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM registrations WHERE cancelled_at IS NULL")
            return cursor.fetchone()[0]
    except sqlite3.Error as e:
        logger.error(f"Failed to count registrations: {e}")
        return 0


# --- Renewal payments ---

_PAYMENT_COLUMNS = ("id, registration_id, amount, status, receipt_reference, approved_by, approved_at, "
                    "rejected_by, rejected_at, extension_days, created_at, updated_at")


def _load_payment(row) -> RenewalPayment:
    (payment_id, registration_id, amount, status, receipt, approved_by, approved_at,
     rejected_by, rejected_at, extension_days, created_at, updated_at) = row
    return RenewalPayment.from_dict({
        "id": payment_id,
        "registration_id": registration_id,
        "amount": amount,
        "status": status,
        "receipt_reference": json.loads(receipt) if receipt else None,
        "approved_by": approved_by,
        "approved_at": approved_at,
        "rejected_by": rejected_by,
        "rejected_at": rejected_at,
        "extension_days": extension_days,
        "created_at": created_at,
        "updated_at": updated_at,
    })


def insert_renewal_payment(payment: RenewalPayment) -> RenewalPayment:
    """Insert a renewal payment. A second pending payment for the same registration is a conflict."""
    with _store("insert_renewal_payment"):
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"INSERT INTO renewal_payments ({_PAYMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (payment.id, payment.registration_id, payment.amount, payment.status,
                 json.dumps(payment.receipt_reference) if payment.receipt_reference is not None else None,
                 payment.approved_by, _iso(payment.approved_at), payment.rejected_by, _iso(payment.rejected_at),
                 payment.extension_days, _iso(payment.created_at), _iso(payment.updated_at))
            )
            conn.commit()
    return payment


def get_renewal_payment(payment_id: str) -> Optional[RenewalPayment]:
    with _store("get_renewal_payment"):
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_PAYMENT_COLUMNS} FROM renewal_payments WHERE id = ?", (payment_id,))
            row = cursor.fetchone()
    return _load_payment(row) if row else None


def get_pending_renewal(registration_id: str) -> Optional[RenewalPayment]:
    with _store("get_pending_renewal"):
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_PAYMENT_COLUMNS} FROM renewal_payments WHERE registration_id = ? AND status = ?",
                (registration_id, RENEWAL_PENDING)
            )
            row = cursor.fetchone()
    return _load_payment(row) if row else None


def list_renewal_payments(registration_id: Optional[str] = None, status: Optional[str] = None) -> List[RenewalPayment]:
    """List renewal payments, newest first."""
    query = f"SELECT {_PAYMENT_COLUMNS} FROM renewal_payments"
    clauses = []
    params = []
    if registration_id:
        clauses.append("registration_id = ?")
        params.append(registration_id)
    if status:
        clauses.append("status = ?")
        params.append(status)
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY created_at DESC"

    with _store("list_renewal_payments"):
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            rows = cursor.fetchall()
    return [_load_payment(row) for row in rows]


def save_renewal_decision(payment: RenewalPayment, registration: Optional[Registration] = None) -> Optional[Registration]:
    """Persist a terminal renewal decision and, for approvals, the updated registration in one transaction.

    The payment row is only updated while it is still pending; a concurrent
    decision makes this a conflict and nothing is written.
    """
    saved = None
    with _store("save_renewal_decision"):
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                '''UPDATE renewal_payments
                   SET status = ?, approved_by = ?, approved_at = ?, rejected_by = ?, rejected_at = ?,
                       extension_days = ?, updated_at = ?
                   WHERE id = ? AND status = ?''',
                (payment.status, payment.approved_by, _iso(payment.approved_at), payment.rejected_by,
                 _iso(payment.rejected_at), payment.extension_days, _iso(payment.updated_at),
                 payment.id, RENEWAL_PENDING)
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise ConflictError(f"renewal payment {payment.id} is no longer pending")

            if registration is not None:
                saved = _update_registration(cursor, registration, None)
            conn.commit()
    return saved
