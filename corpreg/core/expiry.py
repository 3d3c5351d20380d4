"""
Secretary period expiry and renewal decisions.

The stored ``is_expired`` flag is only a cache: a record whose expire date has
passed is expired at read time whether or not the sweep has run. Renewal
approval starts a fresh period at the approval instant; lapsed time is not
carried forward.
"""

import copy
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional, Tuple

from .errors import ConflictError, StageValidationError
from .schema import Registration, RenewalPayment, RENEWAL_APPROVED, RENEWAL_REJECTED


def is_expired(record: Registration, now: datetime) -> bool:
    """Stored flag OR a fresh comparison of the expire date against ``now``."""
    if record.is_expired:
        return True
    return record.expire_date is not None and now > record.expire_date


def refresh_expiry(record: Registration, now: datetime) -> Registration:
    """Bring the cached flag up to date. Never flips expired back to active."""
    if record.is_expired or not is_expired(record, now):
        return record
    updated = copy.deepcopy(record)
    updated.is_expired = True
    return updated


def needs_sweep(record: Registration, now: datetime) -> bool:
    """True when the stored flag lags behind the expire date."""
    return record.expire_date is not None and not record.is_expired and now > record.expire_date


def start_period(record: Registration, now: datetime, days: int) -> Registration:
    """Begin a secretary period of ``days`` at ``now``."""
    if int(days) < 1:
        raise StageValidationError("expire days must be >= 1", ["expireDays"])
    updated = copy.deepcopy(record)
    updated.register_start_date = now
    updated.expire_days = int(days)
    updated.expire_date = now + timedelta(days=int(days))
    updated.is_expired = False
    return updated


def days_remaining(record: Registration, now: datetime) -> Optional[int]:
    """Whole days until expiry (negative once lapsed), or None without an expire date."""
    if record.expire_date is None:
        return None
    return (record.expire_date - now).days


def parse_period_year(value: Any) -> int:
    """Secretary period counter; absent or unparsable values count as 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(str(value).strip())
    except ValueError:
        return 0


def ensure_renewable(record: Registration, pending: Optional[RenewalPayment], now: datetime):
    """A renewal may be submitted only for an expired registration with nothing outstanding."""
    if not is_expired(record, now):
        raise ConflictError(f"registration {record.id} is not expired")
    if pending is not None:
        raise ConflictError(f"registration {record.id} already has a pending renewal payment {pending.id}")


def new_renewal_payment(registration_id: str, amount: float, receipt_reference: Any, now: datetime) -> RenewalPayment:
    """Create a pending renewal payment."""
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise StageValidationError("amount must be a number", ["amount"])
    if amount <= 0:
        raise StageValidationError("amount must be positive", ["amount"])

    return RenewalPayment(
        id=str(uuid.uuid4()),
        registration_id=registration_id,
        amount=amount,
        receipt_reference=receipt_reference,
        created_at=now,
        updated_at=now,
    )


def _ensure_pending(payment: RenewalPayment):
    if not payment.is_pending:
        raise ConflictError(f"renewal payment {payment.id} is already {payment.status}")


def _ensure_actor(actor_id: Optional[str], field: str):
    if not actor_id or not str(actor_id).strip():
        raise StageValidationError(f"{field} is required", [field])


def approve_renewal(payment: RenewalPayment, registration: Registration, approver_id: str, now: datetime,
                    extension_days: Optional[int] = None) -> Tuple[RenewalPayment, Registration]:
    """Approve a pending renewal and extend the registration.

    With ``extension_days`` the period restarts at ``now``. The secretary
    period counter always advances by one.
    """
    _ensure_pending(payment)
    _ensure_actor(approver_id, "approvedBy")
    if extension_days is not None and int(extension_days) < 1:
        raise StageValidationError("extension days must be >= 1", ["extensionDays"])

    approved = copy.deepcopy(payment)
    approved.status = RENEWAL_APPROVED
    approved.approved_by = approver_id
    approved.approved_at = now
    approved.updated_at = now
    approved.extension_days = int(extension_days) if extension_days is not None else None

    if extension_days is not None:
        renewed = start_period(registration, now, extension_days)
    else:
        renewed = copy.deepcopy(registration)
    renewed.secretary_period_year = parse_period_year(registration.secretary_period_year) + 1
    renewed.updated_at = now

    return approved, renewed


def reject_renewal(payment: RenewalPayment, rejector_id: str, now: datetime) -> RenewalPayment:
    """Reject a pending renewal. The registration is left untouched."""
    _ensure_pending(payment)
    _ensure_actor(rejector_id, "rejectedBy")

    rejected = copy.deepcopy(payment)
    rejected.status = RENEWAL_REJECTED
    rejected.rejected_by = rejector_id
    rejected.rejected_at = now
    rejected.updated_at = now
    return rejected
