"""
Registration service: every mutation loads the record, runs the pure
lifecycle/expiry function, persists the whole record and only then publishes
a lifecycle event. A failed write publishes nothing.

All functions take an optional ``now`` so callers and tests can pin the clock.
"""

import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from . import dao, events, expiry, heartbeat, lifecycle
from .blobs import collect_blob_refs, get_blob_store
from .config import get_default_expire_days, get_sweep_interval, is_sweep_enabled
from .errors import ConflictError, NotFoundError, StageValidationError
from .events import ADMIN_ACTION_COMPLETED, REGISTRATION_REMOVED, REGISTRATION_UPDATED
from .schema import COMPANY_DETAILS, CONTACT_DETAILS, Registration, RenewalPayment, utc_now
from ..util.logging import audit_event, logger

SWEEP_TASK = "expiry_sweep"


def _now(now: Optional[datetime] = None) -> datetime:
    return now or utc_now()


def _publish(event_type: str, registration_id: str, event_kind: str, **extra):
    payload = {"registrationId": registration_id, "eventKind": event_kind}
    payload.update(extra)
    events.publish(event_type, payload)


def _load(registration_id: str) -> Registration:
    record = dao.get_registration(registration_id)
    if record is None:
        raise NotFoundError("registration", registration_id)
    return record


def _load_payment(payment_id: str) -> RenewalPayment:
    payment = dao.get_renewal_payment(payment_id)
    if payment is None:
        raise NotFoundError("renewal payment", payment_id)
    return payment


# --- Registrations ---

def get_registration(registration_id: str, now: Optional[datetime] = None) -> Registration:
    """Current record with the expiry flag evaluated at read time."""
    return expiry.refresh_expiry(_load(registration_id), _now(now))


def put_registration(registration_id: str, record: Union[Registration, Dict[str, Any]],
                     expected_version: Optional[int] = None, now: Optional[datetime] = None) -> Registration:
    """Whole-record replacement.

    Stage and status are normalized and re-derived before the write; a stage
    behind the stored one is refused.
    """
    now = _now(now)
    if isinstance(record, dict):
        data = dict(record)
        data.setdefault("id", registration_id)
        try:
            record = Registration.from_dict(data)
        except (TypeError, ValueError) as e:
            raise StageValidationError(f"invalid registration: {e}")
    if record.id != registration_id:
        raise StageValidationError(f"record id {record.id} does not match {registration_id}", ["id"])

    existing = _load(registration_id)
    incoming = lifecycle.normalize_stage(record.current_stage)
    if lifecycle.stage_index(incoming) < lifecycle.stage_index(existing.current_stage):
        raise ConflictError(
            f"stage cannot move back from {existing.current_stage} to {incoming}"
        )

    updated = lifecycle.recompute(record)
    updated.created_at = existing.created_at
    updated.updated_at = now
    if expected_version is None:
        updated.version = existing.version

    saved = dao.save_registration(updated, expected_version)
    _publish(REGISTRATION_UPDATED, saved.id, "replaced")
    return saved


def list_registrations(user_id: Optional[str] = None, status: Optional[str] = None, stage: Optional[str] = None,
                       expired: Optional[bool] = None, pinned: Optional[bool] = None,
                       include_cancelled: bool = False, now: Optional[datetime] = None) -> List[Registration]:
    """Registrations newest first; ``expired`` filters on the read-time predicate."""
    now = _now(now)
    records = [
        expiry.refresh_expiry(record, now)
        for record in dao.list_registrations(user_id=user_id, status=status, stage=stage, pinned=pinned,
                                             include_cancelled=include_cancelled)
    ]
    if expired is not None:
        records = [record for record in records if expiry.is_expired(record, now) == expired]
    return records


def create_registration(user_id: Optional[str], fields: Dict[str, Any],
                        now: Optional[datetime] = None) -> Registration:
    """Start a registration from the contact-details submission."""
    now = _now(now)
    draft = Registration(id=str(uuid.uuid4()), user_id=user_id, created_at=now, updated_at=now)
    record = lifecycle.submit_stage(draft, CONTACT_DETAILS, fields, now)

    saved = dao.insert_registration(record)
    audit_event("registration.created", {"registration_id": saved.id, "user_id": user_id}, fields)
    _publish(REGISTRATION_UPDATED, saved.id, "created")
    return saved


def submit_stage(registration_id: str, stage: str, fields: Dict[str, Any],
                 now: Optional[datetime] = None) -> Registration:
    now = _now(now)
    record = _load(registration_id)
    updated = lifecycle.submit_stage(record, stage, fields, now)

    saved = dao.save_registration(updated)
    logger.log_transition(saved.id, record.current_stage, saved.current_stage, saved.status)
    _publish(REGISTRATION_UPDATED, saved.id, "stage-submitted", stage=stage)
    return saved


def begin_update(registration_id: str, now: Optional[datetime] = None) -> Registration:
    """Customer re-opens company details for editing."""
    now = _now(now)
    updated = lifecycle.begin_update(_load(registration_id), now)
    saved = dao.save_registration(updated)
    _publish(REGISTRATION_UPDATED, saved.id, "update-started", stage=COMPANY_DETAILS)
    return saved


def apply_staff_action(registration_id: str, action: str, actor: str, now: Optional[datetime] = None,
                       **params) -> Registration:
    """Apply a staff action. Completing a registration starts its secretary period
    (``expire_days`` param, default DEFAULT_EXPIRE_DAYS) unless one is already set.
    """
    now = _now(now)
    if not actor or not str(actor).strip():
        raise StageValidationError("actor is required", ["actor"])

    record = _load(registration_id)
    updated, changed = lifecycle.apply_staff_action(record, action, now)
    logger.log_staff_action(registration_id, action, actor, changed)
    if not changed:
        return record

    if action == "complete-registration" and updated.expire_date is None:
        days = params.get("expire_days") or get_default_expire_days()
        updated = expiry.start_period(updated, now, days)

    saved = dao.save_registration(updated)
    _publish(ADMIN_ACTION_COMPLETED, saved.id, action, actor=actor)
    return saved


def cancel_registration(registration_id: str, now: Optional[datetime] = None) -> Registration:
    """Soft delete by the customer; the record leaves the default listing."""
    now = _now(now)
    record = _load(registration_id)
    if record.cancelled_at is not None:
        return record

    saved = dao.save_registration(lifecycle.cancel(record, now))
    audit_event("registration.cancelled", {"registration_id": saved.id, "user_id": saved.user_id})
    _publish(REGISTRATION_REMOVED, saved.id, "cancelled")
    return saved


def delete_registration(registration_id: str) -> int:
    """Administrative physical delete. Returns the number of blobs cleaned up.

    Blob cleanup runs after the delete and never fails it.
    """
    record = _load(registration_id)
    refs = collect_blob_refs(record.payload)
    for payment in dao.list_renewal_payments(registration_id=registration_id):
        refs.extend(collect_blob_refs(payment.receipt_reference))

    if not dao.delete_registration(registration_id):
        raise NotFoundError("registration", registration_id)

    store = get_blob_store()
    cleaned = sum(1 for ref in refs if store.delete_quietly(ref))
    audit_event("registration.deleted", {"registration_id": registration_id, "blobs": len(refs),
                                         "blobs_deleted": cleaned})
    _publish(REGISTRATION_REMOVED, registration_id, "deleted")
    return cleaned


def set_pinned(registration_id: str, pinned: bool) -> Registration:
    """Staff pin. Not a content change, so ``updated_at`` is left alone."""
    record = _load(registration_id)
    if record.pinned == bool(pinned):
        return record
    record.pinned = bool(pinned)
    saved = dao.save_registration(record)
    _publish(REGISTRATION_UPDATED, saved.id, "pinned" if pinned else "unpinned")
    return saved


def set_noted(registration_id: str, noted: bool, now: Optional[datetime] = None) -> Registration:
    now = _now(now)
    record = _load(registration_id)
    record.noted = bool(noted)
    record.secretary_records_noted_at = now if noted else None
    record.updated_at = now
    saved = dao.save_registration(record)
    _publish(REGISTRATION_UPDATED, saved.id, "noted" if noted else "unnoted")
    return saved


def get_content_view(registration_id: str, stage: str, now: Optional[datetime] = None) -> lifecycle.ContentView:
    now = _now(now)
    return lifecycle.content_view(_load(registration_id), stage, now)


def check_expiry(registration_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Evaluate expiry for one registration and persist the flag if it just flipped."""
    now = _now(now)
    record = _load(registration_id)
    expired = expiry.is_expired(record, now)

    flipped = expiry.needs_sweep(record, now) and dao.mark_expired(registration_id)
    if flipped:
        _publish(REGISTRATION_UPDATED, registration_id, "expired")

    return {
        "registrationId": registration_id,
        "isExpired": expired,
        "expireDate": record.expire_date.isoformat() if record.expire_date else None,
        "daysRemaining": expiry.days_remaining(record, now),
        "updated": bool(flipped),
    }


# --- Renewal payments ---

def create_renewal_payment(registration_id: str, amount: float, receipt_reference: Any = None,
                           now: Optional[datetime] = None) -> RenewalPayment:
    """Customer submits a renewal payment for an expired registration."""
    now = _now(now)
    record = _load(registration_id)
    expiry.ensure_renewable(record, dao.get_pending_renewal(registration_id), now)

    payment = dao.insert_renewal_payment(
        expiry.new_renewal_payment(registration_id, amount, receipt_reference, now)
    )
    audit_event("renewal.submitted", {"payment_id": payment.id, "registration_id": registration_id},
                {"amount": payment.amount, "receiptReference": receipt_reference})
    _publish(REGISTRATION_UPDATED, registration_id, "renewal-submitted", paymentId=payment.id)
    return payment


def approve_renewal_payment(payment_id: str, approver_id: str, extension_days: Optional[int] = None,
                            now: Optional[datetime] = None) -> Tuple[RenewalPayment, Registration]:
    now = _now(now)
    payment = _load_payment(payment_id)
    record = _load(payment.registration_id)

    approved, renewed = expiry.approve_renewal(payment, record, approver_id, now, extension_days)
    saved = dao.save_renewal_decision(approved, renewed)

    logger.log_renewal_decision(payment_id, record.id, "approved", approver_id, {
        "extension_days": extension_days,
        "secretary_period_year": saved.secretary_period_year,
    })
    _publish(ADMIN_ACTION_COMPLETED, record.id, "renewal-approved", paymentId=payment_id, actor=approver_id)
    return approved, saved


def reject_renewal_payment(payment_id: str, rejector_id: str, now: Optional[datetime] = None) -> RenewalPayment:
    now = _now(now)
    rejected = expiry.reject_renewal(_load_payment(payment_id), rejector_id, now)
    dao.save_renewal_decision(rejected)

    logger.log_renewal_decision(payment_id, rejected.registration_id, "rejected", rejector_id)
    _publish(ADMIN_ACTION_COMPLETED, rejected.registration_id, "renewal-rejected",
             paymentId=payment_id, actor=rejector_id)
    return rejected


def get_renewal_payment(payment_id: str) -> RenewalPayment:
    return _load_payment(payment_id)


def list_renewal_payments(registration_id: Optional[str] = None, status: Optional[str] = None) -> List[RenewalPayment]:
    return dao.list_renewal_payments(registration_id=registration_id, status=status)


# --- Expiry sweep ---

def sweep_expired(now: Optional[datetime] = None) -> int:
    """Set the stored flag on every lapsed registration. Returns how many were updated."""
    now = _now(now)
    start_time = time.time()

    candidates = dao.list_sweep_candidates()
    updated = 0
    for record in candidates:
        if not expiry.needs_sweep(record, now):
            continue
        # Another sweep may have got there first
        if dao.mark_expired(record.id):
            updated += 1
            _publish(REGISTRATION_UPDATED, record.id, "expired")

    logger.log_sweep(len(candidates), updated, start_time, time.time())
    return updated


def register_sweep_task() -> bool:
    """Schedule the sweep on the heartbeat when EXPIRY_SWEEP_ENABLED=true."""
    if not is_sweep_enabled():
        logger.info("Expiry sweep disabled (EXPIRY_SWEEP_ENABLED=false)")
        return False
    heartbeat.register_task(SWEEP_TASK, get_sweep_interval(), sweep_expired)
    return True
