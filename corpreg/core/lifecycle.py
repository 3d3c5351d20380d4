"""
Registration lifecycle state machine.

Pure functions of (record, action, now) -> new record. Nothing here touches
the store or the event bus; ``service`` does that around these functions.

Stages advance contact-details -> company-details -> documentation ->
incorporate. The stage index moves forward when the customer submits a
stage, but each stage's content stays hidden behind a staff-controlled gate
flag. ``derive_status`` is the single place the customer-facing status is
computed from stage and flags.
"""

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import ConflictError, StageValidationError
from .expiry import is_expired
from .schema import (
    Registration,
    STAGES, STATUSES,
    CONTACT_DETAILS, COMPANY_DETAILS, DOCUMENTATION, INCORPORATE,
    PAYMENT_PROCESSING, PAYMENT_REJECTED, DOCUMENTATION_PROCESSING, INCORPORATION_PROCESSING, COMPLETED,
)

REQUIRED_FIELDS = {
    CONTACT_DETAILS: ("companyName", "contactPersonName", "contactPersonEmail", "contactPersonPhone",
                      "selectedPackage", "paymentMethod"),
    COMPANY_DETAILS: ("companyNameEnglish",),
    DOCUMENTATION: (),
    INCORPORATE: (),
}

# Flag that must be true before a stage's content is shown to the customer
STAGE_GATES = {
    CONTACT_DETAILS: None,
    COMPANY_DETAILS: "payment_approved",
    DOCUMENTATION: "documents_published",
    INCORPORATE: "registration_completed",
}

STATUS_TITLES = {
    PAYMENT_PROCESSING: "Payment Processing",
    PAYMENT_REJECTED: "Payment Rejected",
    DOCUMENTATION_PROCESSING: "Documentation Processing",
    INCORPORATION_PROCESSING: "Incorporation Processing",
    COMPLETED: "Registration Completed",
}

# Content view kinds
VIEW_CONTENT = "content"
VIEW_PROCESSING = "processing"
VIEW_RENEWAL_REQUIRED = "renewal-required"
VIEW_REJECTED = "rejected"
VIEW_REMOVED = "removed"


@dataclass
class ContentView:
    """What a customer may see for one stage of a registration."""
    registration_id: str
    stage: str
    kind: str
    status: str
    title: str

    @property
    def granted(self) -> bool:
        return self.kind == VIEW_CONTENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registrationId": self.registration_id,
            "stage": self.stage,
            "kind": self.kind,
            "status": self.status,
            "title": self.title,
            "granted": self.granted,
        }


def normalize_stage(value: Optional[str]) -> str:
    """Unknown stage names fall back to the first stage."""
    return value if value in STAGES else CONTACT_DETAILS


def normalize_status(value: Optional[str]) -> str:
    """Unknown statuses fall back to payment-processing, never to completed."""
    return value if value in STATUSES else PAYMENT_PROCESSING


def stage_index(stage: Optional[str]) -> int:
    return STAGES.index(normalize_stage(stage))


def next_stage(stage: str) -> str:
    """The stage after ``stage``; the last stage maps to itself."""
    index = stage_index(stage)
    return STAGES[min(index + 1, len(STAGES) - 1)]


def status_title(status: Optional[str]) -> str:
    return STATUS_TITLES.get(normalize_status(status), "Processing")


def derive_status(stage: str, flags: Dict[str, bool], current_status: Optional[str] = None) -> str:
    """Compute the customer-facing status from the stage and approval flags.

    An explicit payment rejection is kept whatever the flags say, and a
    completed registration stays completed. Staff leave a rejection by
    setting another status.
    """
    stage = normalize_stage(stage)
    current_status = normalize_status(current_status) if current_status is not None else None

    if flags.get("registration_completed") or current_status == COMPLETED:
        return COMPLETED
    if current_status == PAYMENT_REJECTED:
        return PAYMENT_REJECTED

    if stage in (CONTACT_DETAILS, COMPANY_DETAILS):
        return PAYMENT_PROCESSING
    if stage == DOCUMENTATION:
        return INCORPORATION_PROCESSING if flags.get("documents_published") else DOCUMENTATION_PROCESSING
    return INCORPORATION_PROCESSING


def recompute(record: Registration) -> Registration:
    """Return a copy with stage/status normalized and status re-derived."""
    updated = copy.deepcopy(record)
    updated.current_stage = normalize_stage(record.current_stage)
    updated.status = derive_status(updated.current_stage, updated.flags(), record.status)
    return updated


def is_gate_open(record: Registration, stage: str) -> bool:
    if stage == INCORPORATE and normalize_status(record.status) == COMPLETED:
        return True
    gate = STAGE_GATES[normalize_stage(stage)]
    return gate is None or bool(getattr(record, gate))


def can_update_information(record: Registration) -> bool:
    """Customer may go back to company details from documentation onwards until the details are locked."""
    return (
        stage_index(record.current_stage) >= stage_index(DOCUMENTATION)
        and record.cancelled_at is None
        and normalize_status(record.status) != COMPLETED
        and not record.eroc_registered
        and not record.balance_payment_approved
        and not record.company_details_locked
    )


def can_cancel(record: Registration) -> bool:
    return normalize_status(record.status) == PAYMENT_REJECTED or record.company_details_rejected


def _ensure_active(record: Registration):
    if record.cancelled_at is not None:
        raise ConflictError(f"registration {record.id} has been cancelled")


def _ensure_not_expired(record: Registration, now: datetime):
    if is_expired(record, now):
        raise ConflictError(f"registration {record.id} secretary period has expired; renewal required")


def _workflow_keys() -> set:
    sample = Registration(id="_").to_dict()
    return set(sample) | {"_id", "payload"}


_WORKFLOW_KEYS = _workflow_keys()


def submit_stage(record: Registration, stage: str, fields: Dict[str, Any], now: datetime) -> Registration:
    """Customer submits the data for ``stage``.

    Merges ``fields`` into the payload (last write wins) and advances the
    stage to the one after ``stage`` unless the record is already further
    along. Replaying a submission never moves the stage backwards.
    """
    if stage not in STAGES:
        raise StageValidationError(f"unknown stage: {stage}")
    _ensure_active(record)
    if normalize_status(record.status) == PAYMENT_REJECTED:
        raise ConflictError(f"registration {record.id} payment was rejected")
    _ensure_not_expired(record, now)

    current = normalize_stage(record.current_stage)
    if stage_index(stage) > stage_index(current):
        raise ConflictError(f"stage {stage} has not been reached (current: {current})")
    if not is_gate_open(record, stage):
        raise ConflictError(f"stage {stage} is still being processed")

    reserved = sorted(k for k in fields if k in _WORKFLOW_KEYS)
    if reserved:
        raise StageValidationError(f"fields are controlled by the workflow: {', '.join(reserved)}")

    merged = {**record.payload, **fields}
    missing = [name for name in REQUIRED_FIELDS[stage] if merged.get(name) in (None, "", [])]
    if missing:
        raise StageValidationError(f"missing required fields for {stage}: {', '.join(missing)}", missing)

    if stage == COMPANY_DETAILS:
        if record.company_details_locked:
            raise ConflictError("company details are locked")
        if stage_index(current) > stage_index(COMPANY_DETAILS) and not can_update_information(record):
            raise ConflictError("company details can no longer be updated")
    if stage == DOCUMENTATION and record.company_details_rejected:
        raise ConflictError("company details were rejected and must be resubmitted first")

    updated = copy.deepcopy(record)
    updated.payload = merged
    updated.current_stage = STAGES[max(stage_index(current), stage_index(next_stage(stage)))]
    updated.is_updating = False
    if stage == COMPANY_DETAILS:
        updated.company_details_rejected = False
    updated.status = derive_status(updated.current_stage, updated.flags(), record.status)
    updated.updated_at = now
    return updated


def begin_update(record: Registration, now: datetime) -> Registration:
    """"Update Information": mark the record as re-editing company details.

    The stored stage is left alone so progress survives an abandoned edit.
    """
    _ensure_active(record)
    _ensure_not_expired(record, now)
    if not can_update_information(record):
        raise ConflictError("company details can no longer be updated")
    updated = copy.deepcopy(record)
    updated.is_updating = True
    updated.updated_at = now
    return updated


def cancel(record: Registration, now: datetime) -> Registration:
    """Customer withdraws a rejected registration."""
    if record.cancelled_at is not None:
        return record
    if not can_cancel(record):
        raise ConflictError("only rejected registrations can be cancelled")
    updated = copy.deepcopy(record)
    updated.cancelled_at = now
    updated.updated_at = now
    return updated


# --- Staff actions ---

def _require_stage(record: Registration, stage: str, action: str):
    if stage_index(record.current_stage) < stage_index(stage):
        raise ConflictError(f"{action} requires the registration to reach {stage}")


def _approve_payment(record: Registration) -> bool:
    if normalize_status(record.status) == PAYMENT_REJECTED:
        raise ConflictError("payment was rejected")
    return _set_flag(record, "payment_approved")


def _reject_payment(record: Registration) -> bool:
    if record.registration_completed or normalize_status(record.status) == COMPLETED:
        raise ConflictError("registration is already completed")
    if normalize_status(record.status) == PAYMENT_REJECTED:
        return False
    record.status = PAYMENT_REJECTED
    return True


def _approve_company_details(record: Registration) -> bool:
    _require_stage(record, DOCUMENTATION, "approve-company-details")
    if record.company_details_rejected:
        raise ConflictError("company details are rejected and awaiting resubmission")
    return _set_flag(record, "details_approved")


def _reject_company_details(record: Registration) -> bool:
    _require_stage(record, DOCUMENTATION, "reject-company-details")
    if record.details_approved:
        raise ConflictError("company details are already approved")
    return _set_flag(record, "company_details_rejected")


def _lock_company_details(record: Registration) -> bool:
    return _set_flag(record, "company_details_locked")


def _approve_documents(record: Registration) -> bool:
    _require_stage(record, DOCUMENTATION, "approve-documents")
    return _set_flag(record, "documents_approved")


def _publish_documents(record: Registration) -> bool:
    _require_stage(record, DOCUMENTATION, "publish-documents")
    return _set_flag(record, "documents_published")


def _acknowledge_documents(record: Registration) -> bool:
    if not record.documents_published:
        raise ConflictError("documents have not been published")
    return _set_flag(record, "documents_acknowledged")


def _register_eroc(record: Registration) -> bool:
    return _set_flag(record, "eroc_registered")


def _approve_balance_payment(record: Registration) -> bool:
    return _set_flag(record, "balance_payment_approved")


def _complete_registration(record: Registration) -> bool:
    _require_stage(record, INCORPORATE, "complete-registration")
    return _set_flag(record, "registration_completed")


def _set_flag(record: Registration, flag: str) -> bool:
    if getattr(record, flag):
        return False
    setattr(record, flag, True)
    return True


STAFF_ACTIONS: Dict[str, Callable[[Registration], bool]] = {
    "approve-payment": _approve_payment,
    "reject-payment": _reject_payment,
    "approve-company-details": _approve_company_details,
    "reject-company-details": _reject_company_details,
    "lock-company-details": _lock_company_details,
    "approve-documents": _approve_documents,
    "publish-documents": _publish_documents,
    "acknowledge-documents": _acknowledge_documents,
    "register-eroc": _register_eroc,
    "approve-balance-payment": _approve_balance_payment,
    "complete-registration": _complete_registration,
}


def apply_staff_action(record: Registration, action: str, now: datetime) -> Tuple[Registration, bool]:
    """Apply a staff approval/rejection. Returns the new record and whether anything changed.

    Repeating an action that already took effect is a no-op.
    """
    handler = STAFF_ACTIONS.get(action)
    if handler is None:
        raise StageValidationError(f"unknown action: {action}")
    _ensure_active(record)
    if action != "reject-payment" and normalize_status(record.status) == PAYMENT_REJECTED:
        raise ConflictError(f"registration {record.id} payment was rejected")

    updated = copy.deepcopy(record)
    changed = handler(updated)
    if not changed:
        return record, False
    updated.status = derive_status(updated.current_stage, updated.flags(), updated.status)
    updated.updated_at = now
    return updated, True


# --- Read side ---

def content_view(record: Registration, stage: str, now: datetime) -> ContentView:
    """Decide whether the customer may see ``stage`` content right now.

    Expiry is checked before anything else grants access.
    """
    if stage not in STAGES:
        raise StageValidationError(f"unknown stage: {stage}")
    status = normalize_status(record.status)

    def view(kind: str, title: str) -> ContentView:
        return ContentView(registration_id=record.id, stage=stage, kind=kind, status=status, title=title)

    if record.cancelled_at is not None:
        return view(VIEW_REMOVED, "Registration Cancelled")
    if is_expired(record, now):
        return view(VIEW_RENEWAL_REQUIRED, "Secretary Period Expired")
    if status == PAYMENT_REJECTED:
        return view(VIEW_REJECTED, status_title(status))
    if stage == INCORPORATE and status == COMPLETED:
        return view(VIEW_CONTENT, status_title(status))

    reached = stage_index(stage) <= stage_index(record.current_stage)
    if not reached or not is_gate_open(record, stage):
        return view(VIEW_PROCESSING, status_title(status))
    return view(VIEW_CONTENT, status_title(status))


def step_progress(record: Registration) -> Dict[str, str]:
    """Stepper state per stage: completed, current or upcoming."""
    active = COMPANY_DETAILS if record.is_updating else normalize_stage(record.current_stage)
    done = {
        CONTACT_DETAILS: record.payment_approved,
        COMPANY_DETAILS: record.details_approved,
        DOCUMENTATION: record.documents_approved,
        INCORPORATE: normalize_status(record.status) == COMPLETED,
    }
    progress = {}
    for stage in STAGES:
        if done[stage]:
            progress[stage] = "completed"
        elif stage == active:
            progress[stage] = "current"
        elif stage_index(stage) < stage_index(active):
            progress[stage] = "completed"
        else:
            progress[stage] = "upcoming"
    return progress
