"""
Registration and renewal payment records.

Records travel in camelCase on the wire and snake_case in Python. Keys the
core does not know about are kept in ``payload`` and emitted back unchanged,
so collaborators can add fields without the core stripping them.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

# Ordered workflow stages
CONTACT_DETAILS = "contact-details"
COMPANY_DETAILS = "company-details"
DOCUMENTATION = "documentation"
INCORPORATE = "incorporate"
STAGES = (CONTACT_DETAILS, COMPANY_DETAILS, DOCUMENTATION, INCORPORATE)

# Customer-facing statuses
PAYMENT_PROCESSING = "payment-processing"
PAYMENT_REJECTED = "payment-rejected"
DOCUMENTATION_PROCESSING = "documentation-processing"
INCORPORATION_PROCESSING = "incorporation-processing"
COMPLETED = "completed"
STATUSES = (PAYMENT_PROCESSING, PAYMENT_REJECTED, DOCUMENTATION_PROCESSING, INCORPORATION_PROCESSING, COMPLETED)

# Renewal payment statuses
RENEWAL_PENDING = "pending"
RENEWAL_APPROVED = "approved"
RENEWAL_REJECTED = "rejected"
RENEWAL_STATUSES = (RENEWAL_PENDING, RENEWAL_APPROVED, RENEWAL_REJECTED)

# Staff-controlled booleans, set false -> true once
APPROVAL_FLAGS = (
    "payment_approved",
    "details_approved",
    "company_details_rejected",
    "company_details_locked",
    "documents_approved",
    "documents_published",
    "documents_acknowledged",
    "eroc_registered",
    "balance_payment_approved",
    "registration_completed",
)

_DATETIME_FIELDS = {"register_start_date", "expire_date", "secretary_records_noted_at",
                    "cancelled_at", "created_at", "updated_at"}
_BOOL_FIELDS = set(APPROVAL_FLAGS) | {"is_updating", "is_expired", "pinned", "noted"}


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse ISO datetimes and plain YYYY-MM-DD dates; anything else is None.

    Times are held as naive UTC. Values carrying an offset are converted.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _format(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass
class Registration:
    id: str
    user_id: Optional[str] = None
    current_stage: str = CONTACT_DETAILS
    status: str = PAYMENT_PROCESSING
    payment_approved: bool = False
    details_approved: bool = False
    company_details_rejected: bool = False
    company_details_locked: bool = False
    documents_approved: bool = False
    documents_published: bool = False
    documents_acknowledged: bool = False
    eroc_registered: bool = False
    balance_payment_approved: bool = False
    registration_completed: bool = False
    is_updating: bool = False
    register_start_date: Optional[datetime] = None
    expire_days: Optional[int] = None
    expire_date: Optional[datetime] = None
    is_expired: bool = False
    secretary_period_year: Any = None
    pinned: bool = False
    noted: bool = False
    secretary_records_noted_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def company_details_approved(self) -> bool:
        return self.details_approved

    def flags(self) -> Dict[str, bool]:
        """Approval flags keyed by their snake_case name."""
        return {name: getattr(self, name) for name in APPROVAL_FLAGS}

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: camelCase core fields with payload keys merged at top level."""
        data = dict(self.payload)
        for f in fields(self):
            if f.name == "payload":
                continue
            data[_to_camel(f.name)] = _format(getattr(self, f.name))
        data["companyDetailsApproved"] = self.details_approved
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Registration':
        """Build from wire form (camelCase or snake_case); unknown keys land in payload."""
        known = {}
        payload = dict(data.get("payload") or {})
        lookup = {}
        for f in fields(cls):
            if f.name == "payload":
                continue
            lookup[f.name] = f.name
            lookup[_to_camel(f.name)] = f.name

        for key, value in data.items():
            if key == "payload":
                continue
            if key in ("companyDetailsApproved", "company_details_approved", "_id"):
                continue
            name = lookup.get(key)
            if name is None:
                payload[key] = value
            else:
                known[name] = value

        if "id" not in known and data.get("_id"):
            known["id"] = data["_id"]
        if not known.get("id"):
            raise ValueError("registration id is required")

        # companyDetailsApproved is an alias of detailsApproved
        alias = data.get("companyDetailsApproved", data.get("company_details_approved"))
        if alias is not None:
            known["details_approved"] = _parse_bool(known.get("details_approved")) or _parse_bool(alias)

        for name in list(known):
            if name in _DATETIME_FIELDS:
                known[name] = parse_datetime(known[name])
            elif name in _BOOL_FIELDS:
                known[name] = _parse_bool(known[name])
        if known.get("expire_days") not in (None, ""):
            known["expire_days"] = int(known["expire_days"])
        else:
            known["expire_days"] = None
        if known.get("version") is not None:
            known["version"] = int(known["version"])

        return cls(payload=payload, **known)


@dataclass
class RenewalPayment:
    id: str
    registration_id: str
    amount: float
    status: str = RENEWAL_PENDING
    receipt_reference: Any = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    extension_days: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == RENEWAL_PENDING

    def to_dict(self) -> Dict[str, Any]:
        """Convert to camelCase dictionary for the wire."""
        return {_to_camel(f.name): _format(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RenewalPayment':
        """Create from a camelCase or snake_case dictionary."""
        lookup = {}
        for f in fields(cls):
            lookup[f.name] = f.name
            lookup[_to_camel(f.name)] = f.name
        known = {lookup[k]: v for k, v in data.items() if k in lookup}
        for name in ("approved_at", "rejected_at", "created_at", "updated_at"):
            if name in known:
                known[name] = parse_datetime(known[name])
        if "amount" in known:
            known["amount"] = float(known["amount"])
        return cls(**known)
