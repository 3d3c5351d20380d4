"""
Request and response models for the registration HTTP API.

Bodies are camelCase on the wire; snake_case names are accepted too.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _not_blank(value: str, name: str) -> str:
    if not value or not value.strip():
        raise ValueError(f'{name} cannot be empty')
    return value.strip()


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    registration_count: int
    heartbeat: Dict[str, Any] = {}


class RegistrationCreateRequest(WireModel):
    user_id: Optional[str] = Field(None, alias="userId")
    fields: Dict[str, Any]


class RegistrationPutRequest(WireModel):
    record: Dict[str, Any]
    expected_version: Optional[int] = Field(None, alias="expectedVersion")


class StageSubmitRequest(WireModel):
    fields: Dict[str, Any] = {}


class StaffActionRequest(WireModel):
    actor: str
    expire_days: Optional[int] = Field(None, alias="expireDays")

    @field_validator('actor')
    @classmethod
    def actor_must_not_be_empty(cls, v):
        return _not_blank(v, 'actor')

    @field_validator('expire_days')
    @classmethod
    def expire_days_must_be_positive(cls, v):
        if v is not None and v < 1:
            raise ValueError('expireDays must be >= 1')
        return v


class PinRequest(WireModel):
    pinned: bool


class NotedRequest(WireModel):
    noted: bool


class RegistrationListResponse(WireModel):
    registrations: List[Dict[str, Any]]
    count: int


class DeleteResponse(WireModel):
    success: bool
    registration_id: str = Field(serialization_alias="registrationId")
    blobs_deleted: int = Field(serialization_alias="blobsDeleted")


class ContentViewResponse(WireModel):
    registration_id: str = Field(serialization_alias="registrationId")
    stage: str
    kind: str
    status: str
    title: str
    granted: bool
    steps: Dict[str, str] = {}


class ExpiryCheckResponse(WireModel):
    registration_id: str = Field(alias="registrationId")
    is_expired: bool = Field(alias="isExpired")
    expire_date: Optional[str] = Field(None, alias="expireDate")
    days_remaining: Optional[int] = Field(None, alias="daysRemaining")
    updated: bool = False


class RenewalCreateRequest(WireModel):
    registration_id: str = Field(alias="registrationId")
    amount: float
    receipt_reference: Optional[Any] = Field(None, alias="receiptReference")

    @field_validator('registration_id')
    @classmethod
    def registration_id_must_not_be_empty(cls, v):
        return _not_blank(v, 'registrationId')

    @field_validator('amount')
    @classmethod
    def amount_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError('amount must be positive')
        return v


class RenewalApproveRequest(WireModel):
    approved_by: str = Field(alias="approvedBy")
    extension_days: Optional[int] = Field(None, alias="extensionDays")

    @field_validator('approved_by')
    @classmethod
    def approver_must_not_be_empty(cls, v):
        return _not_blank(v, 'approvedBy')

    @field_validator('extension_days')
    @classmethod
    def extension_must_be_positive(cls, v):
        if v is not None and v < 1:
            raise ValueError('extensionDays must be >= 1')
        return v


class RenewalRejectRequest(WireModel):
    rejected_by: str = Field(alias="rejectedBy")

    @field_validator('rejected_by')
    @classmethod
    def rejector_must_not_be_empty(cls, v):
        return _not_blank(v, 'rejectedBy')


class RenewalListResponse(WireModel):
    payments: List[Dict[str, Any]]
    count: int


class RenewalDecisionResponse(WireModel):
    payment: Dict[str, Any]
    registration: Optional[Dict[str, Any]] = None


class SweepResponse(WireModel):
    updated: int
    timestamp: str
