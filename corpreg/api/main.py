"""
HTTP binding for the registration core.

Endpoints are plain ``def`` so FastAPI runs the synchronous SQLite work in
its threadpool. Core errors map to status codes in one place below.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    HealthResponse,
    RegistrationCreateRequest,
    RegistrationPutRequest,
    RegistrationListResponse,
    StageSubmitRequest,
    StaffActionRequest,
    PinRequest,
    NotedRequest,
    DeleteResponse,
    ContentViewResponse,
    ExpiryCheckResponse,
    RenewalCreateRequest,
    RenewalApproveRequest,
    RenewalRejectRequest,
    RenewalListResponse,
    RenewalDecisionResponse,
    SweepResponse,
)
from ..core import heartbeat, service
from ..core.config import VERSION, debug_enabled, is_sweep_enabled
from ..core.dao import ensure_schema, get_registration_count
from ..core.db import health_check
from ..core.errors import ConflictError, NotFoundError, StageValidationError, TransientStoreError
from ..core.lifecycle import step_progress
from ..util.logging import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_schema()
    if is_sweep_enabled() and service.register_sweep_task():
        heartbeat.start_background()
    yield
    heartbeat.stop()


# Initialize the FastAPI application
app = FastAPI(
    title="Company Registration API",
    version=VERSION,
    description="Company incorporation workflow, secretary period expiry and renewals",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error mapping ---

@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StageValidationError)
async def validation_handler(request: Request, exc: StageValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "missingFields": exc.missing_fields})


@app.exception_handler(TransientStoreError)
async def store_unavailable_handler(request: Request, exc: TransientStoreError):
    logger.warning(f"Record store unavailable: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Record store temporarily unavailable"})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logging.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        registration_count=get_registration_count() if db_health else 0,
        heartbeat=heartbeat.get_status(),
    )


# --- Registrations ---

@app.get("/registrations", response_model=RegistrationListResponse)
def list_registrations_endpoint(user_id: Optional[str] = None, status: Optional[str] = None,
                                stage: Optional[str] = None, expired: Optional[bool] = None,
                                pinned: Optional[bool] = None, include_cancelled: bool = False):
    records = service.list_registrations(user_id=user_id, status=status, stage=stage, expired=expired,
                                         pinned=pinned, include_cancelled=include_cancelled)
    return RegistrationListResponse(registrations=[r.to_dict() for r in records], count=len(records))


@app.post("/registrations", status_code=201)
def create_registration_endpoint(req: RegistrationCreateRequest):
    return service.create_registration(req.user_id, req.fields).to_dict()


@app.get("/registrations/{registration_id}")
def get_registration_endpoint(registration_id: str):
    return service.get_registration(registration_id).to_dict()


@app.put("/registrations/{registration_id}")
def put_registration_endpoint(registration_id: str, req: RegistrationPutRequest):
    return service.put_registration(registration_id, req.record, expected_version=req.expected_version).to_dict()


@app.delete("/registrations/{registration_id}", response_model=DeleteResponse)
def delete_registration_endpoint(registration_id: str):
    cleaned = service.delete_registration(registration_id)
    return DeleteResponse(success=True, registration_id=registration_id, blobs_deleted=cleaned)


@app.post("/registrations/{registration_id}/steps/{stage}")
def submit_stage_endpoint(registration_id: str, stage: str, req: StageSubmitRequest):
    return service.submit_stage(registration_id, stage, req.fields).to_dict()


@app.post("/registrations/{registration_id}/update-information")
def begin_update_endpoint(registration_id: str):
    return service.begin_update(registration_id).to_dict()


@app.post("/registrations/{registration_id}/actions/{action}")
def staff_action_endpoint(registration_id: str, action: str, req: StaffActionRequest):
    params = {}
    if req.expire_days is not None:
        params["expire_days"] = req.expire_days
    return service.apply_staff_action(registration_id, action, req.actor, **params).to_dict()


@app.post("/registrations/{registration_id}/cancel")
def cancel_registration_endpoint(registration_id: str):
    return service.cancel_registration(registration_id).to_dict()


@app.patch("/registrations/{registration_id}/pin")
def pin_registration_endpoint(registration_id: str, req: PinRequest):
    return service.set_pinned(registration_id, req.pinned).to_dict()


@app.put("/registrations/{registration_id}/noted")
def noted_registration_endpoint(registration_id: str, req: NotedRequest):
    return service.set_noted(registration_id, req.noted).to_dict()


@app.get("/registrations/{registration_id}/content/{stage}", response_model=ContentViewResponse)
def content_view_endpoint(registration_id: str, stage: str):
    view = service.get_content_view(registration_id, stage)
    record = service.get_registration(registration_id)
    return ContentViewResponse(
        registration_id=view.registration_id,
        stage=view.stage,
        kind=view.kind,
        status=view.status,
        title=view.title,
        granted=view.granted,
        steps=step_progress(record),
    )


@app.get("/registrations/{registration_id}/check-expiry", response_model=ExpiryCheckResponse)
def check_expiry_endpoint(registration_id: str):
    return ExpiryCheckResponse(**service.check_expiry(registration_id))


# --- Renewal payments ---

@app.get("/renewal-payments", response_model=RenewalListResponse)
def list_renewal_payments_endpoint(registration_id: Optional[str] = None, status: Optional[str] = None):
    payments = service.list_renewal_payments(registration_id=registration_id, status=status)
    return RenewalListResponse(payments=[p.to_dict() for p in payments], count=len(payments))


@app.post("/renewal-payments", status_code=201)
def create_renewal_payment_endpoint(req: RenewalCreateRequest):
    return service.create_renewal_payment(req.registration_id, req.amount, req.receipt_reference).to_dict()


@app.get("/renewal-payments/{payment_id}")
def get_renewal_payment_endpoint(payment_id: str):
    return service.get_renewal_payment(payment_id).to_dict()


@app.post("/renewal-payments/{payment_id}/approve", response_model=RenewalDecisionResponse)
def approve_renewal_payment_endpoint(payment_id: str, req: RenewalApproveRequest):
    payment, registration = service.approve_renewal_payment(payment_id, req.approved_by, req.extension_days)
    return RenewalDecisionResponse(payment=payment.to_dict(), registration=registration.to_dict())


@app.post("/renewal-payments/{payment_id}/reject", response_model=RenewalDecisionResponse)
def reject_renewal_payment_endpoint(payment_id: str, req: RenewalRejectRequest):
    payment = service.reject_renewal_payment(payment_id, req.rejected_by)
    return RenewalDecisionResponse(payment=payment.to_dict())


# --- Maintenance ---

@app.post("/maintenance/sweep-expired", response_model=SweepResponse)
def sweep_expired_endpoint():
    updated = service.sweep_expired()
    return SweepResponse(updated=updated, timestamp=datetime.now().isoformat())
