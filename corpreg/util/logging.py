"""
Structured logging for registration lifecycle, renewal and sweep operations.

Every line has the shape ``Operation: <op>, Status: <status>, Details: {...}``
so the audit trail can be grepped per operation.
"""

import logging
from typing import Any, Dict, List

# Personal data carried in registration payloads and receipts
SENSITIVE_FIELDS = [
    'contactPersonEmail', 'contactPersonPhone', 'businessEmail', 'businessContactNumber',
    'email', 'phone', 'password', 'receiptReference', 'paymentReceipt', 'balancePaymentReceipt',
    'directors', 'shareholders',
]


class StructuredLogger:
    """Structured logger for registration operations."""

    def __init__(self, name: str = "corpreg"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_transition(self, registration_id: str, from_stage: str, to_stage: str, status: str):
        """Log a stage submission and the stage/status it resulted in."""
        self.log_operation("lifecycle.transition", "success", {
            "registration_id": registration_id,
            "from_stage": from_stage,
            "to_stage": to_stage,
            "status": status,
        })

    def log_staff_action(self, registration_id: str, action: str, actor: str, changed: bool):
        """Log a staff approval/rejection action."""
        self.log_operation("lifecycle.staff_action", "applied" if changed else "noop", {
            "registration_id": registration_id,
            "action": action,
            "actor": actor,
        })

    def log_renewal_decision(self, payment_id: str, registration_id: str, decision: str, actor: str,
                             details: Dict[str, Any] = None):
        """Log a renewal payment approval or rejection."""
        log_details = {
            "payment_id": payment_id,
            "registration_id": registration_id,
            "actor": actor,
        }
        if details:
            log_details.update(details)
        self.log_operation("renewal.decision", decision, log_details)

    def log_sweep(self, checked: int, updated: int, start_time: float, end_time: float):
        """Log an expiry sweep run."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        self.log_operation("expiry.sweep", "success", {
            "checked": checked,
            "updated": updated,
            "duration_ms": duration_ms,
        })

    def log_event_dispatch(self, event_type: str, registration_id: str, delivered: int, failed: int = 0):
        """Log a lifecycle event publish."""
        status = "success" if failed == 0 else "partial"
        self.log_operation("events.publish", status, {
            "event_type": event_type,
            "registration_id": registration_id,
            "delivered": delivered,
            "failed": failed,
        })

    def log_blob_cleanup(self, file_path: str, status: str = "success", error: str = None):
        """Log a best-effort blob deletion."""
        details = {"file_path": file_path}
        if error:
            details["error"] = error[:100]
        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation("blobs.cleanup", status, details, level=level)

    def log_heartbeat_task(self, task_name: str, start_time: float, end_time: float, status: str = "success",
                           details: Dict[str, Any] = None):
        """Log heartbeat task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Heartbeat task '{task_name}' completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Heartbeat task '{task_name}' failed after {duration_ms}ms"

        self.log_operation(f"heartbeat.{task_name}", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        self.logger.info(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)

    def debug(self, message: str) -> None:
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None,
                sensitive_fields: List[str] = None):
    """General audit event logging with personal data redacted."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
