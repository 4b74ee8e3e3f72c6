from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "appointment.created",
    "appointment.status_changed",
    "stay.created",
    "stay.status_changed",
    "rating.applied",
]
AuditInitiator = Literal["user", "guest", "staff"]
AuditSubject = Literal["appointment", "stay", "facility", "provider"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _to_json_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "value"):
        return str(value.value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    subject: AuditSubject,
    subject_id: int,
    user_id: Optional[int],
    status_from: Any = None,
    status_to: Any = None,
    version: Optional[int] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "subject": subject,
        "subject_id": subject_id,
        "user_id": user_id,
        "status_from": _to_json_value(status_from),
        "status_to": _to_json_value(status_to),
        "version": version,
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update({k: _to_json_value(v) for k, v in extra.items()})

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc
