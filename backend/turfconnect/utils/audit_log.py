from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "slot.held",
    "slot.hold_released",
    "slot.blocked",
    "slot.unblocked",
    "slot.deleted",
    "booking.created",
    "booking.cancelled",
    "match.created",
    "match.joined",
    "match.left",
    "match.cancelled",
]
AuditInitiator = Literal["user", "owner", "admin", "system"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _enum_to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    user_id: Optional[int],
    slot_id: Optional[int] = None,
    booking_id: Optional[int] = None,
    match_id: Optional[int] = None,
    status_from: Any = None,
    status_to: Any = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit one structured JSON line per state transition. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "user_id": user_id,
        "slot_id": slot_id,
        "booking_id": booking_id,
        "match_id": match_id,
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception as exc:  # pragma: no cover - handler failure
        raise RuntimeError("failed to emit audit log") from exc


def initiator_for(role: Any) -> AuditInitiator:
    value = _enum_to_str(role)
    if value == "admin":
        return "admin"
    if value == "turf_owner":
        return "owner"
    return "user"
