from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Literal, Optional, Sequence

from .request_id import get_request_id

AuditAction = Literal[
    "reservation.created",
    "reservation.cancelled",
]
AuditInitiator = Literal["member", "staff", "system"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    reservation_id: int,
    member_id: Optional[int],
    equipment_id: Optional[int],
    reserved_on: Optional[date],
    slot_ids: Optional[Sequence[int]],
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
        "reservation_id": reservation_id,
        "member_id": member_id,
        "equipment_id": equipment_id,
        "date": reserved_on.isoformat() if reserved_on is not None else None,
        "slot_ids": list(slot_ids) if slot_ids is not None else None,
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True))
    except Exception as exc:  # pragma: no cover
        raise RuntimeError("failed to emit audit log") from exc
