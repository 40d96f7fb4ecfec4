from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from fastapi.encoders import jsonable_encoder

from app.core.logging import get_audit_logger


def serialize_for_audit(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            Decimal: lambda v: str(v),
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
            Enum: lambda v: v.value,
        },
    )


def _diff_values(old: Any, new: Any, prefix: str = "") -> dict[str, dict[str, Any]]:
    changes: dict[str, dict[str, Any]] = {}
    if isinstance(old, dict) and isinstance(new, dict):
        keys = set(old.keys()) | set(new.keys())
        for key in keys:
            path = f"{prefix}.{key}" if prefix else str(key)
            changes.update(_diff_values(old.get(key), new.get(key), path))
        return changes
    if old != new:
        changes[prefix or "value"] = {"from": old, "to": new}
    return changes


def record_audit_event(
    *,
    actor_id,
    action: str,
    resource_type: str,
    resource_id,
    old_value: Any | None = None,
    new_value: Any | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Emit one structured line on the ``app.audit`` stream and return its payload."""
    serialized_old = serialize_for_audit(old_value) if old_value is not None else None
    serialized_new = serialize_for_audit(new_value) if new_value is not None else None
    changes = None
    if serialized_old is not None or serialized_new is not None:
        changes = _diff_values(serialized_old or {}, serialized_new or {}) or None
    event: dict[str, Any] = {
        "action": action,
        "resource_type": resource_type,
        "resource_id": str(resource_id),
        "actor_id": str(actor_id) if actor_id is not None else None,
        "changes": changes,
    }
    if extra:
        event.update(serialize_for_audit(extra))
    get_audit_logger().info(action, extra={"event": event})
    return event
