from __future__ import annotations

import contextlib
import json
from dataclasses import replace
from datetime import datetime
from typing import Any

from swap_engine.execution.types import Receipt, ReceiptStatus, RiskLevel


def dump_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def load_json_dict(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    with contextlib.suppress(Exception):
        candidate = json.loads(raw)
        if isinstance(candidate, dict):
            return candidate
    return {}


def iso_to_epoch(value: str) -> float:
    try:
        return datetime.fromisoformat(value).timestamp()
    except (TypeError, ValueError):
        return 0.0


def apply_receipt_fields(
    receipt: Receipt,
    fields: dict[str, Any],
    *,
    status: ReceiptStatus | None = None,
) -> Receipt:
    """Copy of ``receipt`` with ``fields`` applied; identity fields are never overwritten."""
    updates = {key: value for key, value in fields.items() if key not in {"receipt_id", "user_address", "timestamp"}}
    if "risk_level" in updates and isinstance(updates["risk_level"], str):
        updates["risk_level"] = RiskLevel(updates["risk_level"])
    if "warnings" in updates:
        updates["warnings"] = tuple(updates["warnings"] or ())
    if status is not None:
        updates["status"] = status
    return replace(receipt, **updates)
