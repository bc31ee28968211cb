"""Utility functions for the chat service."""

import json
from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel


def to_jsonable(value: Any) -> Any:
    """Convert a value into plain JSON data.

    Pydantic models are dumped, tuples become lists and sets become sorted
    lists, so structurally equal inputs always produce equal output.
    """
    if isinstance(value, BaseModel):
        return to_jsonable(value.model_dump(mode="json"))
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        items = [to_jsonable(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True, default=str))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def current_date(now: Optional[datetime] = None) -> str:
    """Return today's date (UTC) as an ISO string, e.g. ``2025-03-01``."""
    now = now or datetime.now(timezone.utc)
    return now.date().isoformat()
