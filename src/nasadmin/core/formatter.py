"""
Response formatter: post-processing applied to GET results.

Two fixed lists drive it:

* SUPPRESSED_FIELDS are internal-only attributes removed from every item.
* TIMESTAMP_FIELDS carry epoch integers of ambiguous unit; they are decoded
  by digit count and replaced with a timezone-aware local datetime.

Anything else passes through untouched, and formatting an already
formatted record is a no-op.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, Optional

from .logging_setup import get_logger

log = get_logger(__name__)

SUPPRESSED_FIELDS: FrozenSet[str] = frozenset({
    "certificate",
    "certificateChain",
    "privateKey",
    "internalId",
    "objectId",
    "extendedInfo",
    "diagnostics",
    "resumeFrom",
    "accessRestrictions",
    "restrictionInternals",
})

TIMESTAMP_FIELDS: FrozenSet[str] = frozenset({
    "creationTime",
    "createdTime",
    "lastModifiedTime",
    "modificationTime",
    "startTime",
    "endTime",
    "expirationTime",
    "lastLoginTime",
    "lastUpdateTime",
})

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def decode_epoch_seconds(value: int) -> int:
    """
    Resolve an epoch integer of unknown unit to whole seconds.

    <= 11 digits: seconds; 12-14 digits: milliseconds; > 14 digits: nanoseconds.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"epoch value must be an integer, got {type(value).__name__}")
    digits = len(str(abs(value)))
    sign = -1 if value < 0 else 1
    if digits <= 11:
        return value
    if digits <= 14:
        return sign * (abs(value) // 1000)
    return sign * (abs(value) // 1_000_000_000)


def epoch_to_local(value: Any, field: str = "") -> Optional[datetime]:
    """Convert an epoch value to local time, or None (with a warning) if it cannot be decoded."""
    try:
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            value = int(value.strip())
        seconds = decode_epoch_seconds(value)
        return (_EPOCH + timedelta(seconds=seconds)).astimezone()
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        log.warning("Cannot decode timestamp field=%s value=%r: %s", field or "?", value, exc)
        return None


class ResponseFormatter:
    """Strips internal attributes and decodes timestamps on GET results."""

    def __init__(
        self,
        suppressed: FrozenSet[str] = SUPPRESSED_FIELDS,
        timestamps: FrozenSet[str] = TIMESTAMP_FIELDS,
    ) -> None:
        self.suppressed = frozenset(suppressed)
        self.timestamps = frozenset(timestamps)

    def format(self, data: Any) -> Any:
        """Format a list of items, an `{"items": [...]}` envelope or a single item."""
        if isinstance(data, list):
            return [self.format_item(it) for it in data]
        if isinstance(data, tuple):
            return tuple(self.format_item(it) for it in data)
        if isinstance(data, dict) and isinstance(data.get("items"), list):
            envelope = self.format_item(data)
            envelope["items"] = [self.format_item(it) for it in data["items"]]
            return envelope
        return self.format_item(data)

    def format_item(self, item: Any) -> Any:
        if not isinstance(item, dict):
            return item
        out: Dict[str, Any] = {}
        for key, value in item.items():
            if key in self.suppressed:
                continue
            if key in self.timestamps and value is not None and not isinstance(value, datetime):
                value = epoch_to_local(value, key)
            out[key] = value
        return out
