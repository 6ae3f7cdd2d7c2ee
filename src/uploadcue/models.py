"""Core data models for uploadcue."""

from __future__ import annotations

import random
import string
import time
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any

_ID_ALPHABET = string.digits + string.ascii_lowercase


class ItemStatus(str, Enum):
    """Possible states for a queue item."""

    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"
    COMPLETED = "completed"


class ItemKind(str, Enum):
    """Payload category. Does not change how an item is dispatched."""

    IMAGE = "image"
    AUDIO = "audio"
    METADATA = "metadata"


def new_item_id() -> str:
    """Millisecond timestamp plus a random base-36 suffix."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{int(time.time() * 1000)}{suffix}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Payload:
    """Reference to a local file. The queue never opens it."""

    uri: str
    mime_type: str | None = None
    name: str | None = None

    @classmethod
    def coerce(cls, value: Payload | dict[str, Any]) -> Payload:
        """Accept a Payload or a dict using either `mime_type` or `type`."""
        if isinstance(value, Payload):
            return value
        return cls(
            uri=value["uri"],
            mime_type=value.get("mime_type", value.get("type")),
            name=value.get("name"),
        )


@dataclass
class QueueItem:
    """A unit of deferred upload work."""

    id: str
    kind: ItemKind | str
    payload: Payload
    attributes: dict[str, Any] = field(default_factory=dict)
    project_id: str | None = None
    attempt_count: int = 0
    created_at: str = ""
    last_attempt_at: str | None = None
    status: ItemStatus = ItemStatus.PENDING
    last_error: str | None = None
    result: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-ready record, as persisted by the store."""
        data = asdict(self)
        data["kind"] = _enum_value(self.kind)
        data["status"] = _enum_value(self.status)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueItem:
        """Build an item from a persisted record. Unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["payload"] = Payload.coerce(values.get("payload") or {"uri": ""})
        values["status"] = ItemStatus(values.get("status", ItemStatus.PENDING))
        values["kind"] = parse_kind(values["kind"])
        values["attributes"] = dict(values.get("attributes") or {})
        # Older writers stored the counter as a string
        values["attempt_count"] = int(values.get("attempt_count") or 0)
        return cls(**values)


def parse_kind(kind: ItemKind | str) -> ItemKind | str:
    """Known kinds become ItemKind; other strings pass through unchanged."""
    if isinstance(kind, ItemKind):
        return kind
    if not isinstance(kind, str):
        raise ValueError(f"Invalid item kind: {kind!r}")
    try:
        return ItemKind(kind)
    except ValueError:
        return kind


def _enum_value(value: Enum | str) -> str:
    return value.value if isinstance(value, Enum) else value


# Fields the dispatcher and update_item are allowed to merge.
MUTABLE_FIELDS = frozenset(
    f.name for f in fields(QueueItem) if f.name not in ("id", "created_at")
)


@dataclass(frozen=True)
class QueueStats:
    """Item counts by status."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    failed: int = 0
    completed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class PassResult:
    """Totals for one dispatcher pass."""

    processed: int = 0
    failed: int = 0


@dataclass
class ProgressEvent:
    """Passed to the progress callback during a pass."""

    item: QueueItem
    status: str  # "processing", "completed" or "failed"
    result: Any = None
    error: BaseException | None = None
