"""Pydantic models for the entities kept in the store.

Defines the data contracts shared by the storage, query, mutation and sync
modules:

- ``Record``: an immutable flat record, one snapshot per id.
- ``TreeNode``: a labeled node of a named tree; children are derived from
  ``parent_id`` at read time and never stored.
- ``RecordFilter``: type / tag filter for record queries.
- ``OperationKind`` / ``OperationDescriptor``: the machine-readable
  description attached to every commit.

All models are frozen (immutable).  Timestamps are always timezone-aware;
naive values are interpreted as UTC.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable

from pydantic import BaseModel, Field, field_serializer, field_validator

ROOT_ID = "root"
"""Sentinel ``parent_id`` for top-level tree nodes."""

Clock = Callable[[], datetime]
IdGenerator = Callable[[], str]


def utc_now() -> datetime:
    """Default clock: current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Default identifier generator: a random 128-bit hex string."""
    return uuid.uuid4().hex


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Record(BaseModel):
    """A flat record.

    Records are never edited in place: altering one produces a new
    ``Record`` with a fresh ``id`` and ``created_at``.

    Attributes:
        id: Globally unique identifier.
        type: Classification; selects the storage directory.
        tags: Set of string tags (serialized sorted).
        content: Arbitrary JSON-compatible value, opaque to the engine.
        created_at: Creation time.
    """

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    tags: frozenset[str] = frozenset()
    content: Any = None
    created_at: datetime

    model_config = {"frozen": True}

    @field_validator("created_at")
    @classmethod
    def _require_tz(cls, value: datetime) -> datetime:
        return _aware(value)

    @field_serializer("tags", when_used="json")
    def _sorted_tags(self, tags: frozenset[str]) -> list[str]:
        return sorted(tags)

    def evolve(self, **changes: Any) -> Record:
        """Return a validated copy with *changes* applied.

        Intended for ``alter`` callbacks, e.g.
        ``store.alter(rid, lambda r: r.evolve(tags={"done"}))``.
        """
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)


class TreeNode(BaseModel):
    """A labeled node in a named tree.

    Attributes:
        id: Globally unique identifier, stable across label edits.
        label: Mutable label.
        parent_id: Owning node id, or ``ROOT_ID``.  Never changes.
        created_at: Creation time; orders siblings.
        updated_at: Time of the last label change; breaks ties between
            concurrent edits.
    """

    id: str = Field(min_length=1)
    label: str
    parent_id: str = ROOT_ID
    created_at: datetime
    updated_at: datetime

    model_config = {"frozen": True}

    @field_validator("created_at", "updated_at")
    @classmethod
    def _require_tz(cls, value: datetime) -> datetime:
        return _aware(value)

    def sibling_key(self) -> tuple[datetime, str]:
        """Sort key for ordering children of the same parent."""
        return (self.created_at, self.id)

    def evolve(self, **changes: Any) -> TreeNode:
        """Return a validated copy with *changes* applied."""
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)


class RecordFilter(BaseModel):
    """Filter for record queries.

    A record matches when its type equals ``type`` (if set) and its tags
    are a superset of ``tags``.
    """

    type: str | None = None
    tags: frozenset[str] = frozenset()

    model_config = {"frozen": True}

    def matches(self, record: Record) -> bool:
        if self.type is not None and record.type != self.type:
            return False
        return self.tags <= record.tags


# ---------------------------------------------------------------------------
# Operation descriptors
# ---------------------------------------------------------------------------

_TRAILER_OP = "Gitstore-Op"
_TRAILER_ENTITY = "Gitstore-Entity"
_TRAILER_TIME = "Gitstore-Time"
_TRAILER_INSTANCE = "Gitstore-Instance"


class OperationKind(str, Enum):
    """Kinds of operation recorded in commit messages."""

    WRITE = "write"
    ALTER = "alter"
    DELETE = "delete"
    ADD_CHILD = "add_child"
    ALTER_NODE = "alter_node"
    DELETE_NODE = "delete_node"
    MERGE = "merge"


class OperationDescriptor(BaseModel):
    """Machine-readable description of one commit.

    Encoded as git trailers below a one-line human summary so it can be
    read back with ``git log`` without parsing entity content.
    """

    kind: OperationKind
    entity_ids: tuple[str, ...] = ()
    timestamp: datetime
    instance: str = ""
    summary: str = ""

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def _require_tz(cls, value: datetime) -> datetime:
        return _aware(value)

    def to_commit_message(self) -> str:
        """Render the descriptor as a commit message."""
        summary = self.summary or f"{self.kind.value} {' '.join(self.entity_ids)}"
        lines = [summary.strip(), "", f"{_TRAILER_OP}: {self.kind.value}"]
        for entity_id in self.entity_ids:
            lines.append(f"{_TRAILER_ENTITY}: {entity_id}")
        lines.append(f"{_TRAILER_TIME}: {self.timestamp.isoformat()}")
        if self.instance:
            lines.append(f"{_TRAILER_INSTANCE}: {self.instance}")
        return "\n".join(lines) + "\n"

    @classmethod
    def from_commit_message(
        cls, message: str
    ) -> OperationDescriptor | None:
        """Parse a commit message; ``None`` if it carries no descriptor."""
        lines = message.strip().splitlines()
        if not lines:
            return None
        kind: str | None = None
        entity_ids: list[str] = []
        timestamp: str | None = None
        instance = ""
        for line in lines[1:]:
            key, sep, value = line.partition(":")
            if not sep:
                continue
            value = value.strip()
            if key == _TRAILER_OP:
                kind = value
            elif key == _TRAILER_ENTITY:
                entity_ids.append(value)
            elif key == _TRAILER_TIME:
                timestamp = value
            elif key == _TRAILER_INSTANCE:
                instance = value
        if kind is None or timestamp is None:
            return None
        try:
            return cls(
                kind=OperationKind(kind),
                entity_ids=tuple(entity_ids),
                timestamp=datetime.fromisoformat(timestamp),
                instance=instance,
                summary=lines[0],
            )
        except ValueError:
            return None


def as_tag_set(tags: Iterable[str] | None) -> frozenset[str]:
    """Normalise an optional iterable of tags into a frozenset."""
    if tags is None:
        return frozenset()
    if isinstance(tags, str):
        return frozenset([tags])
    return frozenset(tags)
