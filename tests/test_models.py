"""Tests for gitstore.storage.models -- entities and operation descriptors."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from gitstore.storage.models import (
    ROOT_ID,
    OperationDescriptor,
    OperationKind,
    Record,
    RecordFilter,
    TreeNode,
    as_tag_set,
    new_id,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(**overrides) -> Record:
    data = {
        "id": "r1",
        "type": "note",
        "tags": {"foo"},
        "content": {"a": 1},
        "created_at": T0,
    }
    data.update(overrides)
    return Record(**data)


class TestRecord:
    def test_frozen(self):
        record = _record()
        with pytest.raises(ValidationError):
            record.type = "other"

    def test_naive_timestamp_is_utc(self):
        record = _record(created_at=datetime(2026, 3, 1, 12, 0))
        assert record.created_at.tzinfo is not None
        assert record.created_at == T0

    def test_tags_serialized_sorted(self):
        record = _record(tags={"zeta", "alpha", "mid"})
        assert '"tags":["alpha","mid","zeta"]' in record.model_dump_json()

    def test_evolve_returns_validated_copy(self):
        record = _record()
        changed = record.evolve(content={"a": 2}, tags=["bar"])
        assert changed.content == {"a": 2}
        assert changed.tags == frozenset({"bar"})
        assert record.content == {"a": 1}

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            _record(id="")


class TestTreeNode:
    def test_defaults_to_root_parent(self):
        node = TreeNode(id="n1", label="L", created_at=T0, updated_at=T0)
        assert node.parent_id == ROOT_ID

    def test_sibling_key_orders_by_time_then_id(self):
        a = TreeNode(id="b", label="x", created_at=T0, updated_at=T0)
        b = TreeNode(id="a", label="y", created_at=T0, updated_at=T0)
        c = TreeNode(
            id="0", label="z", created_at=T0 - timedelta(seconds=1), updated_at=T0
        )
        ordered = sorted([a, b, c], key=TreeNode.sibling_key)
        assert [n.id for n in ordered] == ["0", "a", "b"]


class TestRecordFilter:
    def test_empty_filter_matches_everything(self):
        assert RecordFilter().matches(_record())

    def test_type_must_match(self):
        assert not RecordFilter(type="task").matches(_record())

    def test_tags_are_superset_match(self):
        record = _record(tags={"foo", "bar"})
        assert RecordFilter(tags={"foo"}).matches(record)
        assert not RecordFilter(tags={"foo", "baz"}).matches(record)


class TestOperationDescriptor:
    def test_commit_message_round_trip(self):
        descriptor = OperationDescriptor(
            kind=OperationKind.ALTER,
            entity_ids=("old", "new"),
            timestamp=T0,
            instance="laptop",
            summary="alter record note/old -> new",
        )
        message = descriptor.to_commit_message()
        assert message.splitlines()[0] == "alter record note/old -> new"
        assert "Gitstore-Op: alter" in message
        assert OperationDescriptor.from_commit_message(message) == descriptor

    def test_plain_message_has_no_descriptor(self):
        assert OperationDescriptor.from_commit_message("Initial commit\n") is None

    def test_unknown_kind_has_no_descriptor(self):
        message = (
            "something\n\nGitstore-Op: explode\n"
            f"Gitstore-Time: {T0.isoformat()}\n"
        )
        assert OperationDescriptor.from_commit_message(message) is None


class TestHelpers:
    def test_new_id_is_unique_hex(self):
        ids = {new_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(len(i) == 32 for i in ids)

    def test_as_tag_set(self):
        assert as_tag_set(None) == frozenset()
        assert as_tag_set("solo") == frozenset({"solo"})
        assert as_tag_set(["a", "b", "a"]) == frozenset({"a", "b"})
