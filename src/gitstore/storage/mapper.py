"""Storage mapper: entities <-> version-controlled files.

Every entity occupies exactly one file, keyed by its id:

- Records:    ``records/<type>/<id>.json``
- Tree nodes: ``trees/<tree name>/<id>.json``

One object per entity means independent additions and unrelated deletions
never touch the same file, so git merges them without help.  The only
overlaps left are two instances changing or removing the *same* entity,
which the conflict resolver handles.

The repository root also carries a ``.gitattributes`` that unsets the
``merge`` attribute for entity files.  Git then never line-merges two
variants of a JSON document into a hybrid; it always reports the path as
conflicted and hands it to the resolver.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import PurePosixPath

from pydantic import BaseModel, ValidationError

from gitstore.errors import CorruptObject
from gitstore.storage.models import Record, TreeNode

RECORDS_DIR = "records"
TREES_DIR = "trees"
OBJECT_SUFFIX = ".json"

GITATTRIBUTES_PATH = ".gitattributes"
GITATTRIBUTES = "*.json -merge\n"

_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


class ObjectKind(str, Enum):
    """Kind of entity stored at a path."""

    RECORD = "record"
    NODE = "node"


class ObjectKey(BaseModel):
    """Parsed form of a storage path.

    Attributes:
        kind: Record or tree node.
        group: Record type, or tree name for nodes.
        id: Entity id.
    """

    kind: ObjectKind
    group: str
    id: str

    model_config = {"frozen": True}


class StorageObject(BaseModel):
    """One addressable storage object: a repository path and its bytes."""

    path: str
    data: bytes

    model_config = {"frozen": True}


def validate_name(name: str, what: str = "name") -> str:
    """Check that *name* is usable as a single path component.

    Raises:
        ValueError: If *name* is empty, contains a separator, or starts
            with a dot.
    """
    if not _NAME_RE.match(name or ""):
        raise ValueError(
            f"Invalid {what} '{name}': use letters, digits, '_', '.', '-' "
            f"and do not start with '.'"
        )
    return name


class StorageMapper:
    """Translate Records and TreeNodes to storage objects and back."""

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @staticmethod
    def record_path(record_type: str, record_id: str) -> str:
        return f"{RECORDS_DIR}/{record_type}/{record_id}{OBJECT_SUFFIX}"

    @staticmethod
    def node_path(tree: str, node_id: str) -> str:
        return f"{TREES_DIR}/{tree}/{node_id}{OBJECT_SUFFIX}"

    @staticmethod
    def records_prefix(record_type: str | None = None) -> str:
        if record_type is None:
            return RECORDS_DIR
        return f"{RECORDS_DIR}/{record_type}"

    @staticmethod
    def tree_prefix(tree: str) -> str:
        return f"{TREES_DIR}/{tree}"

    @staticmethod
    def classify(path: str) -> ObjectKey | None:
        """Parse *path* into an ``ObjectKey``.

        Returns ``None`` for paths outside the entity layout (for example
        ``.gitattributes``).
        """
        parts = PurePosixPath(path).parts
        if len(parts) != 3 or not parts[2].endswith(OBJECT_SUFFIX):
            return None
        top, group, filename = parts
        entity_id = filename[: -len(OBJECT_SUFFIX)]
        if not entity_id:
            return None
        if top == RECORDS_DIR:
            return ObjectKey(kind=ObjectKind.RECORD, group=group, id=entity_id)
        if top == TREES_DIR:
            return ObjectKey(kind=ObjectKind.NODE, group=group, id=entity_id)
        return None

    # ------------------------------------------------------------------
    # Encode
    # ------------------------------------------------------------------

    def encode(
        self, entity: Record | TreeNode, tree: str | None = None
    ) -> StorageObject:
        """Encode a Record, or a TreeNode belonging to *tree*."""
        if isinstance(entity, Record):
            return self.encode_record(entity)
        if tree is None:
            raise ValueError("tree name is required to encode a TreeNode")
        return self.encode_node(tree, entity)

    def encode_record(self, record: Record) -> StorageObject:
        return StorageObject(
            path=self.record_path(record.type, record.id),
            data=self._dump(record),
        )

    def encode_node(self, tree: str, node: TreeNode) -> StorageObject:
        return StorageObject(
            path=self.node_path(tree, node.id),
            data=self._dump(node),
        )

    @staticmethod
    def _dump(entity: BaseModel) -> bytes:
        return (entity.model_dump_json(indent=2) + "\n").encode("utf-8")

    # ------------------------------------------------------------------
    # Decode
    # ------------------------------------------------------------------

    def decode(self, obj: StorageObject) -> Record | TreeNode:
        """Decode a storage object according to its path.

        Raises:
            CorruptObject: If the path is not an entity path, the bytes do
                not parse, or the decoded id/type disagrees with the path.
        """
        key = self.classify(obj.path)
        if key is None:
            raise CorruptObject(obj.path, "not an entity path")
        if key.kind is ObjectKind.RECORD:
            return self.decode_record(obj)
        return self.decode_node(obj)

    def decode_record(self, obj: StorageObject) -> Record:
        record = self._load(Record, obj)
        key = self.classify(obj.path)
        if key is not None and (
            key.id != record.id or key.group != record.type
        ):
            raise CorruptObject(
                obj.path,
                f"record {record.type}/{record.id} stored under wrong path",
            )
        return record

    def decode_node(self, obj: StorageObject) -> TreeNode:
        node = self._load(TreeNode, obj)
        key = self.classify(obj.path)
        if key is not None and key.id != node.id:
            raise CorruptObject(
                obj.path, f"node {node.id} stored under wrong path"
            )
        return node

    @staticmethod
    def _load(model: type[BaseModel], obj: StorageObject):  # type: ignore[no-untyped-def]
        try:
            text = obj.data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CorruptObject(obj.path, f"invalid UTF-8: {exc}") from exc
        try:
            return model.model_validate_json(text)
        except ValidationError as exc:
            raise CorruptObject(
                obj.path,
                f"does not parse as {model.__name__}: "
                f"{exc.error_count()} validation error(s)",
            ) from exc
