"""Mutation log: one logical operation -> one local commit.

Every public method takes the instance write lock, reads whatever it needs
from ``HEAD``, updates the working copy, and commits exactly once before
returning.  A failure at any point restores the working copy and index to
``HEAD`` so no partial operation is ever committed or left behind.

Record alteration changes identity (new id, new ``created_at``, old object
removed in the same commit).  Node alteration keeps identity and refreshes
``updated_at``.  Each commit message carries an ``OperationDescriptor``.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

from gitstore.core.git import GitRepository
from gitstore.errors import CallerAborted, NotFound
from gitstore.storage.mapper import StorageMapper, StorageObject, validate_name
from gitstore.storage.models import (
    ROOT_ID,
    Clock,
    IdGenerator,
    OperationDescriptor,
    OperationKind,
    Record,
    TreeNode,
    as_tag_set,
)
from gitstore.storage.query import find_record_path

logger = logging.getLogger(__name__)

RecordFn = Callable[[Record], Record]
NodeFn = Callable[[TreeNode], TreeNode | str]


class MutationLog:
    """Apply local mutations as single commits.

    Args:
        repo: The working copy.
        mapper: Storage mapper used for paths and encoding.
        lock: The instance write lock; shared with the sync engine so merges
            and local commits form one total order.
        clock: Source of timestamps.
        id_generator: Source of new entity ids.
        instance: Instance name recorded in commit descriptors.
        on_commit: Called (outside the lock) after every successful commit.
    """

    def __init__(
        self,
        repo: GitRepository,
        mapper: StorageMapper,
        lock: threading.RLock,
        clock: Clock,
        id_generator: IdGenerator,
        instance: str = "",
        on_commit: Callable[[OperationDescriptor], None] | None = None,
    ) -> None:
        self.repo = repo
        self.mapper = mapper
        self.lock = lock
        self.clock = clock
        self.id_generator = id_generator
        self.instance = instance
        self.on_commit = on_commit

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def write(
        self,
        record_type: str,
        content: Any = None,
        tags: Iterable[str] | None = None,
    ) -> Record:
        """Create a new record and commit it."""
        validate_name(record_type, "record type")
        with self.lock:
            record = Record(
                id=self.id_generator(),
                type=record_type,
                tags=as_tag_set(tags),
                content=content,
                created_at=self.clock(),
            )
            descriptor = self._descriptor(
                OperationKind.WRITE,
                (record.id,),
                f"write record {record.type}/{record.id}",
                record.created_at,
            )
            self._commit([self.mapper.encode_record(record)], [], descriptor)
        self._notify(descriptor)
        return record

    def alter(self, record_id: str, fn: RecordFn) -> Record:
        """Replace a record with ``fn(record)`` under a fresh identity.

        Raises:
            NotFound: If *record_id* does not exist.
            CallerAborted: If *fn* raises, returns something other than a
                ``Record``, or changes the record type.  Nothing is
                committed.
        """
        with self.lock:
            old_path, old = self._read_record(record_id)
            try:
                proposed = fn(old)
            except Exception as exc:
                raise CallerAborted(exc) from exc
            if not isinstance(proposed, Record):
                err = TypeError(
                    f"alter function returned {type(proposed).__name__}, "
                    f"expected Record"
                )
                raise CallerAborted(err) from err
            if proposed.type != old.type:
                err = ValueError(
                    f"record type is immutable ({old.type!r} -> "
                    f"{proposed.type!r})"
                )
                raise CallerAborted(err) from err

            new = Record(
                id=self.id_generator(),
                type=old.type,
                tags=proposed.tags,
                content=proposed.content,
                created_at=self.clock(),
            )
            descriptor = self._descriptor(
                OperationKind.ALTER,
                (old.id, new.id),
                f"alter record {old.type}/{old.id} -> {new.id}",
                new.created_at,
            )
            self._commit(
                [self.mapper.encode_record(new)], [old_path], descriptor
            )
        self._notify(descriptor)
        return new

    def delete(self, record_id: str) -> None:
        """Remove a record.

        Raises:
            NotFound: If *record_id* does not exist.
        """
        with self.lock:
            path = find_record_path(
                self.repo, self.mapper, self.repo.head(), record_id
            )
            if path is None:
                raise NotFound("record", record_id)
            descriptor = self._descriptor(
                OperationKind.DELETE, (record_id,), f"delete record {path}"
            )
            self._commit([], [path], descriptor)
        self._notify(descriptor)

    def get(self, record_id: str) -> Record:
        """Read one record from ``HEAD``."""
        return self._read_record(record_id)[1]

    def _read_record(self, record_id: str) -> tuple[str, Record]:
        head = self.repo.head()
        path = find_record_path(self.repo, self.mapper, head, record_id)
        if path is None or head is None:
            raise NotFound("record", record_id)
        data = self.repo.read_file(head, path)
        if data is None:
            raise NotFound("record", record_id)
        return path, self.mapper.decode_record(StorageObject(path=path, data=data))

    # ------------------------------------------------------------------
    # Tree nodes
    # ------------------------------------------------------------------

    def add_child(self, tree: str, parent_id: str, label: str) -> TreeNode:
        """Create a node under *parent_id* (or ``ROOT_ID``).

        Raises:
            NotFound: If the parent is neither the root nor an existing node.
        """
        validate_name(tree, "tree name")
        with self.lock:
            if parent_id != ROOT_ID:
                self._read_node(tree, parent_id)
            now = self.clock()
            node = TreeNode(
                id=self.id_generator(),
                label=label,
                parent_id=parent_id,
                created_at=now,
                updated_at=now,
            )
            descriptor = self._descriptor(
                OperationKind.ADD_CHILD,
                (node.id, parent_id),
                f"add node {tree}/{node.id} under {parent_id}",
                now,
            )
            self._commit([self.mapper.encode_node(tree, node)], [], descriptor)
        self._notify(descriptor)
        return node

    def alter_node(self, tree: str, node_id: str, fn: NodeFn) -> TreeNode:
        """Update a node in place.

        *fn* receives the current node and returns either a new label or a
        node; only the label is taken from its result.  ``id``,
        ``parent_id`` and ``created_at`` are preserved and ``updated_at`` is
        refreshed.

        Raises:
            NotFound: If the node does not exist.
            CallerAborted: If *fn* raises or returns an unusable value.
        """
        with self.lock:
            current = self._read_node(tree, node_id)
            try:
                result = fn(current)
            except Exception as exc:
                raise CallerAborted(exc) from exc
            if isinstance(result, TreeNode):
                label = result.label
            elif isinstance(result, str):
                label = result
            else:
                err = TypeError(
                    f"alter_node function returned {type(result).__name__}, "
                    f"expected TreeNode or str"
                )
                raise CallerAborted(err) from err

            updated = current.evolve(label=label, updated_at=self.clock())
            descriptor = self._descriptor(
                OperationKind.ALTER_NODE,
                (node_id,),
                f"alter node {tree}/{node_id}",
                updated.updated_at,
            )
            self._commit([self.mapper.encode_node(tree, updated)], [], descriptor)
        self._notify(descriptor)
        return updated

    def delete_node(self, tree: str, node_id: str) -> None:
        """Remove a single node; its children are left in place.

        Raises:
            NotFound: If the node does not exist.
        """
        with self.lock:
            self._read_node(tree, node_id)
            descriptor = self._descriptor(
                OperationKind.DELETE_NODE,
                (node_id,),
                f"delete node {tree}/{node_id}",
            )
            self._commit([], [self.mapper.node_path(tree, node_id)], descriptor)
        self._notify(descriptor)

    def get_node(self, tree: str, node_id: str) -> TreeNode:
        """Read one node from ``HEAD``."""
        return self._read_node(tree, node_id)

    def _read_node(self, tree: str, node_id: str) -> TreeNode:
        head = self.repo.head()
        path = self.mapper.node_path(tree, node_id)
        data = self.repo.read_file(head, path) if head else None
        if data is None:
            raise NotFound("node", node_id)
        return self.mapper.decode_node(StorageObject(path=path, data=data))

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def history(self, limit: int = 20) -> list[OperationDescriptor]:
        """Return descriptors of the most recent commits, newest first.

        Commits without a descriptor (e.g. created outside the store) are
        skipped.
        """
        descriptors = []
        for message in self.repo.log_messages(limit):
            descriptor = OperationDescriptor.from_commit_message(message)
            if descriptor is not None:
                descriptors.append(descriptor)
        return descriptors

    # ------------------------------------------------------------------
    # Commit helpers
    # ------------------------------------------------------------------

    def _descriptor(
        self,
        kind: OperationKind,
        entity_ids: Sequence[str],
        summary: str,
        timestamp: datetime | None = None,
    ) -> OperationDescriptor:
        return OperationDescriptor(
            kind=kind,
            entity_ids=tuple(entity_ids),
            timestamp=timestamp or self.clock(),
            instance=self.instance,
            summary=summary,
        )

    def _commit(
        self,
        writes: Sequence[StorageObject],
        removals: Sequence[str],
        descriptor: OperationDescriptor,
    ) -> str:
        """Write, stage and commit; restore ``HEAD`` on any failure."""
        paths = [obj.path for obj in writes] + list(removals)
        try:
            for obj in writes:
                self.repo.write_file(obj.path, obj.data)
            for path in removals:
                self.repo.remove_file(path)
            self.repo.stage(paths)
            sha = self.repo.commit(descriptor.to_commit_message())
        except BaseException:
            logger.error(
                "Commit for %s failed; restoring working copy",
                descriptor.kind.value,
            )
            self.repo.restore(paths)
            raise
        logger.debug("Committed %s as %s", descriptor.summary, sha[:12])
        return sha

    def _notify(self, descriptor: OperationDescriptor) -> None:
        if self.on_commit is not None:
            self.on_commit(descriptor)

