"""Entity-aware conflict resolution for git merges.

``EntityConflictResolver.resolve`` is called by ``GitRepository.merge`` for
every path git could not merge on its own.  Because each entity lives in
its own file, those are exactly the cases where both histories changed or
removed the *same* entity since their common ancestor.

Rules:

* Tree nodes, both sides present: the greater ``updated_at`` wins; equal
  timestamps fall back to the smaller id, then label, then encoded bytes so
  every pair has exactly one winner.
* Tree nodes, one side deleted: if the surviving side is unchanged from the
  ancestor the deletion stands, otherwise the edit wins and the node is
  kept as the editing side wrote it.
* Records, one side deleted: same as nodes.  Records are never edited in
  place, so a surviving variant always wins over a deletion.
* Records, both sides present: identical bytes are kept; anything else is
  ``ConflictUnresolved``.

Resolution depends only on (ancestor, ours, theirs) and the timestamps
stored in them, never on the clock at merge time, so every replica reaches
the same state whichever side merges first.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

from gitstore.errors import ConflictUnresolved
from gitstore.storage.mapper import ObjectKind, StorageMapper, StorageObject
from gitstore.storage.models import TreeNode
from gitstore.sync.models import ConflictResolution, ResolutionOutcome

logger = logging.getLogger(__name__)


class Resolution(BaseModel):
    """Resolver output for one path.

    Attributes:
        data: Bytes to keep at the path, or ``None`` to delete it.
        info: The decision, for reporting.
    """

    data: bytes | None
    info: ConflictResolution

    model_config = {"frozen": True}


def resolve_nodes(a: TreeNode, b: TreeNode) -> TreeNode:
    """Pick the winning variant of two concurrent edits to one node.

    Commutative: ``resolve_nodes(a, b) == resolve_nodes(b, a)``.
    """
    if a.updated_at != b.updated_at:
        return a if a.updated_at > b.updated_at else b
    return min(a, b, key=lambda n: (n.id, n.label, n.model_dump_json()))


class EntityConflictResolver:
    """Merge policy for overlapping changes to the same storage object.

    Args:
        mapper: Storage mapper used to classify and decode paths.
    """

    def __init__(self, mapper: StorageMapper | None = None) -> None:
        self.mapper = mapper or StorageMapper()

    def resolve(
        self,
        path: str,
        base: bytes | None,
        ours: bytes | None,
        theirs: bytes | None,
    ) -> Resolution:
        """Resolve one conflicted path.

        Raises:
            ConflictUnresolved: If *path* is not an entity path, or two
                different records claim the same id.
            CorruptObject: If any variant fails to decode.
        """
        key = self.mapper.classify(path)
        if key is None:
            raise ConflictUnresolved(path, "not an entity path")
        kind = key.kind.value

        if ours is None and theirs is None:
            return self._result(
                path,
                kind,
                None,
                ResolutionOutcome.DELETED,
                "deleted on both sides",
            )

        if ours is None:
            return self._resolve_deletion(path, kind, base, theirs, "remote")
        if theirs is None:
            return self._resolve_deletion(path, kind, base, ours, "local")

        if key.kind is ObjectKind.RECORD:
            return self._resolve_records(path, kind, ours, theirs)
        return self._resolve_node_edits(path, kind, ours, theirs)

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    def _resolve_deletion(
        self,
        path: str,
        kind: str,
        base: bytes | None,
        survivor: bytes,
        side: str,
    ) -> Resolution:
        self.mapper.decode(StorageObject(path=path, data=survivor))
        if base is not None and survivor == base:
            return self._result(
                path, kind, None, ResolutionOutcome.DELETED,
                "deleted on one side, unchanged on the other",
            )
        return self._result(
            path, kind, survivor, ResolutionOutcome.EDIT_WINS,
            f"{side} change wins over deletion",
        )

    def _resolve_records(
        self, path: str, kind: str, ours: bytes, theirs: bytes
    ) -> Resolution:
        self.mapper.decode(StorageObject(path=path, data=ours))
        self.mapper.decode(StorageObject(path=path, data=theirs))
        if ours == theirs:
            return self._result(
                path, kind, ours, ResolutionOutcome.KEPT_OURS, "identical"
            )
        raise ConflictUnresolved(path, "two different records share one id")

    def _resolve_node_edits(
        self, path: str, kind: str, ours: bytes, theirs: bytes
    ) -> Resolution:
        ours_node = self.mapper.decode_node(StorageObject(path=path, data=ours))
        theirs_node = self.mapper.decode_node(StorageObject(path=path, data=theirs))
        winner = resolve_nodes(ours_node, theirs_node)
        if winner is ours_node:
            return self._result(
                path, kind, ours, ResolutionOutcome.KEPT_OURS,
                f"label {ours_node.label!r} (updated {ours_node.updated_at.isoformat()})",
            )
        return self._result(
            path, kind, theirs, ResolutionOutcome.KEPT_THEIRS,
            f"label {theirs_node.label!r} (updated {theirs_node.updated_at.isoformat()})",
        )

    @staticmethod
    def _result(
        path: str,
        kind: str,
        data: bytes | None,
        outcome: ResolutionOutcome,
        detail: str,
    ) -> Resolution:
        logger.info("Resolved %s: %s (%s)", path, outcome.value, detail)
        return Resolution(
            data=data,
            info=ConflictResolution(
                path=path, kind=kind, outcome=outcome, detail=detail
            ),
        )
