"""Read-side queries over a committed snapshot.

Queries never read the working copy.  The caller resolves a commit sha once
(normally ``HEAD``) and everything below reads blobs from that commit, so a
concurrent local commit or merge can never produce a half-written view.

- ``iter_records``: lazy, filtered iteration over stored records.
- ``load_tree``: all nodes of one named tree.
- ``visit``: drive a visitor over an iterable, handling early stop.
- ``walk_tree``: depth-first pre-order traversal with derived child order.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Iterable, Iterator, TypeVar

from gitstore.core.git import GitRepository
from gitstore.errors import CallerAborted, StopVisit
from gitstore.storage.mapper import ObjectKind, StorageMapper, StorageObject
from gitstore.storage.models import ROOT_ID, Record, RecordFilter, TreeNode

logger = logging.getLogger(__name__)

T = TypeVar("T")

NodeVisitor = Callable[[TreeNode, int], None]


def iter_records(
    repo: GitRepository,
    mapper: StorageMapper,
    commit: str | None,
    record_filter: RecordFilter,
) -> Iterator[Record]:
    """Yield records at *commit* that match *record_filter*.

    Order is unspecified.  A record that fails to decode raises
    ``CorruptObject`` at the point it is reached.
    """
    if commit is None:
        return
    prefix = mapper.records_prefix(record_filter.type)
    entries = []
    for path, sha in repo.list_tree(commit, prefix):
        key = mapper.classify(path)
        if key is not None and key.kind is ObjectKind.RECORD:
            entries.append((path, sha))

    blobs = repo.read_blobs(sha for _, sha in entries)
    for (path, _), data in zip(entries, blobs):
        record = mapper.decode_record(StorageObject(path=path, data=data))
        if record_filter.matches(record):
            yield record


def find_record_path(
    repo: GitRepository,
    mapper: StorageMapper,
    commit: str | None,
    record_id: str,
) -> str | None:
    """Locate the storage path of *record_id* without knowing its type."""
    if commit is None:
        return None
    for path, _ in repo.list_tree(commit, mapper.records_prefix()):
        key = mapper.classify(path)
        if key is not None and key.kind is ObjectKind.RECORD and key.id == record_id:
            return path
    return None


def load_tree(
    repo: GitRepository,
    mapper: StorageMapper,
    commit: str | None,
    tree: str,
) -> list[TreeNode]:
    """Return every node stored for *tree* at *commit*."""
    if commit is None:
        return []
    entries = [
        (path, sha)
        for path, sha in repo.list_tree(commit, mapper.tree_prefix(tree))
        if mapper.classify(path) is not None
    ]
    blobs = repo.read_blobs(sha for _, sha in entries)
    return [
        mapper.decode_node(StorageObject(path=path, data=data))
        for (path, _), data in zip(entries, blobs)
    ]


def children_index(nodes: Iterable[TreeNode]) -> dict[str, list[TreeNode]]:
    """Group *nodes* by ``parent_id``, each group in sibling order."""
    index: dict[str, list[TreeNode]] = defaultdict(list)
    for node in nodes:
        index[node.parent_id].append(node)
    for siblings in index.values():
        siblings.sort(key=TreeNode.sibling_key)
    return dict(index)


def visit(items: Iterable[T], visitor: Callable[[T], None]) -> None:
    """Call *visitor* for each item.

    ``StopVisit`` from the visitor ends iteration quietly.  Any other
    exception from the visitor is raised as ``CallerAborted``.  Errors
    raised while producing items (e.g. ``CorruptObject``) propagate as is.
    """
    for item in items:
        try:
            visitor(item)
        except StopVisit:
            return
        except Exception as exc:
            raise CallerAborted(exc) from exc


def walk_tree(nodes: Iterable[TreeNode], visitor: NodeVisitor) -> None:
    """Depth-first pre-order traversal from the root sentinel.

    At each level children are ordered by ``(created_at, id)``; each child
    is visited before its own subtree.  ``visitor(node, depth)`` receives
    depth 0 for direct children of the root.  Nodes whose parent no longer
    exists are never reached.
    """
    index = children_index(nodes)
    stack: list[tuple[TreeNode, int]] = [
        (child, 0) for child in reversed(index.get(ROOT_ID, []))
    ]
    seen: set[str] = set()
    while stack:
        node, depth = stack.pop()
        if node.id in seen:
            logger.warning("Tree cycle detected at node %s; skipping", node.id)
            continue
        seen.add(node.id)
        try:
            visitor(node, depth)
        except StopVisit:
            return
        except Exception as exc:
            raise CallerAborted(exc) from exc
        for child in reversed(index.get(node.id, [])):
            stack.append((child, depth + 1))
