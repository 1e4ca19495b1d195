"""Entity storage: models, on-disk mapping, queries and the mutation log.

Modules:

- ``models``    -- ``Record``, ``TreeNode``, ``RecordFilter``,
  ``OperationDescriptor``.
- ``mapper``    -- ``StorageMapper``: one JSON file per entity.
- ``query``     -- snapshot reads, record filtering and tree walks.
- ``mutations`` -- ``MutationLog``: one local commit per operation.
"""

from .mapper import ObjectKey, ObjectKind, StorageMapper, StorageObject
from .models import (
    ROOT_ID,
    OperationDescriptor,
    OperationKind,
    Record,
    RecordFilter,
    TreeNode,
)
from .mutations import MutationLog

__all__ = [
    "ROOT_ID",
    "MutationLog",
    "ObjectKey",
    "ObjectKind",
    "OperationDescriptor",
    "OperationKind",
    "Record",
    "RecordFilter",
    "StorageMapper",
    "StorageObject",
    "TreeNode",
]
