"""Replicated record and tree store backed by git history."""

__version__ = "0.1.0"

from .errors import (
    CallerAborted,
    ConflictUnresolved,
    CorruptObject,
    GitCommandError,
    GitstoreError,
    NotFound,
    StopVisit,
    SyncFailed,
)
from .storage.models import ROOT_ID, Record, RecordFilter, TreeNode
from .store import Store, TreeHandle

__all__ = [
    "ROOT_ID",
    "CallerAborted",
    "ConflictUnresolved",
    "CorruptObject",
    "GitCommandError",
    "GitstoreError",
    "NotFound",
    "Record",
    "RecordFilter",
    "Store",
    "StopVisit",
    "SyncFailed",
    "TreeHandle",
    "TreeNode",
    "__version__",
]
