"""Replication between store instances over a shared git remote.

Architecture
------------
Every instance commits locally and converges through ordinary git
history: a sync cycle fetches the shared branch, merges it into ``HEAD``,
and pushes the result.  Because each entity lives in its own file, git
only reports a conflict when both sides touched the *same* entity; those
paths are decided by ``EntityConflictResolver`` from the three stored
variants alone, so every replica reaches the same state.

Modules:

- ``engine``    -- ``SyncEngine``: one fetch / merge / push cycle with
  bounded exponential backoff on push contention.
- ``scheduler`` -- ``SyncScheduler``: background worker, request
  coalescing, ``flush()`` and ``status()``.
- ``resolver``  -- ``EntityConflictResolver`` and ``resolve_nodes``.
- ``models``    -- ``ConflictResolution``, ``SyncReport``, ``SyncStatus``.
- ``reporter``  -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from gitstore import Store
    from gitstore.sync import format_sync_report

    with Store.open("data/laptop", remote_url="/srv/git/shared.git") as store:
        store.write("note", {"text": "hello"})
        report = store.flush()
        print(format_sync_report(report))
"""

from .engine import SyncEngine
from .models import (
    ConflictResolution,
    ResolutionOutcome,
    SyncPhase,
    SyncReport,
    SyncStatus,
)
from .reporter import format_status, format_sync_report, report_to_json
from .resolver import EntityConflictResolver, Resolution, resolve_nodes
from .scheduler import SyncScheduler

__all__ = [
    "ConflictResolution",
    "EntityConflictResolver",
    "Resolution",
    "ResolutionOutcome",
    "SyncEngine",
    "SyncPhase",
    "SyncReport",
    "SyncScheduler",
    "SyncStatus",
    "format_status",
    "format_sync_report",
    "report_to_json",
    "resolve_nodes",
]
