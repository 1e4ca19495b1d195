"""Pydantic models for the sync scheduler.

Defines the data contracts shared by the sync modules:

- ``ResolutionOutcome``: what the resolver did with one conflicted path.
- ``ConflictResolution``: the record of a single resolver decision.
- ``SyncReport``: outcome of one fetch/merge/push cycle.
- ``SyncPhase`` / ``SyncStatus``: caller-visible scheduler status.

All models are frozen (immutable).
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ResolutionOutcome(str, Enum):
    """How a conflicted path was resolved."""

    KEPT_OURS = "kept_ours"
    KEPT_THEIRS = "kept_theirs"
    DELETED = "deleted"
    EDIT_WINS = "edit_wins"


class ConflictResolution(BaseModel):
    """A single conflict-resolver decision.

    Attributes:
        path: Repository path of the conflicted object.
        kind: Entity kind (``"record"`` or ``"node"``).
        outcome: What the resolver decided.
        detail: Short human-readable reason.
    """

    path: str
    kind: str
    outcome: ResolutionOutcome
    detail: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Outcome of one sync cycle.

    Attributes:
        instance: Name of the syncing instance.
        started_at: ISO 8601 timestamp when the cycle started.
        completed_at: ISO 8601 timestamp when the cycle ended.
        attempts: Number of fetch/merge/push rounds (1 without contention).
        fetched: Whether the last fetch succeeded.
        merged_commit: Sha of the merge commit created, if any.
        fast_forward: Whether remote history was taken by fast-forward.
        pushed: Whether the final push succeeded.
        resolutions: Resolver decisions across all rounds.
        error: Failure reason, ``None`` on success.
    """

    instance: str
    started_at: str
    completed_at: str | None = None
    attempts: int = 0
    fetched: bool = False
    merged_commit: str | None = None
    fast_forward: bool = False
    pushed: bool = False
    resolutions: list[ConflictResolution] = []
    error: str | None = None

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return self.error is None and self.pushed

    @property
    def retries(self) -> int:
        """Rounds beyond the first, i.e. push contention retries."""
        return max(0, self.attempts - 1)

    def summary(self) -> str:
        """Format a short human-readable summary of the cycle."""
        state = "ok" if self.success else f"failed ({self.error})"
        return (
            f"Sync for '{self.instance}': {state}; "
            f"attempts={self.attempts}, "
            f"conflicts resolved={len(self.resolutions)}"
        )


class SyncPhase(str, Enum):
    """Scheduler state as seen by callers."""

    IDLE = "idle"
    SYNCING = "syncing"
    OK = "ok"
    FAILED = "failed"


class SyncStatus(BaseModel):
    """Snapshot of the scheduler status.

    Attributes:
        phase: Current phase.
        mode: ``"auto"`` or ``"batched"``.
        pending: Whether a follow-up cycle is queued.
        last_report: Report of the most recent completed cycle.
        last_error: Most recent failure reason, cleared on success.
        last_success_at: ISO 8601 timestamp of the last successful cycle.
        cycles_completed: Number of cycles run (successful or not).
        consecutive_failures: Failures since the last success.
    """

    phase: SyncPhase = SyncPhase.IDLE
    mode: str = "auto"
    pending: bool = False
    last_report: SyncReport | None = None
    last_error: str | None = None
    last_success_at: str | None = None
    cycles_completed: int = 0
    consecutive_failures: int = 0

    model_config = {"frozen": True}
