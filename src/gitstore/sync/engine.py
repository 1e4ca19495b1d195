"""Sync engine: one fetch / merge / push cycle against the shared remote.

The ``SyncEngine`` ties together the working copy, the conflict resolver
and the instance write lock into a complete sync run.  It:

1. Fetches the remote branch.
2. Merges it into ``HEAD`` under the write lock, resolving every path git
   could not merge through ``EntityConflictResolver``.
3. Pushes ``HEAD`` back to the remote branch.
4. On push contention (the remote moved since the fetch), sleeps with
   bounded exponential backoff and starts over from step 1.
5. Builds and returns a ``SyncReport``.

Local history is never rolled back: a failed cycle leaves every local
commit in place for the next attempt.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Callable, NoReturn

from gitstore.config_schema import StoreConfig, SyncConfig
from gitstore.core.git import GitRepository, MergeOutcome, PushRejected
from gitstore.errors import GitCommandError, SyncFailed
from gitstore.storage.models import (
    Clock,
    OperationDescriptor,
    OperationKind,
    utc_now,
)
from gitstore.sync.models import ConflictResolution, SyncReport
from gitstore.sync.resolver import EntityConflictResolver

logger = logging.getLogger(__name__)


class _Progress:
    """Mutable accumulator for the frozen ``SyncReport``."""

    def __init__(self, instance: str, started_at: datetime) -> None:
        self.instance = instance
        self.started_at = started_at.isoformat()
        self.attempts = 0
        self.fetched = False
        self.merged_commit: str | None = None
        self.fast_forward = False
        self.pushed = False
        self.resolutions: list[ConflictResolution] = []

    def report(self, completed_at: datetime, error: str | None = None) -> SyncReport:
        return SyncReport(
            instance=self.instance,
            started_at=self.started_at,
            completed_at=completed_at.isoformat(),
            attempts=self.attempts,
            fetched=self.fetched,
            merged_commit=self.merged_commit,
            fast_forward=self.fast_forward,
            pushed=self.pushed,
            resolutions=list(self.resolutions),
            error=error,
        )


class SyncEngine:
    """Run sync cycles for one instance.

    Args:
        repo: The instance working copy.
        lock: The instance write lock shared with ``MutationLog``.
        store_config: Remote name, branch and instance name.
        sync_config: Retry ceiling and backoff parameters.
        resolver: Conflict resolver (default ``EntityConflictResolver()``).
        clock: Source of timestamps for reports and merge descriptors.
        sleep: Called with the backoff delay between contended attempts.
    """

    def __init__(
        self,
        repo: GitRepository,
        lock: threading.RLock,
        store_config: StoreConfig,
        sync_config: SyncConfig,
        resolver: EntityConflictResolver | None = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repo = repo
        self.lock = lock
        self.store_config = store_config
        self.sync_config = sync_config
        self.resolver = resolver or EntityConflictResolver()
        self.clock = clock
        self.sleep = sleep

    @property
    def remote_ref(self) -> str:
        return (
            f"refs/remotes/{self.store_config.remote_name}/"
            f"{self.store_config.branch}"
        )

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(self) -> SyncReport:
        """Execute one sync cycle.

        Returns:
            A successful ``SyncReport``.

        Raises:
            SyncFailed: If no remote is configured, the remote is
                unreachable, or push contention outlasts ``max_retries``.
                The partial report is attached as ``report``.
            ConflictUnresolved: If the resolver cannot decide a path; the
                merge is aborted and ``HEAD`` is unchanged.
            CorruptObject: If a conflicted object fails to decode.
        """
        cfg = self.store_config
        progress = _Progress(cfg.instance, self.clock())
        logger.info(
            "Starting sync for '%s' with %s/%s",
            cfg.instance,
            cfg.remote_name,
            cfg.branch,
        )

        if not self.repo.has_remote(cfg.remote_name):
            self._fail(progress, f"no remote '{cfg.remote_name}' configured")

        for retry in range(self.sync_config.max_retries + 1):
            progress.attempts += 1
            self._fetch(progress)
            self._merge(progress)

            if self._remote_is_current():
                logger.debug("Remote already at HEAD; nothing to push")
                progress.pushed = True
                break

            try:
                self.repo.push(cfg.remote_name, cfg.branch)
            except PushRejected:
                if retry >= self.sync_config.max_retries:
                    break
                delay = self.sync_config.backoff_delay(retry)
                logger.warning(
                    "Push to %s/%s rejected (attempt %d); retrying in %.2fs",
                    cfg.remote_name,
                    cfg.branch,
                    progress.attempts,
                    delay,
                )
                self.sleep(delay)
                continue
            except GitCommandError as exc:
                self._fail(progress, f"push failed: {exc.stderr.strip()}", exc)
            progress.pushed = True
            break

        if not progress.pushed:
            self._fail(
                progress,
                f"retry ceiling reached after {progress.attempts} attempts",
            )

        report = progress.report(self.clock())
        logger.info(report.summary())
        return report

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _fetch(self, progress: _Progress) -> None:
        try:
            self.repo.fetch(self.store_config.remote_name)
        except GitCommandError as exc:
            self._fail(progress, f"fetch failed: {exc.stderr.strip()}", exc)
        progress.fetched = True

    def _merge(self, progress: _Progress) -> None:
        if self.repo.rev_parse(self.remote_ref) is None:
            logger.debug("Remote branch %s does not exist yet", self.remote_ref)
            return

        def on_conflict(
            path: str,
            base: bytes | None,
            ours: bytes | None,
            theirs: bytes | None,
        ) -> bytes | None:
            resolution = self.resolver.resolve(path, base, ours, theirs)
            progress.resolutions.append(resolution.info)
            return resolution.data

        with self.lock:
            descriptor = OperationDescriptor(
                kind=OperationKind.MERGE,
                timestamp=self.clock(),
                instance=self.store_config.instance,
                summary=(
                    f"merge {self.store_config.remote_name}/"
                    f"{self.store_config.branch}"
                ),
            )
            try:
                outcome: MergeOutcome = self.repo.merge(
                    self.remote_ref, on_conflict, descriptor.to_commit_message()
                )
            except GitCommandError as exc:
                self._fail(progress, f"merge failed: {exc.stderr.strip()}", exc)

        if outcome.commit is not None:
            progress.merged_commit = outcome.commit
            logger.info(
                "Merged %s as %s (%d conflicted paths)",
                self.remote_ref,
                outcome.commit[:12],
                len(outcome.conflicted_paths),
            )
        elif outcome.fast_forward:
            progress.fast_forward = True
            logger.debug("Fast-forwarded to %s", self.remote_ref)

    def _remote_is_current(self) -> bool:
        remote = self.repo.rev_parse(self.remote_ref)
        return remote is not None and remote == self.repo.head()

    def _fail(
        self,
        progress: _Progress,
        reason: str,
        cause: BaseException | None = None,
    ) -> NoReturn:
        report = progress.report(self.clock(), error=reason)
        logger.error("Sync for '%s' failed: %s", progress.instance, reason)
        raise SyncFailed(reason, report) from cause
