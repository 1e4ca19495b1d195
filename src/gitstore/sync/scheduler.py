"""Background sync worker.

``SyncScheduler`` owns a single daemon thread that runs ``SyncEngine``
cycles on request.  Local mutations never wait for the network: in
``auto`` mode each commit calls ``request()``, which only flags a pending
cycle and wakes the worker.  Requests that arrive while a cycle is running
collapse into one follow-up cycle.  In ``batched`` mode requests are
ignored and only ``flush()`` syncs.

Failures of background cycles are logged and recorded in ``status()``;
they are never raised into the thread that committed.
"""

from __future__ import annotations

import logging
import threading

from gitstore.errors import GitstoreError, SyncFailed
from gitstore.storage.models import Clock, utc_now
from gitstore.sync.engine import SyncEngine
from gitstore.sync.models import SyncPhase, SyncReport, SyncStatus

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Run sync cycles off the caller's thread.

    Args:
        engine: Engine that performs one cycle.
        mode: ``"auto"`` or ``"batched"``.
        instance: Instance name, used for the worker thread name.
        clock: Source of ``last_success_at`` timestamps.
    """

    def __init__(
        self,
        engine: SyncEngine,
        mode: str = "auto",
        instance: str = "gitstore",
        clock: Clock = utc_now,
    ) -> None:
        self.engine = engine
        self.mode = mode
        self.instance = instance
        self.clock = clock

        self._cycle_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._idle = threading.Condition(self._state_lock)
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

        self._pending = False
        self._running = False
        self._status = SyncStatus(mode=mode)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread (no-op if already running)."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name=f"gitstore-sync-{self.instance}",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Sync worker started (mode=%s)", self.mode)

    def stop(self, timeout: float | None = 10.0) -> None:
        """Stop the worker thread, waiting up to *timeout* seconds.

        A cycle already in flight finishes; pending requests are dropped.
        """
        self._stop.set()
        self._wake.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(
                    "Sync worker did not stop within %ss", timeout
                )
        self._thread = None

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def request(self, *_: object) -> None:
        """Ask for a sync cycle soon.

        Accepts and ignores any arguments so it can be used directly as a
        commit callback.  Ignored in ``batched`` mode.
        """
        if self.mode != "auto":
            return
        with self._state_lock:
            self._pending = True
            self._status = self._status.model_copy(update={"pending": True})
        self._wake.set()

    def flush(self, timeout: float | None = None) -> SyncReport:
        """Run a cycle now, on the calling thread.

        Waits for any in-flight background cycle first so the cycle sees
        every commit made before the call.

        Args:
            timeout: Seconds to wait for an in-flight cycle to finish;
                ``None`` waits as long as it takes.

        Raises:
            SyncFailed: If the cycle fails, or *timeout* expires before the
                in-flight cycle finishes.
            ConflictUnresolved: If the resolver cannot decide a path.
            CorruptObject: If a conflicted object fails to decode.
        """
        wait = -1 if timeout is None else timeout
        if not self._cycle_lock.acquire(timeout=wait):
            raise SyncFailed(
                f"timed out after {timeout}s waiting for the in-flight sync"
            )
        try:
            with self._state_lock:
                self._pending = False
            return self._cycle()
        finally:
            self._cycle_lock.release()

    def status(self) -> SyncStatus:
        """Return a snapshot of the scheduler status."""
        with self._state_lock:
            return self._status

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no cycle is running or pending.

        Returns:
            ``True`` if idle was reached, ``False`` on timeout.
        """
        with self._idle:
            return self._idle.wait_for(
                lambda: not self._pending and not self._running, timeout
            )

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _loop(self) -> None:
        while not self._stop.is_set():
            self._wake.wait()
            self._wake.clear()
            if self._stop.is_set():
                break
            with self._state_lock:
                if not self._pending:
                    continue
                self._pending = False
                self._running = True
            try:
                self._run_cycle()
            except GitstoreError as exc:
                logger.error("Background sync failed: %s", exc)
            except Exception:
                logger.exception("Unexpected error in background sync")
        with self._idle:
            self._pending = False
            self._idle.notify_all()

    def _run_cycle(self) -> SyncReport:
        with self._cycle_lock:
            return self._cycle()

    def _cycle(self) -> SyncReport:
        with self._state_lock:
            self._running = True
            self._status = self._status.model_copy(
                update={"phase": SyncPhase.SYNCING, "pending": self._pending}
            )
        try:
            report = self.engine.run()
        except SyncFailed as exc:
            self._finish(exc.report, str(exc))
            raise
        except Exception as exc:
            self._finish(None, str(exc))
            raise
        self._finish(report, None)
        return report

    def _finish(self, report: SyncReport | None, error: str | None) -> None:
        with self._idle:
            self._running = False
            status = self._status
            updates: dict[str, object] = {
                "pending": self._pending,
                "cycles_completed": status.cycles_completed + 1,
            }
            if report is not None:
                updates["last_report"] = report
            if error is None:
                updates.update(
                    phase=SyncPhase.OK,
                    last_error=None,
                    last_success_at=self.clock().isoformat(),
                    consecutive_failures=0,
                )
            else:
                updates.update(
                    phase=SyncPhase.FAILED,
                    last_error=error,
                    consecutive_failures=status.consecutive_failures + 1,
                )
            self._status = status.model_copy(update=updates)
            self._idle.notify_all()
