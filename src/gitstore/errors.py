"""Error taxonomy for the store.

Every error raised by ``gitstore`` derives from ``GitstoreError`` so callers
can catch the whole family at once.  The concrete classes mirror the failure
modes of the reconciliation engine:

- ``NotFound``: an operation referenced an id that does not exist.
- ``CorruptObject``: stored bytes failed to decode (reported, never repaired).
- ``ConflictUnresolved``: the resolver could not pick a winner (a defect).
- ``SyncFailed``: remote unreachable or push retries exhausted.
- ``CallerAborted``: a caller-supplied function raised; nothing was committed.
- ``GitCommandError``: a ``git`` invocation exited non-zero.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .sync.models import SyncReport


class GitstoreError(Exception):
    """Base class for all store errors."""


class StopVisit(Exception):
    """Raised by a visitor to end iteration early without an error."""


class NotFound(GitstoreError):
    """An operation referenced an id that does not exist."""

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} '{entity_id}' not found")


class CorruptObject(GitstoreError):
    """Stored bytes at *path* did not decode into the expected shape."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt object at {path}: {reason}")


class ConflictUnresolved(GitstoreError):
    """The conflict resolver could not decide between two variants."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Unresolved conflict at {path}: {reason}")


class SyncFailed(GitstoreError):
    """A sync cycle failed; local state is left intact."""

    def __init__(self, reason: str, report: SyncReport | None = None) -> None:
        self.reason = reason
        self.report = report
        super().__init__(f"Sync failed: {reason}")


class CallerAborted(GitstoreError):
    """A visitor or alter function raised; the operation was abandoned.

    The original exception is available as ``error`` and ``__cause__``.
    """

    def __init__(self, error: BaseException) -> None:
        self.error = error
        super().__init__(f"Operation aborted by caller: {error!r}")


class GitCommandError(GitstoreError):
    """A ``git`` command exited with a non-zero status."""

    def __init__(
        self, args: Sequence[str], returncode: int, stderr: str
    ) -> None:
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"git {' '.join(self.command)} failed "
            f"(exit {returncode}): {stderr.strip()}"
        )
