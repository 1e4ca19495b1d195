"""Thin wrapper around the ``git`` command line.

``GitRepository`` is the version-control collaborator of the store: it
initialises a working copy, reads blobs from a fixed commit, stages and
commits files, fetches, pushes, and merges with a per-path conflict
callback.  Everything goes through ``subprocess`` with a timeout; failures
surface as ``GitCommandError`` carrying the command and stderr.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator, Sequence

from gitstore.errors import GitCommandError

logger = logging.getLogger(__name__)

ConflictCallback = Callable[
    [str, bytes | None, bytes | None, bytes | None], bytes | None
]
"""``callback(path, base, ours, theirs) -> data`` (``None`` deletes)."""

_REJECTION_MARKERS = (
    "[rejected]",
    "[remote rejected]",
    "non-fast-forward",
    "fetch first",
    "cannot lock ref",
)

_BLOB_BATCH = 256


class PushRejected(GitCommandError):
    """The remote refused the push because it moved since our last fetch."""


@dataclass
class MergeOutcome:
    """Result of ``GitRepository.merge``.

    Attributes:
        commit: Sha of the new merge commit, or ``None`` when the merge was
            a fast-forward or there was nothing to merge.
        fast_forward: ``True`` if HEAD simply moved to the merged ref.
        conflicted_paths: Paths handed to the conflict callback.
    """

    commit: str | None = None
    fast_forward: bool = False
    conflicted_paths: list[str] = field(default_factory=list)


class GitRepository:
    """A git working copy at *path*.

    Args:
        path: Working copy directory.
        git_binary: Name or path of the ``git`` executable.
        timeout: Seconds allowed for any single git command.
    """

    def __init__(
        self,
        path: Path,
        git_binary: str = "git",
        timeout: float = 60.0,
    ) -> None:
        self.path = Path(path)
        self.git_binary = git_binary
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    def _run(
        self,
        args: Sequence[str],
        input: bytes | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        env = dict(os.environ)
        env.update(
            {
                "GIT_TERMINAL_PROMPT": "0",
                "LC_ALL": "C",
                "LANGUAGE": "C",
            }
        )
        try:
            result = subprocess.run(
                [self.git_binary, *args],
                cwd=str(self.path),
                input=input,
                capture_output=True,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitCommandError(
                args, -1, f"timed out after {self.timeout}s"
            ) from exc
        except FileNotFoundError as exc:
            raise GitCommandError(
                args, -1, f"git executable not found: {self.git_binary}"
            ) from exc
        if check and result.returncode != 0:
            raise GitCommandError(
                args,
                result.returncode,
                result.stderr.decode("utf-8", errors="replace"),
            )
        return result

    def _text(self, args: Sequence[str], check: bool = True) -> str:
        result = self._run(args, check=check)
        return result.stdout.decode("utf-8", errors="replace").strip()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def is_repository(self) -> bool:
        return (self.path / ".git").exists()

    def init(self, branch: str, user_name: str, user_email: str) -> None:
        """Create an empty repository with a local identity."""
        self.path.mkdir(parents=True, exist_ok=True)
        self._run(["init", "-q", "-b", branch])
        self._run(["config", "user.name", user_name])
        self._run(["config", "user.email", user_email])
        self._run(["config", "commit.gpgsign", "false"])
        logger.info("Initialised repository at %s (branch %s)", self.path, branch)

    def ensure_remote(self, name: str, url: str) -> None:
        """Add remote *name* pointing at *url*, or update its URL."""
        remotes = self._text(["remote"]).split()
        if name in remotes:
            self._run(["remote", "set-url", name, url])
        else:
            self._run(["remote", "add", name, url])

    def has_remote(self, name: str) -> bool:
        return name in self._text(["remote"]).split()

    # ------------------------------------------------------------------
    # Refs
    # ------------------------------------------------------------------

    def rev_parse(self, ref: str) -> str | None:
        """Resolve *ref* to a commit sha, or ``None`` if it does not exist."""
        result = self._run(
            ["rev-parse", "-q", "--verify", f"{ref}^{{commit}}"], check=False
        )
        if result.returncode != 0:
            return None
        return result.stdout.decode("ascii").strip()

    def head(self) -> str | None:
        return self.rev_parse("HEAD")

    def _merge_in_progress(self) -> bool:
        result = self._run(
            ["rev-parse", "-q", "--verify", "MERGE_HEAD"], check=False
        )
        return result.returncode == 0

    # ------------------------------------------------------------------
    # Reading committed state
    # ------------------------------------------------------------------

    def list_tree(self, commit: str, prefix: str = "") -> list[tuple[str, str]]:
        """List ``(path, blob_sha)`` for every file under *prefix* at *commit*."""
        args = ["ls-tree", "-r", "-z", commit]
        if prefix:
            args += ["--", prefix]
        output = self._run(args).stdout.decode("utf-8")
        entries: list[tuple[str, str]] = []
        for item in output.split("\0"):
            if not item:
                continue
            meta, _, path = item.partition("\t")
            _mode, obj_type, sha = meta.split()
            if obj_type == "blob":
                entries.append((path, sha))
        return entries

    def read_blobs(self, shas: Iterable[str]) -> Iterator[bytes]:
        """Yield the contents of each blob in *shas*, in order.

        Blobs are fetched through ``git cat-file --batch`` in chunks so a
        lazy consumer never forces the whole tree into memory.
        """
        chunk: list[str] = []
        for sha in shas:
            chunk.append(sha)
            if len(chunk) >= _BLOB_BATCH:
                yield from self._read_blob_batch(chunk)
                chunk = []
        if chunk:
            yield from self._read_blob_batch(chunk)

    def _read_blob_batch(self, shas: list[str]) -> list[bytes]:
        payload = ("\n".join(shas) + "\n").encode("ascii")
        out = self._run(["cat-file", "--batch"], input=payload).stdout
        blobs: list[bytes] = []
        pos = 0
        for sha in shas:
            header_end = out.index(b"\n", pos)
            header = out[pos:header_end].decode("ascii").split()
            if len(header) < 3 or header[1] != "blob":
                raise GitCommandError(
                    ["cat-file", "--batch"], 0, f"unexpected object for {sha}"
                )
            size = int(header[2])
            start = header_end + 1
            blobs.append(out[start : start + size])
            pos = start + size + 1
        return blobs

    def read_file(self, commit: str, path: str) -> bytes | None:
        """Return the bytes of *path* at *commit*, or ``None`` if absent."""
        result = self._run(["cat-file", "blob", f"{commit}:{path}"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def _read_blob(self, sha: str) -> bytes:
        return self._run(["cat-file", "blob", sha]).stdout

    def log_messages(self, limit: int = 20) -> list[str]:
        """Return the full messages of the last *limit* commits, newest first."""
        if self.head() is None:
            return []
        output = self._run(
            ["log", "-z", f"-n{limit}", "--format=%B"]
        ).stdout.decode("utf-8", errors="replace")
        return [m for m in output.split("\0") if m.strip()]

    # ------------------------------------------------------------------
    # Working copy and commits
    # ------------------------------------------------------------------

    def write_file(self, path: str, data: bytes) -> None:
        target = self.path / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def remove_file(self, path: str) -> None:
        target = self.path / path
        if target.exists():
            target.unlink()

    def stage(self, paths: Sequence[str]) -> None:
        """Stage additions, modifications and removals of *paths*."""
        if paths:
            self._run(["add", "-A", "--", *paths])

    def commit(self, message: str) -> str:
        """Commit the index and return the new HEAD sha."""
        self._run(["commit", "-q", "--no-verify", "-F", "-"], input=message.encode("utf-8"))
        sha = self.head()
        if sha is None:
            raise GitCommandError(["rev-parse", "HEAD"], 0, "commit left no HEAD")
        return sha

    def restore(self, paths: Sequence[str]) -> None:
        """Discard uncommitted changes, removing untracked *paths*."""
        if self._merge_in_progress():
            self._run(["merge", "--abort"], check=False)
        if self.head() is not None:
            self._run(["reset", "-q", "--hard", "HEAD"], check=False)
        for path in paths:
            target = self.path / path
            if target.exists() and self.read_file("HEAD", path) is None:
                target.unlink()

    # ------------------------------------------------------------------
    # Remote exchange
    # ------------------------------------------------------------------

    def fetch(self, remote: str) -> None:
        self._run(["fetch", "-q", "--prune", remote])

    def push(self, remote: str, branch: str) -> None:
        """Push HEAD to *remote*/*branch*.

        Raises:
            PushRejected: If the remote branch advanced since the last fetch.
            GitCommandError: For any other failure.
        """
        args = ["push", "--porcelain", remote, f"HEAD:refs/heads/{branch}"]
        result = self._run(args, check=False)
        if result.returncode == 0:
            return
        stderr = result.stderr.decode("utf-8", errors="replace")
        stdout = result.stdout.decode("utf-8", errors="replace")
        combined = f"{stdout}\n{stderr}"
        if any(marker in combined for marker in _REJECTION_MARKERS):
            raise PushRejected(args, result.returncode, combined)
        raise GitCommandError(args, result.returncode, combined)

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge(
        self,
        ref: str,
        on_conflict: ConflictCallback,
        message: str,
    ) -> MergeOutcome:
        """Merge *ref* into HEAD, resolving overlapping paths via a callback.

        Rename detection is disabled so a record written under a new id is
        never paired with the record it replaced.  For every unmerged path
        the callback receives the base, ours (HEAD) and theirs (*ref*)
        blobs, any of which may be ``None``, and returns the resolved bytes
        or ``None`` to delete the path.

        If the callback raises, the merge is aborted and the exception
        propagates with the working copy back at the original HEAD.
        """
        before = self.head()
        args = [
            "merge",
            "-q",
            "--no-edit",
            "--no-commit",
            "-X",
            "no-renames",
            "--allow-unrelated-histories",
            ref,
        ]
        result = self._run(args, check=False)
        unmerged = self._unmerged_entries()

        if result.returncode != 0 and not unmerged:
            if self._merge_in_progress():
                self._run(["merge", "--abort"], check=False)
            raise GitCommandError(
                args,
                result.returncode,
                result.stderr.decode("utf-8", errors="replace"),
            )

        outcome = MergeOutcome(conflicted_paths=sorted(unmerged))
        try:
            for path in outcome.conflicted_paths:
                stages = unmerged[path]
                base = self._stage_blob(stages, 1)
                ours = self._stage_blob(stages, 2)
                theirs = self._stage_blob(stages, 3)
                resolved = on_conflict(path, base, ours, theirs)
                if resolved is None:
                    self._run(["rm", "-q", "--cached", "--ignore-unmatch", "--", path])
                    self.remove_file(path)
                else:
                    self.write_file(path, resolved)
                    self._run(["add", "--", path])
        except BaseException:
            self._run(["merge", "--abort"], check=False)
            raise

        if self._merge_in_progress():
            outcome.commit = self.commit(message)
        elif self.head() != before:
            outcome.fast_forward = True
        return outcome

    def _unmerged_entries(self) -> dict[str, dict[int, str]]:
        output = self._run(["ls-files", "-u", "-z"]).stdout.decode("utf-8")
        entries: dict[str, dict[int, str]] = {}
        for item in output.split("\0"):
            if not item:
                continue
            meta, _, path = item.partition("\t")
            _mode, sha, stage = meta.split()
            entries.setdefault(path, {})[int(stage)] = sha
        return entries

    def _stage_blob(self, stages: dict[int, str], stage: int) -> bytes | None:
        sha = stages.get(stage)
        if sha is None:
            return None
        return self._read_blob(sha)
