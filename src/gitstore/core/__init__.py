"""Version-control collaborator."""

from .git import GitRepository, MergeOutcome, PushRejected

__all__ = ["GitRepository", "MergeOutcome", "PushRejected"]
