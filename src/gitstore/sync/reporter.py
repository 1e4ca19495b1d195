"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_sync_report`` -- full post-sync summary.
- ``format_status`` -- one-line scheduler status.
- ``report_to_json`` -- structured dict for logs or tooling.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import SyncReport, SyncStatus

from .models import ResolutionOutcome

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    The resolutions section is only included when the cycle resolved at
    least one conflicted path.

    Args:
        report: The completed (or failed) sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    lines.append(f"Sync report for '{report.instance}'")
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    state = "ok" if report.success else "FAILED"
    lines.append(
        f"Result: {state} after {report.attempts} attempt(s), "
        f"{report.retries} retries"
    )
    if report.merged_commit:
        lines.append(f"Merged: {report.merged_commit}")
    elif report.fast_forward:
        lines.append("Merged: fast-forward")
    else:
        lines.append("Merged: nothing new")
    lines.append(f"Pushed: {'yes' if report.pushed else 'no'}")
    lines.append("")

    if report.resolutions:
        counts = Counter(r.outcome for r in report.resolutions)
        summary = ", ".join(
            f"{counts[o]} {o.value}" for o in ResolutionOutcome if counts[o]
        )
        lines.append(f"Conflicts resolved ({summary}):")
        for r in report.resolutions:
            desc = f": {r.detail}" if r.detail else ""
            lines.append(f"  [{r.outcome.value}] {r.path}{desc}")
        lines.append("")

    if report.error:
        lines.append(f"Error: {report.error}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_status(status: SyncStatus) -> str:
    """Format the scheduler status as a single line."""
    parts = [f"sync {status.phase.value}", f"mode={status.mode}"]
    if status.pending:
        parts.append("pending")
    parts.append(f"cycles={status.cycles_completed}")
    if status.last_success_at:
        parts.append(f"last_success={status.last_success_at}")
    if status.consecutive_failures:
        parts.append(f"failures={status.consecutive_failures}")
    if status.last_error:
        parts.append(f"error={status.last_error}")
    return " ".join(parts)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with cycle info, counts, and per-resolution details.
    """
    resolutions_list = []
    for r in report.resolutions:
        entry: dict = {
            "path": r.path,
            "kind": r.kind,
            "outcome": r.outcome.value,
        }
        if r.detail:
            entry["detail"] = r.detail
        resolutions_list.append(entry)

    counts = Counter(r.outcome.value for r in report.resolutions)
    return {
        "instance": report.instance,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "success": report.success,
        "attempts": report.attempts,
        "fetched": report.fetched,
        "merged_commit": report.merged_commit,
        "fast_forward": report.fast_forward,
        "pushed": report.pushed,
        "counts": {
            "resolutions": len(report.resolutions),
            **{o.value: counts.get(o.value, 0) for o in ResolutionOutcome},
        },
        "resolutions": resolutions_list,
        "error": report.error,
    }
