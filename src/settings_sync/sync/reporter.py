"""Merge report formatting functions.

Provides human-readable and machine-readable output for reconciliation:

- ``auto_merge_summary`` -- one line per auto-merged key.
- ``format_merge_summary`` -- per-file status overview.
- ``format_conflict`` -- base/local/remote view of one conflict.
- ``format_conflict_diff`` -- unified diff for opaque file conflicts.
- ``format_plan`` -- what a sync run wrote, or would write.
- ``format_diff`` -- local vs remote comparison, optionally keys only.
- ``format_transfer`` -- outcome of a push or pull.
- ``sync_result_to_json`` -- structured dict for scripted callers.
"""

from __future__ import annotations

import difflib
from typing import TYPE_CHECKING

from .models import (
    FILE_KEY,
    AutoMergeAction,
    ConflictEntry,
    DiffStatus,
    FileKind,
    FileMergeResult,
    MergeStatus,
)

if TYPE_CHECKING:
    from .models import (
        FileDiff,
        SyncPlan,
        SyncReport,
        SyncResult,
        TransferReport,
    )

_AUTO_MERGE_LABELS: dict[AutoMergeAction, tuple[str, str]] = {
    AutoMergeAction.ADDED_FROM_LOCAL: ("+", "from local"),
    AutoMergeAction.ADDED_FROM_REMOTE: ("+", "from remote"),
    AutoMergeAction.DELETED: ("-", "deleted"),
    AutoMergeAction.UPDATED_FROM_LOCAL: ("~", "updated from local"),
    AutoMergeAction.UPDATED_FROM_REMOTE: ("~", "updated from remote"),
}

_STATUS_MARKERS: dict[MergeStatus, str] = {
    MergeStatus.CLEAN: "=",
    MergeStatus.AUTO_MERGED: "~",
    MergeStatus.CONFLICTED: "!",
}

MAX_VALUE_LENGTH = 50


def truncate_value(value: str, max_length: int = MAX_VALUE_LENGTH) -> str:
    """Shorten long values for display."""
    if len(value) <= max_length:
        return value
    return value[: max_length - 3] + "..."


# ------------------------------------------------------------------
# Auto-merge summary
# ------------------------------------------------------------------


def auto_merge_summary(result: FileMergeResult) -> list[str]:
    """Describe every auto-merged key of *result*, one line each."""
    lines = []
    for entry in result.auto_merged:
        symbol, label = _AUTO_MERGE_LABELS[entry.action]
        name = "file" if entry.key == FILE_KEY else entry.key
        lines.append(f"{symbol} {name} ({label})")
    return lines


def format_merge_summary(sync_result: SyncResult) -> str:
    """Format the per-file outcome of a reconciliation.

    Args:
        sync_result: The aggregated reconciliation result.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = ["Sync summary:", ""]

    for result in sync_result.files:
        lines.append(f"  {_STATUS_MARKERS[result.status]} {result.file_name}")
        for line in auto_merge_summary(result):
            lines.append(f"      {line}")
        if result.conflicts:
            lines.append(f"      {len(result.conflicts)} conflict(s)")

    if not sync_result.files:
        lines.append("  (no tracked files)")

    lines.append("")
    if sync_result.has_conflicts:
        lines.append(
            f"Found {sync_result.conflict_count} conflict(s) requiring resolution."
        )
    elif all(f.status == MergeStatus.CLEAN for f in sync_result.files):
        lines.append("Already in sync. No changes needed.")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Conflicts
# ------------------------------------------------------------------


def format_conflict_value(kind: FileKind, value: str | None) -> str:
    """Render one side of a conflict on a single line.

    Keyed values are shown truncated.  Opaque contents are summarised by
    their first line and total length.
    """
    if value is None:
        return "(deleted)"
    if kind == FileKind.KEYED:
        return truncate_value(value)
    if not value:
        return "(empty)"
    first_line = value.split("\n", 1)[0]
    suffix = "..." if len(first_line) < len(value) else ""
    return f"{truncate_value(first_line)}{suffix} ({len(value)} chars)"


def format_conflict(result: FileMergeResult, conflict: ConflictEntry) -> str:
    """Format a single conflict for review."""
    target = "file" if conflict.key == FILE_KEY else conflict.key
    lines = [
        f"Conflict: {result.file_name} -> {target}",
        f"  Type:   {conflict.conflict_type.value}",
    ]
    if conflict.base_value is not None:
        lines.append(
            f"  Base:   {format_conflict_value(result.kind, conflict.base_value)}"
        )
    else:
        lines.append("  Base:   (none)")
    lines.append(
        f"  Local:  {format_conflict_value(result.kind, conflict.local_value)}"
    )
    lines.append(
        f"  Remote: {format_conflict_value(result.kind, conflict.remote_value)}"
    )
    return "\n".join(lines)


def format_conflict_diff(
    result: FileMergeResult, conflict: ConflictEntry
) -> str:
    """Show a unified diff between local and remote for one conflict.

    Absent sides are diffed as empty text.

    Returns:
        Multi-line diff, or ``(no textual differences)``.
    """
    local_lines = (conflict.local_value or "").splitlines(keepends=True)
    remote_lines = (conflict.remote_value or "").splitlines(keepends=True)
    diff_text = "".join(
        difflib.unified_diff(
            local_lines,
            remote_lines,
            fromfile=f"local: {result.file_name}",
            tofile=f"remote: {result.file_name}",
        )
    )
    if not diff_text:
        return "(no textual differences)"
    return diff_text.rstrip()


# ------------------------------------------------------------------
# Plan / run report
# ------------------------------------------------------------------


def format_plan(plan: SyncPlan) -> str:
    """Format what a sync run persists."""
    lines: list[str] = []
    if plan.writes:
        lines.append("Write:")
        for name in sorted(plan.writes):
            lines.append(f"  {name}")
    if plan.deletions:
        lines.append("No content after merge (kept locally):")
        for name in plan.deletions:
            lines.append(f"  {name}")
    if plan.unresolved:
        lines.append("Unresolved (not written):")
        for name in plan.unresolved:
            lines.append(f"  {name}")
    if not lines:
        lines.append("Nothing to write.")
    return "\n".join(lines)


def format_sync_report(report: SyncReport) -> str:
    """Format a complete ``SyncEngine.run`` report."""
    header = f"Sync report for '{report.project_name}'"
    if report.dry_run:
        header += " (DRY RUN)"
    lines = [
        header,
        f"Started: {report.started_at}",
    ]
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")
    lines.append(format_merge_summary(report.result))
    lines.append("")
    lines.append(format_plan(report.plan))
    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Diff / push / pull
# ------------------------------------------------------------------


def format_diff(diffs: list[FileDiff], keys_only: bool = False) -> str:
    """Format a local vs remote comparison.

    Args:
        diffs: Output of ``SyncEngine.diff``.
        keys_only: Show which keys differ without their values.
    """
    lines: list[str] = []
    for d in diffs:
        if d.status == DiffStatus.ONLY_LOCAL:
            lines.append(f"{d.file_name}: only exists locally")
        elif d.status == DiffStatus.ONLY_REMOTE:
            lines.append(f"{d.file_name}: only exists remotely")
        elif d.status == DiffStatus.IN_SYNC:
            lines.append(f"{d.file_name}: in sync")
        elif d.kind == FileKind.OPAQUE:
            lines.append(f"{d.file_name}:")
            lines.append("  Content differs")
        else:
            lines.append(f"{d.file_name}:")
            lines.extend(_key_diff_lines(d, keys_only))

    if not diffs:
        lines.append("No files to compare.")
    elif all(d.status == DiffStatus.IN_SYNC for d in diffs):
        lines.append("")
        lines.append("All files are in sync.")
    return "\n".join(lines)


def _key_diff_lines(d: FileDiff, keys_only: bool) -> list[str]:
    lines: list[str] = []
    if d.added:
        lines.append("  Added locally:")
        for key in d.added:
            shown = key if keys_only else f"{key}={d.local_values[key]}"
            lines.append(f"    + {shown}")
    if d.removed:
        lines.append("  Removed locally:")
        for key in d.removed:
            shown = key if keys_only else f"{key}={d.remote_values[key]}"
            lines.append(f"    - {shown}")
    if d.changed:
        lines.append("  Changed:")
        for key in d.changed:
            if keys_only:
                lines.append(f"    ~ {key}")
            else:
                lines.append(f"    - {key}={d.remote_values[key]}")
                lines.append(f"    + {key}={d.local_values[key]}")
    return lines


def format_transfer(report: TransferReport) -> str:
    """Format the outcome of a push or pull."""
    verb = report.direction.value
    if report.blocked:
        lines = [f"{verb.capitalize()} refused: {report.drift.reason}."]
        for name in report.drift.changed:
            lines.append(f"  {name}")
        lines.append("Run a sync to merge both sides, or force the transfer.")
        return "\n".join(lines)

    if not report.files:
        return f"Nothing to {verb}."
    header = f"Would {verb}" if report.dry_run else f"{verb.capitalize()}ed"
    lines = [f"{header} {len(report.files)} file(s):"]
    for name in report.files:
        lines.append(f"  {name}")
    for name in report.backups:
        lines.append(f"Backup: {name}")
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def sync_result_to_json(sync_result: SyncResult) -> dict:
    """Convert a sync result to a structured dict for JSON serialisation.

    Conflict values are included; callers exposing the output must treat
    it as secret.
    """
    files = []
    for result in sync_result.files:
        entry: dict = {
            "file_name": result.file_name,
            "kind": result.kind.value,
            "status": result.status.value,
            "auto_merged": [
                {"key": a.key, "action": a.action.value}
                for a in result.auto_merged
            ],
            "conflicts": [
                {
                    "key": c.key,
                    "conflict_type": c.conflict_type.value,
                    "base_value": c.base_value,
                    "local_value": c.local_value,
                    "remote_value": c.remote_value,
                }
                for c in result.conflicts
            ],
        }
        files.append(entry)

    return {
        "has_conflicts": sync_result.has_conflicts,
        "requires_user_action": sync_result.requires_user_action,
        "counts": {
            "files": len(sync_result.files),
            "conflicts": sync_result.conflict_count,
            "auto_merged": sum(len(f.auto_merged) for f in sync_result.files),
        },
        "files": files,
    }
