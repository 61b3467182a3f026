"""Three-way file reconciliation.

Applies ``resolve_key`` across a whole file and assembles a
``FileMergeResult``:

* **Keyed files** (env files) are reconciled key by key over the union of
  keys in base, local and remote, iterated in lexical order so output is
  deterministic.
* **Opaque files** (any other text) are reconciled once, treating the whole
  content as a single value.  There is no line-level merging: two different
  edits of the same document are always a conflict.

For conflicted keys the merged output provisionally carries the local
value (or nothing, if local deleted it).  Dry-run previews and renderers
rely on this "prefer local" default until the conflict is resolved.
"""

from __future__ import annotations

import logging

from .models import (
    FILE_KEY,
    AutoMergeEntry,
    ConflictEntry,
    FileKind,
    FileMergeResult,
    MergeStatus,
    SyncResult,
)
from .rules import OutcomeKind, resolve_key

logger = logging.getLogger(__name__)


def _status_for(
    conflicts: list[ConflictEntry], auto_merged: list[AutoMergeEntry]
) -> MergeStatus:
    if conflicts:
        return MergeStatus.CONFLICTED
    if auto_merged:
        return MergeStatus.AUTO_MERGED
    return MergeStatus.CLEAN


def merge_keyed_file(
    file_name: str,
    base: dict[str, str] | None,
    local: dict[str, str],
    remote: dict[str, str],
) -> FileMergeResult:
    """Perform a three-way merge of a key=value file.

    Args:
        file_name: Project-relative file name.
        base: Mapping at the last sync, or ``None`` on first sync.
        local: Current local mapping (``{}`` if the file is missing).
        remote: Current remote mapping (``{}`` if the file is missing).

    Returns:
        The merge result.  Never raises.
    """
    merged: dict[str, str] = {}
    conflicts: list[ConflictEntry] = []
    auto_merged: list[AutoMergeEntry] = []

    all_keys = set(local) | set(remote)
    if base is not None:
        all_keys |= set(base)

    for key in sorted(all_keys):
        base_val = base.get(key) if base is not None else None
        local_val = local.get(key)
        remote_val = remote.get(key)

        outcome = resolve_key(key, base_val, local_val, remote_val)

        if outcome.kind == OutcomeKind.CONFLICT:
            conflicts.append(
                ConflictEntry(
                    key=key,
                    conflict_type=outcome.conflict_type,
                    base_value=base_val,
                    local_value=local_val,
                    remote_value=remote_val,
                )
            )
            if local_val is not None:
                merged[key] = local_val
        elif outcome.kind == OutcomeKind.AUTO_MERGED:
            if outcome.value is not None:
                merged[key] = outcome.value
            auto_merged.append(
                AutoMergeEntry(
                    key=key, action=outcome.action, value=outcome.value
                )
            )
        elif outcome.value is not None:
            merged[key] = outcome.value

    if conflicts:
        logger.debug(
            "%s: %d conflict(s), %d auto-merged key(s)",
            file_name,
            len(conflicts),
            len(auto_merged),
        )

    return FileMergeResult(
        file_name=file_name,
        kind=FileKind.KEYED,
        status=_status_for(conflicts, auto_merged),
        merged=merged,
        conflicts=conflicts,
        auto_merged=auto_merged,
    )


def merge_text_file(
    file_name: str,
    base: str | None,
    local: str | None,
    remote: str | None,
) -> FileMergeResult:
    """Perform a whole-file three-way merge of an opaque text file.

    Args:
        file_name: Project-relative file name.
        base: Content at the last sync, ``None`` if there was none.
        local: Current local content, ``None`` if the file is missing.
        remote: Current remote content, ``None`` if the file is missing.

    Returns:
        The merge result.  ``merged_content`` is ``None`` only when the file
        was deleted (or, for a conflict, when local deleted it).
    """
    conflicts: list[ConflictEntry] = []
    auto_merged: list[AutoMergeEntry] = []

    outcome = resolve_key(FILE_KEY, base, local, remote)

    if outcome.kind == OutcomeKind.CONFLICT:
        conflicts.append(
            ConflictEntry(
                key=FILE_KEY,
                conflict_type=outcome.conflict_type,
                base_value=base,
                local_value=local,
                remote_value=remote,
            )
        )
        merged_content = local
        logger.debug(
            "%s: whole-file conflict (%s)",
            file_name,
            outcome.conflict_type.value,
        )
    elif outcome.kind == OutcomeKind.AUTO_MERGED:
        merged_content = outcome.value
        auto_merged.append(
            AutoMergeEntry(
                key=FILE_KEY, action=outcome.action, value=outcome.value
            )
        )
    else:
        merged_content = outcome.value

    return FileMergeResult(
        file_name=file_name,
        kind=FileKind.OPAQUE,
        status=_status_for(conflicts, auto_merged),
        merged_content=merged_content,
        conflicts=conflicts,
        auto_merged=auto_merged,
    )


def merge_file(
    file_name: str,
    kind: FileKind,
    base: dict[str, str] | str | None,
    local: dict[str, str] | str | None,
    remote: dict[str, str] | str | None,
) -> FileMergeResult:
    """Dispatch to the keyed or opaque driver.

    For keyed files a missing local/remote mapping is treated as ``{}``.
    """
    if kind == FileKind.KEYED:
        return merge_keyed_file(
            file_name,
            base,  # type: ignore[arg-type]
            local or {},  # type: ignore[arg-type]
            remote or {},  # type: ignore[arg-type]
        )
    return merge_text_file(file_name, base, local, remote)  # type: ignore[arg-type]


def create_sync_result(file_results: list[FileMergeResult]) -> SyncResult:
    """Combine per-file results into a project-level summary.

    Only open conflicts require user action; auto-merges never need
    confirmation.
    """
    has_conflicts = any(r.conflicts for r in file_results)
    return SyncResult(
        files=list(file_results),
        has_conflicts=has_conflicts,
        requires_user_action=has_conflicts,
    )
