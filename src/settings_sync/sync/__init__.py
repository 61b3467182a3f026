"""Three-way reconciliation of synced configuration files.

Public API for merging the local and remote copies of a project's
configuration files against the last agreed base.

Architecture
------------
Every file is reconciled independently from three snapshots: *base* (last
successful sync), *local* and *remote*.  Env files are merged key by key;
any other file is treated as one opaque value.  Divergences are either
auto-merged (only one side changed, or both changed identically) or
reported as conflicts for a resolver to decide.

Modules:

- ``models``      -- data contracts (``FileMergeResult``, ``SyncResult``,
  ``ConflictEntry``, ``Resolution``, ...).
- ``rules``       -- ``resolve_key``: the per-key decision table.
- ``merger``      -- keyed and opaque file drivers, ``create_sync_result``.
- ``resolver``    -- ``apply_resolutions`` and conflict resolution
  strategies (interactive, scripted, local-wins, remote-wins).
- ``fingerprint`` -- content hashes, manifest fingerprints, drift guard.
- ``envfile``     -- env-file parsing/serialization, file-kind detection.
- ``state``       -- ``BaseSnapshotStore``: atomic JSON base snapshot.
- ``reporter``    -- human-readable and JSON report formatting.
- ``engine``      -- ``SyncEngine``: orchestrates a full cycle, plus
  one-way push/pull and a local vs remote diff.

Usage example
-------------
::

    from pathlib import Path
    from settings_sync.sync import SyncEngine, format_sync_report
    from settings_sync.sync.resolver import LocalWinsResolver

    engine = SyncEngine(Path("."))

    # remote_contents: {name: decrypted content} fetched by the caller
    preview = engine.run(remote_contents, dry_run=True)
    print(format_sync_report(preview))

    report = engine.run(remote_contents, resolver=LocalWinsResolver())
    if report.plan.is_complete:
        upload(report.plan.writes, report.plan.manifest)
"""

from .engine import SyncEngine
from .merger import (
    create_sync_result,
    merge_file,
    merge_keyed_file,
    merge_text_file,
)
from .models import (
    FILE_KEY,
    AutoMergeAction,
    AutoMergeEntry,
    ConflictEntry,
    ConflictType,
    DiffStatus,
    FileDiff,
    FileKind,
    FileMergeResult,
    MergeStatus,
    Resolution,
    ResolutionChoice,
    SyncResult,
    TransferReport,
)
from .reporter import (
    format_diff,
    format_merge_summary,
    format_sync_report,
    format_transfer,
    sync_result_to_json,
)
from .resolver import (
    InvalidResolutionError,
    all_conflicts_resolved,
    apply_resolutions,
    resolve_all_conflicts,
)
from .rules import KeyOutcome, resolve_key

__all__ = [
    "FILE_KEY",
    "AutoMergeAction",
    "AutoMergeEntry",
    "ConflictEntry",
    "ConflictType",
    "DiffStatus",
    "FileDiff",
    "FileKind",
    "FileMergeResult",
    "InvalidResolutionError",
    "KeyOutcome",
    "MergeStatus",
    "Resolution",
    "ResolutionChoice",
    "SyncEngine",
    "SyncResult",
    "TransferReport",
    "all_conflicts_resolved",
    "apply_resolutions",
    "create_sync_result",
    "format_diff",
    "format_merge_summary",
    "format_sync_report",
    "format_transfer",
    "merge_file",
    "merge_keyed_file",
    "merge_text_file",
    "resolve_all_conflicts",
    "resolve_key",
    "sync_result_to_json",
]
