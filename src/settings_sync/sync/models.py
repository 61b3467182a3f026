"""Pydantic models for the reconciliation engine.

Defines the data contracts shared by every sync module:

- ``ConflictType``, ``AutoMergeAction``, ``MergeStatus``, ``FileKind``,
  ``ResolutionChoice``: string enums.
- ``ConflictEntry``: one divergence that needs a decision.
- ``AutoMergeEntry``: one divergence resolved without user input.
- ``FileMergeResult``: outcome of reconciling one file.
- ``SyncResult``: aggregate over all files of a project.
- ``Resolution``: a decision for one conflict.
- ``ManifestEntry`` / ``ProjectManifest``: identity list of a remote file
  collection.
- ``SyncPlan`` / ``SyncReport``: what the orchestrator will persist.
- ``DriftReport``: drift guard verdict.
- ``FileDiff``: local vs remote comparison of one file.
- ``TransferReport``: outcome of a one-way push or pull.

Absence is always ``None``; an empty string is a real value.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

# Conflict/auto-merge key used for opaque files, which have no finer
# decomposition than "the file".
FILE_KEY = "<file>"


class ConflictType(str, Enum):
    """Why local and remote could not be merged automatically."""

    DIVERGENT_EDIT = "divergent_edit"
    EDIT_VS_DELETE = "edit_vs_delete"
    NEW_KEY_COLLISION = "new_key_collision"


class AutoMergeAction(str, Enum):
    """How an auto-merged divergence was settled."""

    ADDED_FROM_LOCAL = "added_from_local"
    ADDED_FROM_REMOTE = "added_from_remote"
    DELETED = "deleted"
    UPDATED_FROM_LOCAL = "updated_from_local"
    UPDATED_FROM_REMOTE = "updated_from_remote"


class MergeStatus(str, Enum):
    """Overall state of one file after reconciliation."""

    CLEAN = "clean"
    AUTO_MERGED = "auto_merged"
    CONFLICTED = "conflicted"


class FileKind(str, Enum):
    """Merge granularity of a file."""

    KEYED = "keyed"
    OPAQUE = "opaque"


class DiffStatus(str, Enum):
    """How a local file compares to its remote copy."""

    ONLY_LOCAL = "only_local"
    ONLY_REMOTE = "only_remote"
    IN_SYNC = "in_sync"
    DIFFERENT = "different"


class TransferDirection(str, Enum):
    PUSH = "push"
    PULL = "pull"


class ResolutionChoice(str, Enum):
    """Which version a conflict resolution picks."""

    LOCAL = "local"
    REMOTE = "remote"
    BASE = "base"
    MANUAL = "manual"
    SKIP = "skip"


class ConflictEntry(BaseModel):
    """A divergence that needs a decision.

    All three versions are kept so that any of them can be chosen later.

    Attributes:
        key: The conflicting key, or ``FILE_KEY`` for opaque files.
        conflict_type: Classification of the divergence.
        base_value: Value at the last sync (``None`` if absent).
        local_value: Current local value (``None`` if absent).
        remote_value: Current remote value (``None`` if absent).
    """

    key: str
    conflict_type: ConflictType
    base_value: str | None = None
    local_value: str | None = None
    remote_value: str | None = None

    model_config = {"frozen": True}


class AutoMergeEntry(BaseModel):
    """A divergence settled without user input.

    Attributes:
        key: The merged key, or ``FILE_KEY`` for opaque files.
        action: What happened to the key.
        value: The resulting value; ``None`` when the key was deleted.
    """

    key: str
    action: AutoMergeAction
    value: str | None = None

    model_config = {"frozen": True}


class FileMergeResult(BaseModel):
    """Outcome of reconciling one file.

    For conflicted keys ``merged`` (or ``merged_content``) holds the local
    value as a provisional preview until the conflict is resolved.

    Attributes:
        file_name: Project-relative file name.
        kind: Keyed or opaque.
        status: ``conflicted`` iff ``conflicts`` is non-empty,
            ``auto_merged`` iff ``auto_merged`` is non-empty, else ``clean``.
        merged: Merged mapping (keyed files only).
        merged_content: Merged text (opaque files only); ``None`` when the
            file is gone.
        conflicts: Open conflicts.
        auto_merged: Auto-merged divergences.
    """

    file_name: str
    kind: FileKind
    status: MergeStatus
    merged: dict[str, str] = {}
    merged_content: str | None = None
    conflicts: list[ConflictEntry] = []
    auto_merged: list[AutoMergeEntry] = []

    model_config = {"frozen": True}

    @property
    def has_conflicts(self) -> bool:
        """Whether any conflict is still open."""
        return len(self.conflicts) > 0


class SyncResult(BaseModel):
    """Aggregate reconciliation outcome for a project.

    Attributes:
        files: Per-file results in name order.
        has_conflicts: True iff any file has an open conflict.
        requires_user_action: Mirrors ``has_conflicts``.
    """

    files: list[FileMergeResult] = []
    has_conflicts: bool = False
    requires_user_action: bool = False

    model_config = {"frozen": True}

    @property
    def conflict_count(self) -> int:
        """Total number of open conflicts across all files."""
        return sum(len(f.conflicts) for f in self.files)

    @property
    def conflicted_files(self) -> list[FileMergeResult]:
        """Results with at least one open conflict."""
        return [f for f in self.files if f.has_conflicts]


class Resolution(BaseModel):
    """A decision for one conflict.

    ``manual_value`` is only meaningful when ``choice`` is ``manual``; the
    applier rejects a manual resolution without one.
    """

    key: str
    choice: ResolutionChoice
    manual_value: str | None = None

    model_config = {"frozen": True}


class ManifestEntry(BaseModel):
    """Identity of one file in a remote collection."""

    name: str
    hash: str
    size: int
    updated_at: str

    model_config = {"frozen": True}


class ProjectManifest(BaseModel):
    """Identity list of a project's remote files."""

    version: int = 1
    project_name: str
    files: list[ManifestEntry] = []

    model_config = {"frozen": True}


class SyncPlan(BaseModel):
    """Content the orchestrator should persist after resolution.

    Attributes:
        writes: Final content per file name.
        deletions: Files whose merged result is gone.
        unresolved: Files left out because a conflict is still open.
        manifest: Manifest describing ``writes``, for upload.
    """

    writes: dict[str, str] = {}
    deletions: list[str] = []
    unresolved: list[str] = []
    manifest: ProjectManifest

    model_config = {"frozen": True}

    @property
    def is_complete(self) -> bool:
        """True when no file was left out; only then is the manifest
        a full description of the project and safe to upload."""
        return not self.unresolved


class DriftReport(BaseModel):
    """Verdict of the drift guard before an unconditional push or pull.

    Attributes:
        safe: Whether a blind overwrite is safe.
        reason: Why it is unsafe, when it is.
        changed: Local files that moved since the base (pull checks only).
    """

    safe: bool
    reason: str | None = None
    changed: list[str] = []

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Outcome of one ``SyncEngine.run``.

    Attributes:
        project_name: Name of the synced project.
        dry_run: Whether changes were only previewed.
        applied: Whether local files were written.
        base_updated: Whether the base snapshot was advanced.
        result: Reconciliation result before resolution.
        plan: Content that was (or would be) persisted.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run finished.
    """

    project_name: str
    dry_run: bool = False
    applied: bool = False
    base_updated: bool = False
    result: SyncResult
    plan: SyncPlan
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def in_sync(self) -> bool:
        """True when every file was clean."""
        return all(
            f.status == MergeStatus.CLEAN for f in self.result.files
        )


class FileDiff(BaseModel):
    """Local vs remote comparison of one file, from the local point of view.

    Key lists are only filled for keyed files with status ``different``.
    ``local_values`` holds the local value of every added or changed key,
    ``remote_values`` the remote value of every removed or changed key.
    """

    file_name: str
    kind: FileKind
    status: DiffStatus
    added: list[str] = []
    removed: list[str] = []
    changed: list[str] = []
    local_values: dict[str, str] = {}
    remote_values: dict[str, str] = {}

    model_config = {"frozen": True}


class TransferReport(BaseModel):
    """Outcome of one ``SyncEngine.push`` or ``SyncEngine.pull``.

    Attributes:
        project_name: Name of the project.
        direction: ``push`` or ``pull``.
        dry_run: Whether nothing was written.
        drift: Drift guard verdict; nothing is transferred when unsafe.
        files: Names transferred, or that would be.
        writes: Content to upload (push only).
        manifest: Manifest to upload after a push, or the one recorded by
            a pull.
        backups: Backup copies written by a pull.
        base_updated: Whether the base snapshot was advanced.
    """

    project_name: str
    direction: TransferDirection
    dry_run: bool = False
    drift: DriftReport
    files: list[str] = []
    writes: dict[str, str] = {}
    manifest: ProjectManifest | None = None
    backups: list[str] = []
    base_updated: bool = False

    model_config = {"frozen": True}

    @property
    def blocked(self) -> bool:
        """True when the drift guard stopped the transfer."""
        return not self.drift.safe
