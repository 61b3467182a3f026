"""Sync engine that orchestrates a full reconciliation cycle.

The ``SyncEngine`` ties together discovery, the base snapshot, the
reconciliation drivers and the resolvers.  A run:

1. Discovers tracked local files.
2. Loads the base snapshot.
3. Reconciles every file name found in base, local or remote.
4. Resolves open conflicts with the configured (or given) resolver.
5. Writes merged content to local files that actually changed.
6. Advances the base snapshot, unless a conflict is still open.
7. Returns a ``SyncReport`` whose plan holds the content to upload.

``push`` and ``pull`` are the one-way counterparts: each runs the drift
guard first and refuses to overwrite the other side when it moved since the
base, unless forced.  ``diff`` compares local files with remote content
without changing anything.

Remote I/O and encryption stay with the caller: remote content comes in
as a decrypted ``{name: content}`` mapping and goes out as
``SyncPlan.writes`` plus ``SyncPlan.manifest``.  Local files are never
deleted automatically; deletions are only reported.
"""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from settings_sync.file_handler import (
    discover_project_files,
    normalize_relative_path,
    write_file,
)
from settings_sync.sync.envfile import (
    detect_file_kind,
    diff_env_files,
    parse_env_file,
    serialize_env_file,
)
from settings_sync.sync.fingerprint import (
    build_manifest,
    content_hash,
    local_drift,
    local_has_drifted,
    manifest_fingerprint,
    remote_has_drifted,
)
from settings_sync.sync.merger import create_sync_result, merge_file
from settings_sync.sync.models import (
    DiffStatus,
    DriftReport,
    FileDiff,
    FileKind,
    FileMergeResult,
    ProjectManifest,
    SyncPlan,
    SyncReport,
    SyncResult,
    TransferDirection,
    TransferReport,
)
from settings_sync.sync.resolver import (
    ConflictResolver,
    all_conflicts_resolved,
    apply_resolutions,
    create_resolver,
    resolve_file,
)
from settings_sync.sync.state import BaseSnapshotStore

if TYPE_CHECKING:
    from settings_sync.config_schema import UnifiedConfig

logger = logging.getLogger(__name__)


class SyncEngine:
    """Orchestrate a reconciliation cycle for one project directory.

    Args:
        project_dir: Root of the project whose files are tracked.
        config: Unified configuration; defaults to zero-config.
    """

    def __init__(
        self,
        project_dir: Path,
        config: UnifiedConfig | None = None,
    ) -> None:
        # Import here to avoid circular imports (config_schema imports
        # settings_sync.sync.envfile)
        from settings_sync.config_schema import UnifiedConfig

        self.project_dir = project_dir
        self.config = config or UnifiedConfig()
        self.project_name = (
            self.config.project.project_name or project_dir.resolve().name
        )
        self.state_store = BaseSnapshotStore(
            project_dir / self.config.sync.state_dir
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def kind_of(self, name: str) -> FileKind:
        return detect_file_kind(name, self.config.sync.keyed_patterns)

    def reconcile(
        self,
        local: dict[str, str],
        base: dict[str, str],
        remote: dict[str, str],
    ) -> SyncResult:
        """Reconcile every file present in any of the three versions.

        Args:
            local: Local content per file name.
            base: Base content per file name (``{}`` on first sync).
            remote: Decrypted remote content per file name.

        Returns:
            The aggregated result, files in name order.
        """
        results: list[FileMergeResult] = []
        for name in sorted(set(local) | set(base) | set(remote)):
            if self.kind_of(name) == FileKind.KEYED:
                result = merge_file(
                    name,
                    FileKind.KEYED,
                    parse_env_file(base[name]) if name in base else None,
                    parse_env_file(local[name]) if name in local else {},
                    parse_env_file(remote[name]) if name in remote else {},
                )
            else:
                result = merge_file(
                    name,
                    FileKind.OPAQUE,
                    base.get(name),
                    local.get(name),
                    remote.get(name),
                )
            results.append(result)

        sync_result = create_sync_result(results)
        logger.info(
            "Reconciled %d file(s): %d conflict(s)",
            len(results),
            sync_result.conflict_count,
        )
        return sync_result

    def plan(
        self,
        sync_result: SyncResult,
        resolver: ConflictResolver | None = None,
    ) -> SyncPlan:
        """Resolve conflicts and render the content to persist.

        Files whose conflicts are not all resolved are left out of the plan
        (listed in ``unresolved``) so that an unconfirmed preview value is
        never written.  A keyed file whose merged mapping is empty counts as
        deleted.

        Args:
            sync_result: Output of ``reconcile()``.
            resolver: Conflict resolver; defaults to the configured strategy.

        Returns:
            The plan.
        """
        if resolver is None:
            resolver = create_resolver(self.config.sync.conflict_strategy)

        writes: dict[str, str] = {}
        deletions: list[str] = []
        unresolved: list[str] = []

        for result in sync_result.files:
            if result.conflicts:
                resolutions = resolve_file(result, resolver)
                if not all_conflicts_resolved(result, resolutions):
                    logger.warning(
                        "Leaving %s unwritten: unresolved conflict(s)",
                        result.file_name,
                    )
                    unresolved.append(result.file_name)
                    continue
                final = apply_resolutions(result, resolutions)
            elif result.kind == FileKind.KEYED:
                final = result.merged
            else:
                final = result.merged_content

            content = self._render(result.kind, final)
            if content is None:
                deletions.append(result.file_name)
            else:
                writes[result.file_name] = content

        return SyncPlan(
            writes=writes,
            deletions=deletions,
            unresolved=unresolved,
            manifest=build_manifest(self.project_name, writes),
        )

    @staticmethod
    def _render(
        kind: FileKind, final: dict[str, str] | str | None
    ) -> str | None:
        if kind == FileKind.KEYED:
            if not final:
                return None
            return serialize_env_file(final)  # type: ignore[arg-type]
        return final  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def load_local(self) -> dict[str, str]:
        """Discover tracked local files and return their content by name."""
        ignore = list(self.config.project.ignore) + [
            f"{self.config.sync.state_dir}/**"
        ]
        files = discover_project_files(
            self.project_dir, self.config.project.pattern, ignore
        )
        return {f.name: f.content for f in files}

    @staticmethod
    def _safe_remote(remote: dict[str, str]) -> dict[str, str]:
        safe: dict[str, str] = {}
        for name, content in remote.items():
            if normalize_relative_path(name) != name:
                logger.warning("Skipping unsafe remote file path: %s", name)
                continue
            safe[name] = content
        return safe

    def run(
        self,
        remote: dict[str, str],
        resolver: ConflictResolver | None = None,
        dry_run: bool = False,
    ) -> SyncReport:
        """Execute a full reconciliation cycle.

        Args:
            remote: Decrypted remote content per file name.
            resolver: Conflict resolver; defaults to the configured strategy.
            dry_run: If ``True``, compute the plan but write nothing.

        Returns:
            A ``SyncReport``.  Upload ``report.plan`` only when
            ``report.plan.is_complete``.
        """
        started_at = datetime.now(timezone.utc).isoformat()

        local = self.load_local()
        if not self.state_store.has_valid_snapshot():
            logger.info(
                "No base snapshot for %s -- treating as first sync",
                self.project_name,
            )
        base = self.state_store.load_contents()

        sync_result = self.reconcile(local, base, self._safe_remote(remote))
        plan = self.plan(sync_result, resolver)

        applied = False
        base_updated = False
        if not dry_run:
            agreed = self._write_local(plan, local)
            applied = True
            if plan.is_complete:
                self.state_store.save(
                    agreed, manifest_fingerprint(plan.manifest)
                )
                base_updated = True
            else:
                logger.warning(
                    "Base snapshot not updated: %d file(s) unresolved",
                    len(plan.unresolved),
                )

        return SyncReport(
            project_name=self.project_name,
            dry_run=dry_run,
            applied=applied,
            base_updated=base_updated,
            result=sync_result,
            plan=plan,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )

    def _write_local(
        self, plan: SyncPlan, local: dict[str, str]
    ) -> dict[str, str]:
        """Write changed files; return the agreed content for the base.

        A local file whose content already equals the merged result (key
        by key for env files) is left untouched, keeping its comments and
        layout, and its own text becomes the base.
        """
        agreed: dict[str, str] = {}
        for name, content in sorted(plan.writes.items()):
            current = local.get(name)
            if current is not None and self._same_content(
                name, current, content
            ):
                agreed[name] = current
                continue
            write_file(self.project_dir / name, content)
            logger.info("Wrote %s", name)
            agreed[name] = content
        return agreed

    def _same_content(self, name: str, current: str, merged: str) -> bool:
        if self.kind_of(name) == FileKind.KEYED:
            return parse_env_file(current) == parse_env_file(merged)
        return current == merged

    # ------------------------------------------------------------------
    # Drift guard
    # ------------------------------------------------------------------

    def check_push(self, remote_manifest: ProjectManifest | None) -> DriftReport:
        """Decide whether an unconditional push is safe.

        Args:
            remote_manifest: Current remote manifest, ``None`` if the remote
                has none yet.
        """
        base_fingerprint = self.state_store.remote_fingerprint()
        current = (
            manifest_fingerprint(remote_manifest)
            if remote_manifest is not None
            else None
        )
        if remote_has_drifted(base_fingerprint, current):
            return DriftReport(
                safe=False,
                reason="remote has changes that were not pulled yet",
            )
        return DriftReport(safe=True)

    def check_pull(
        self, local: dict[str, str] | None = None
    ) -> DriftReport:
        """Decide whether an unconditional pull is safe.

        Args:
            local: Local content by name; discovered when omitted.
        """
        if local is None:
            local = self.load_local()
        base = self.state_store.load_contents()
        if not local_has_drifted(base, local):
            return DriftReport(safe=True)
        return DriftReport(
            safe=False,
            reason="local has changes that were not pushed yet",
            changed=local_drift(base, local),
        )

    # ------------------------------------------------------------------
    # One-way transfer
    # ------------------------------------------------------------------

    def push(
        self,
        remote_manifest: ProjectManifest | None = None,
        force: bool = False,
        dry_run: bool = False,
    ) -> TransferReport:
        """Upload every tracked local file as is, without merging.

        Remote files with no local counterpart stay in the returned
        manifest.  On success the base snapshot becomes the local content.

        Args:
            remote_manifest: Current remote manifest, ``None`` if the remote
                has none yet.
            force: Skip the drift guard.
            dry_run: If ``True``, report what would be pushed but record
                nothing.

        Returns:
            A ``TransferReport``; upload ``writes`` and ``manifest`` unless
            it is ``blocked`` or a dry run.
        """
        local = self.load_local()
        if force:
            drift = DriftReport(safe=True)
        else:
            drift = self.check_push(remote_manifest)
        if not drift.safe:
            logger.warning(
                "Push refused for %s: %s", self.project_name, drift.reason
            )
            return TransferReport(
                project_name=self.project_name,
                direction=TransferDirection.PUSH,
                dry_run=dry_run,
                drift=drift,
            )

        manifest = build_manifest(self.project_name, local)
        if remote_manifest is not None:
            kept = [e for e in remote_manifest.files if e.name not in local]
            manifest = manifest.model_copy(
                update={
                    "files": sorted(
                        manifest.files + kept, key=lambda e: e.name
                    )
                }
            )

        base_updated = False
        if not dry_run:
            self.state_store.save(local, manifest_fingerprint(manifest))
            base_updated = True
            logger.info(
                "Pushed %d file(s) for %s", len(local), self.project_name
            )

        return TransferReport(
            project_name=self.project_name,
            direction=TransferDirection.PUSH,
            dry_run=dry_run,
            drift=drift,
            files=sorted(local),
            writes=local,
            manifest=manifest,
            base_updated=base_updated,
        )

    def pull(
        self,
        remote: dict[str, str],
        remote_manifest: ProjectManifest | None = None,
        backup: bool = False,
        force: bool = False,
        dry_run: bool = False,
    ) -> TransferReport:
        """Overwrite local files with remote content, without merging.

        Files already equal to their remote copy are not rewritten.  On
        success the base snapshot becomes the remote content.

        Args:
            remote: Decrypted remote content per file name.
            remote_manifest: Remote manifest whose fingerprint is recorded;
                built from *remote* when omitted.
            backup: Copy each overwritten file to ``<name>.backup`` first.
            force: Skip the drift guard.
            dry_run: If ``True``, report what would be pulled but write
                nothing.
        """
        local = self.load_local()
        drift = DriftReport(safe=True) if force else self.check_pull(local)
        if not drift.safe:
            logger.warning(
                "Pull refused for %s: %s (%s)",
                self.project_name,
                drift.reason,
                ", ".join(drift.changed),
            )
            return TransferReport(
                project_name=self.project_name,
                direction=TransferDirection.PULL,
                dry_run=dry_run,
                drift=drift,
            )

        incoming = self._safe_remote(remote)
        manifest = remote_manifest or build_manifest(
            self.project_name, incoming
        )

        backups: list[str] = []
        base_updated = False
        if not dry_run:
            for name, content in sorted(incoming.items()):
                if local.get(name) == content:
                    continue
                path = self.project_dir / name
                if backup and path.is_file():
                    backup_path = path.with_name(path.name + ".backup")
                    shutil.copy2(path, backup_path)
                    backups.append(f"{name}.backup")
                write_file(path, content)
                logger.info("Wrote %s", name)
            self.state_store.save(incoming, manifest_fingerprint(manifest))
            base_updated = True

        return TransferReport(
            project_name=self.project_name,
            direction=TransferDirection.PULL,
            dry_run=dry_run,
            drift=drift,
            files=sorted(incoming),
            manifest=manifest,
            backups=backups,
            base_updated=base_updated,
        )

    # ------------------------------------------------------------------
    # Diff
    # ------------------------------------------------------------------

    def diff(
        self, remote: dict[str, str], file_name: str | None = None
    ) -> list[FileDiff]:
        """Compare local files with remote content.  Nothing is written.

        Args:
            remote: Decrypted remote content per file name.
            file_name: Restrict the comparison to one file.

        Returns:
            One ``FileDiff`` per file present on either side, in name order.

        Raises:
            ValueError: *file_name* is not a valid project-relative path.
        """
        local = self.load_local()
        incoming = self._safe_remote(remote)
        if file_name is not None:
            name = normalize_relative_path(file_name)
            if name is None:
                raise ValueError(f"Invalid file path: {file_name}")
            local = {n: c for n, c in local.items() if n == name}
            incoming = {n: c for n, c in incoming.items() if n == name}

        diffs: list[FileDiff] = []
        for name in sorted(set(local) | set(incoming)):
            diffs.append(
                self._diff_file(name, local.get(name), incoming.get(name))
            )
        return diffs

    def _diff_file(
        self, name: str, local: str | None, remote: str | None
    ) -> FileDiff:
        kind = self.kind_of(name)
        if remote is None:
            return FileDiff(
                file_name=name, kind=kind, status=DiffStatus.ONLY_LOCAL
            )
        if local is None:
            return FileDiff(
                file_name=name, kind=kind, status=DiffStatus.ONLY_REMOTE
            )

        if kind == FileKind.OPAQUE:
            same = content_hash(local) == content_hash(remote)
            return FileDiff(
                file_name=name,
                kind=kind,
                status=DiffStatus.IN_SYNC if same else DiffStatus.DIFFERENT,
            )

        local_vars = parse_env_file(local)
        remote_vars = parse_env_file(remote)
        env_diff = diff_env_files(local_vars, remote_vars)
        if env_diff.is_empty:
            return FileDiff(
                file_name=name, kind=kind, status=DiffStatus.IN_SYNC
            )
        return FileDiff(
            file_name=name,
            kind=kind,
            status=DiffStatus.DIFFERENT,
            added=env_diff.added,
            removed=env_diff.removed,
            changed=env_diff.changed,
            local_values={
                k: local_vars[k] for k in env_diff.added + env_diff.changed
            },
            remote_values={
                k: remote_vars[k] for k in env_diff.removed + env_diff.changed
            },
        )
