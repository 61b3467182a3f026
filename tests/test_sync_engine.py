"""Tests for the core sync engine."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from settings_sync.config_schema import UnifiedConfig
from settings_sync.sync.engine import SyncEngine
from settings_sync.sync.envfile import parse_env_file
from settings_sync.sync.fingerprint import build_manifest, manifest_fingerprint
from settings_sync.sync.models import (
    DiffStatus,
    FileKind,
    MergeStatus,
    Resolution,
    SyncReport,
)
from settings_sync.sync.resolver import (
    InteractiveResolver,
    LocalWinsResolver,
    RemoteWinsResolver,
    ScriptedResolver,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeRemoteStore:
    """Minimal remote replacement for testing.

    Holds decrypted file content and the last uploaded manifest in memory.
    """

    def __init__(self, contents: dict[str, str] | None = None) -> None:
        self.contents: dict[str, str] = dict(contents or {})
        self.manifest = (
            build_manifest("my-app", self.contents) if self.contents else None
        )
        self.uploads = 0

    def upload(self, report: SyncReport) -> None:
        if not report.plan.is_complete:
            return
        self.contents = dict(report.plan.writes)
        self.manifest = report.plan.manifest
        self.uploads += 1


def _write(project_dir: Path, name: str, content: str) -> None:
    path = project_dir / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _read(project_dir: Path, name: str) -> str:
    return (project_dir / name).read_text(encoding="utf-8")


def _synced(engine: SyncEngine, files: dict[str, str]) -> None:
    """Bring local, remote and base into agreement on *files*."""
    for name, content in files.items():
        _write(engine.project_dir, name, content)
    report = engine.run(dict(files))
    assert report.base_updated


# ---------------------------------------------------------------------------
# Construction / reconcile
# ---------------------------------------------------------------------------


class TestSyncEngineSetup:
    def test_defaults(self, project_dir):
        engine = SyncEngine(project_dir)

        assert engine.project_name == "my-app"
        assert engine.state_store.snapshot_path == (
            project_dir / ".pss" / "snapshot.json"
        )

    def test_configured_project_name(self, make_engine):
        engine = make_engine(project={"project_name": "shared"})
        assert engine.project_name == "shared"

    def test_kind_of_uses_configured_patterns(self, make_engine):
        engine = make_engine(sync={"keyed_patterns": ["*.ini"]})

        assert engine.kind_of("app.ini") == FileKind.KEYED
        assert engine.kind_of(".env") == FileKind.OPAQUE


class TestReconcile:
    """SyncEngine.reconcile() over the union of file names."""

    def test_union_of_names_in_order(self, make_engine):
        engine = make_engine()
        result = engine.reconcile(
            {".env": "A=1\n"}, {}, {"b.json": "{}", ".env.prod": "B=2\n"}
        )
        assert [f.file_name for f in result.files] == [
            ".env",
            ".env.prod",
            "b.json",
        ]
        assert [f.kind for f in result.files] == [
            FileKind.KEYED,
            FileKind.KEYED,
            FileKind.OPAQUE,
        ]

    def test_keyed_files_merge_by_key(self, make_engine):
        engine = make_engine()
        result = engine.reconcile(
            {".env": "A=10\nB=2\n"},
            {".env": "A=1\nB=2\n"},
            {".env": "A=1\nB=20\n"},
        )
        assert result.files[0].merged == {"A": "10", "B": "20"}
        assert result.has_conflicts is False

    def test_missing_base_means_first_sync(self, make_engine):
        engine = make_engine()
        result = engine.reconcile({".env": "K=a\n"}, {}, {".env": "K=b\n"})
        assert result.files[0].conflicts[0].conflict_type == "new_key_collision"

    def test_formatting_only_changes_are_clean(self, make_engine):
        engine = make_engine()
        result = engine.reconcile(
            {".env": "# local comment\nA=1\n"},
            {".env": "A=1\n"},
            {".env": 'A="1"\n'},
        )
        assert result.files[0].status == MergeStatus.CLEAN


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------


class TestSyncEngineRun:
    """End-to-end runs against a temporary project directory."""

    def test_first_sync_uploads_local(self, project_dir, make_engine):
        _write(project_dir, ".env", "A=1\n")
        engine = make_engine()

        report = engine.run({})

        assert report.applied is True
        assert report.base_updated is True
        assert report.plan.writes == {".env": "A=1\n"}
        assert [f.name for f in report.plan.manifest.files] == [".env"]
        assert engine.state_store.load_contents() == {".env": "A=1\n"}

    def test_remote_addition_written_locally(self, project_dir, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})

        report = engine.run({".env": "A=1\nB=2\n"})

        assert _read(project_dir, ".env") == "A=1\nB=2\n"
        assert report.result.files[0].status == MergeStatus.AUTO_MERGED
        assert engine.state_store.load_contents() == {".env": "A=1\nB=2\n"}

    def test_new_remote_file_created(self, project_dir, make_engine):
        engine = make_engine()
        engine.run({".env.prod": "X=1\n"})
        assert _read(project_dir, ".env.prod") == "X=1\n"

    def test_unchanged_local_file_not_rewritten(self, project_dir, make_engine):
        """Comments and layout survive when the merged result agrees."""
        original = "# database\nDB_HOST=localhost\n\nPORT=80\n"
        _write(project_dir, ".env", original)
        engine = make_engine()

        report = engine.run({".env": "DB_HOST=localhost\nPORT=80\n"})

        assert _read(project_dir, ".env") == original
        assert report.in_sync
        assert engine.state_store.load_contents() == {".env": original}

    def test_dry_run_writes_nothing(self, project_dir, make_engine):
        _write(project_dir, ".env", "A=1\n")
        engine = make_engine()

        report = engine.run({".env": "A=1\nB=2\n"}, dry_run=True)

        assert report.dry_run is True
        assert report.applied is False
        assert report.base_updated is False
        assert report.plan.writes == {".env": "A=1\nB=2\n"}
        assert _read(project_dir, ".env") == "A=1\n"
        assert engine.state_store.load() is None

    def test_interactive_conflict_left_unresolved(
        self, project_dir, make_engine
    ):
        engine = make_engine()
        _synced(engine, {".env": "K=o\n", ".env.prod": "P=1\n"})
        _write(project_dir, ".env", "K=local\n")

        resolver = InteractiveResolver()
        report = engine.run(
            {".env": "K=remote\n", ".env.prod": "P=2\n"}, resolver=resolver
        )

        assert report.result.has_conflicts is True
        assert report.plan.unresolved == [".env"]
        assert report.plan.is_complete is False
        assert report.base_updated is False
        assert [c.key for _, c in resolver.pending_conflicts] == ["K"]
        # Conflicted file untouched, clean file still applied
        assert _read(project_dir, ".env") == "K=local\n"
        assert _read(project_dir, ".env.prod") == "P=2\n"
        assert engine.state_store.load_contents()[".env.prod"] == "P=1\n"

    def test_configured_strategy_used_by_default(
        self, project_dir, make_engine
    ):
        engine = make_engine(sync={"conflict_strategy": "remote-wins"})
        _synced(engine, {".env": "K=o\n"})
        _write(project_dir, ".env", "K=local\n")

        report = engine.run({".env": "K=remote\n"})

        assert report.base_updated is True
        assert _read(project_dir, ".env") == "K=remote\n"

    def test_explicit_resolver_overrides_config(self, project_dir, make_engine):
        engine = make_engine(sync={"conflict_strategy": "remote-wins"})
        _synced(engine, {".env": "K=o\n"})
        _write(project_dir, ".env", "K=local\n")

        report = engine.run({".env": "K=remote\n"}, resolver=LocalWinsResolver())

        assert report.plan.writes == {".env": "K=local\n"}
        assert _read(project_dir, ".env") == "K=local\n"

    def test_scripted_manual_resolution(self, project_dir, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "K=o\n"})
        _write(project_dir, ".env", "K=local\n")
        resolver = ScriptedResolver(
            {
                (".env", "K"): Resolution(
                    key="K", choice="manual", manual_value="merged value"
                )
            }
        )

        report = engine.run({".env": "K=remote\n"}, resolver=resolver)

        assert report.base_updated is True
        assert _read(project_dir, ".env") == 'K="merged value"\n'

    def test_opaque_conflict_resolved_remote(self, project_dir, make_engine):
        engine = make_engine(project={"pattern": "*.json"})
        _synced(engine, {"app.json": '{"a": 1}\n'})
        _write(project_dir, "app.json", '{"a": 2}\n')

        engine.run({"app.json": '{"a": 3}\n'}, resolver=RemoteWinsResolver())

        assert _read(project_dir, "app.json") == '{"a": 3}\n'

    def test_deleted_merge_result_keeps_local_file(
        self, project_dir, make_engine
    ):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})

        report = engine.run({})

        assert report.plan.deletions == [".env"]
        assert ".env" not in report.plan.writes
        assert (project_dir / ".env").exists()
        assert engine.state_store.load_contents() == {}

    def test_unsafe_remote_names_skipped(self, project_dir, make_engine):
        engine = make_engine()

        report = engine.run({"../escape.env": "A=1\n", ".env": "B=2\n"})

        assert [f.file_name for f in report.result.files] == [".env"]
        assert not (project_dir.parent / "escape.env").exists()

    def test_state_dir_never_tracked(self, project_dir, make_engine):
        engine = make_engine(project={"pattern": "**/*"})
        _synced(engine, {"config/app.yaml": "a: 1\n"})

        local = engine.load_local()

        assert list(local) == ["config/app.yaml"]

    def test_ignore_patterns(self, project_dir, make_engine):
        _write(project_dir, ".env", "A=1\n")
        _write(project_dir, ".env.local", "B=2\n")
        engine = make_engine(project={"ignore": [".env.local"]})

        assert list(engine.load_local()) == [".env"]

    def test_rerun_is_in_sync(self, project_dir, make_engine):
        engine = make_engine()
        _write(project_dir, ".env", "A=1\n")
        first = engine.run({".env": "B=2\n"})

        second = engine.run(dict(first.plan.writes))

        assert second.in_sync
        assert second.plan.writes == first.plan.writes


class TestTwoMachines:
    """Two project directories syncing through one remote converge."""

    def test_concurrent_edits_converge(self, tmp_path):
        remote = FakeRemoteStore()
        laptop_dir = tmp_path / "laptop" / "my-app"
        desktop_dir = tmp_path / "desktop" / "my-app"
        laptop_dir.mkdir(parents=True)
        desktop_dir.mkdir(parents=True)
        laptop = SyncEngine(laptop_dir, UnifiedConfig())
        desktop = SyncEngine(desktop_dir, UnifiedConfig())

        _write(laptop_dir, ".env", "SHARED=1\n")
        remote.upload(laptop.run(remote.contents))
        remote.upload(desktop.run(remote.contents))
        assert _read(desktop_dir, ".env") == "SHARED=1\n"

        # Each machine edits a different key
        _write(laptop_dir, ".env", "SHARED=1\nLAPTOP=yes\n")
        _write(desktop_dir, ".env", "DESKTOP=yes\nSHARED=2\n")
        remote.upload(laptop.run(remote.contents))
        remote.upload(desktop.run(remote.contents))
        remote.upload(laptop.run(remote.contents))

        expected = "DESKTOP=yes\nLAPTOP=yes\nSHARED=2\n"
        assert remote.contents == {".env": expected}
        assert _read(laptop_dir, ".env") == expected
        assert _read(desktop_dir, ".env") == expected


# ---------------------------------------------------------------------------
# Drift guard
# ---------------------------------------------------------------------------


class TestDriftGuard:
    """check_push() and check_pull()."""

    def test_push_safe_without_base(self, make_engine):
        engine = make_engine()
        report = engine.check_push(build_manifest("my-app", {".env": "A=1\n"}))
        assert report.safe is True

    def test_push_safe_without_remote_manifest(self, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})
        assert engine.check_push(None).safe is True

    def test_push_safe_when_remote_unchanged(self, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})
        manifest = build_manifest("my-app", {".env": "A=1\n"})

        assert engine.state_store.remote_fingerprint() == manifest_fingerprint(
            manifest
        )
        assert engine.check_push(manifest).safe is True

    def test_push_unsafe_when_remote_moved(self, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})

        report = engine.check_push(build_manifest("my-app", {".env": "A=2\n"}))

        assert report.safe is False
        assert report.reason == "remote has changes that were not pulled yet"

    def test_pull_safe_without_base(self, project_dir, make_engine):
        _write(project_dir, ".env", "A=1\n")
        assert make_engine().check_pull().safe is True

    def test_pull_safe_when_local_unchanged(self, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})
        assert engine.check_pull().safe is True

    def test_pull_unsafe_when_local_changed(self, project_dir, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})
        _write(project_dir, ".env", "A=2\n")
        _write(project_dir, ".env.new", "B=1\n")

        report = engine.check_pull()

        assert report.safe is False
        assert report.reason == "local has changes that were not pushed yet"
        assert report.changed == [".env", ".env.new"]

    def test_pull_with_explicit_local(self, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})
        assert engine.check_pull({".env": "A=9\n"}).changed == [".env"]


class TestFirstSyncDetection:
    def test_first_sync_is_logged(self, project_dir, make_engine, caplog):
        _write(project_dir, ".env", "A=1\n")
        caplog.set_level(logging.INFO, logger="settings_sync.sync.engine")

        make_engine().run({})

        assert "treating as first sync" in caplog.text

    def test_later_sync_not_logged_as_first(self, make_engine, caplog):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})
        caplog.clear()
        caplog.set_level(logging.INFO, logger="settings_sync.sync.engine")

        engine.run({".env": "A=1\n"})

        assert "treating as first sync" not in caplog.text


# ---------------------------------------------------------------------------
# Values that must survive a rewrite unchanged
# ---------------------------------------------------------------------------


class TestSecretValuesSurviveRewrite:
    """Merged env files are rewritten without altering any value."""

    def test_trailing_newline_in_value(self, project_dir, make_engine):
        _write(project_dir, ".env", 'CERT="line1\\n"\n')
        engine = make_engine()

        report = engine.run({".env": "PORT=80\n"})

        expected = {"CERT": "line1\n", "PORT": "80"}
        assert parse_env_file(report.plan.writes[".env"]) == expected
        assert parse_env_file(_read(project_dir, ".env")) == expected

    def test_non_ascii_utf8_secret(self, project_dir, make_engine):
        _write(project_dir, ".env", "PASSWORD=s3cr€t\n")
        engine = make_engine()

        report = engine.run({".env": "PORT=80\n"})

        expected = {"PASSWORD": "s3cr€t", "PORT": "80"}
        assert parse_env_file(report.plan.writes[".env"]) == expected
        assert parse_env_file(_read(project_dir, ".env")) == expected


# ---------------------------------------------------------------------------
# push / pull
# ---------------------------------------------------------------------------


class TestPush:
    """push(): one-way upload guarded by remote drift."""

    def test_uploads_local_and_advances_base(self, project_dir, make_engine):
        _write(project_dir, ".env", "A=1\n")
        engine = make_engine()

        report = engine.push()

        assert report.blocked is False
        assert report.files == [".env"]
        assert report.writes == {".env": "A=1\n"}
        assert report.base_updated is True
        assert engine.state_store.load_contents() == {".env": "A=1\n"}
        assert engine.state_store.remote_fingerprint() == manifest_fingerprint(
            report.manifest
        )

    def test_remote_only_entries_kept_in_manifest(
        self, project_dir, make_engine
    ):
        _write(project_dir, ".env", "A=1\n")
        remote_manifest = build_manifest(
            "my-app", {".env": "A=0\n", ".env.prod": "P=1\n"}
        )

        report = make_engine().push(remote_manifest)

        assert [e.name for e in report.manifest.files] == [".env", ".env.prod"]
        assert report.writes == {".env": "A=1\n"}

    def test_refused_when_remote_moved(self, project_dir, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})
        _write(project_dir, ".env", "A=5\n")

        report = engine.push(build_manifest("my-app", {".env": "A=2\n"}))

        assert report.blocked is True
        assert report.writes == {}
        assert report.base_updated is False
        assert engine.state_store.load_contents() == {".env": "A=1\n"}

    def test_force_overrides_drift(self, project_dir, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})
        _write(project_dir, ".env", "A=5\n")

        report = engine.push(
            build_manifest("my-app", {".env": "A=2\n"}), force=True
        )

        assert report.blocked is False
        assert report.writes == {".env": "A=5\n"}
        assert engine.state_store.load_contents() == {".env": "A=5\n"}

    def test_dry_run_records_nothing(self, project_dir, make_engine):
        _write(project_dir, ".env", "A=1\n")
        engine = make_engine()

        report = engine.push(dry_run=True)

        assert report.writes == {".env": "A=1\n"}
        assert report.base_updated is False
        assert engine.state_store.load() is None

    def test_pushed_manifest_passes_next_check(self, project_dir, make_engine):
        _write(project_dir, ".env", "A=1\n")
        engine = make_engine()

        report = engine.push()

        assert engine.check_push(report.manifest).safe is True


class TestPull:
    """pull(): one-way download guarded by local drift."""

    def test_writes_remote_and_advances_base(self, project_dir, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})
        remote = {".env": "A=2\n", ".env.prod": "P=1\n"}

        report = engine.pull(remote)

        assert report.blocked is False
        assert report.files == [".env", ".env.prod"]
        assert _read(project_dir, ".env") == "A=2\n"
        assert _read(project_dir, ".env.prod") == "P=1\n"
        assert engine.state_store.load_contents() == remote
        assert report.base_updated is True

    def test_refused_when_local_changed(self, project_dir, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})
        _write(project_dir, ".env", "A=5\n")

        report = engine.pull({".env": "A=2\n"})

        assert report.blocked is True
        assert report.drift.changed == [".env"]
        assert _read(project_dir, ".env") == "A=5\n"
        assert engine.state_store.load_contents() == {".env": "A=1\n"}

    def test_force_with_backup(self, project_dir, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})
        _write(project_dir, ".env", "A=5\n")

        report = engine.pull({".env": "A=2\n"}, backup=True, force=True)

        assert report.backups == [".env.backup"]
        assert _read(project_dir, ".env.backup") == "A=5\n"
        assert _read(project_dir, ".env") == "A=2\n"

    def test_backup_files_are_not_tracked(self, project_dir, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})

        engine.pull({".env": "A=2\n"}, backup=True)

        assert engine.load_local() == {".env": "A=2\n"}
        assert engine.check_pull().safe is True

    def test_unchanged_file_not_rewritten(self, make_engine):
        engine = make_engine()
        _synced(engine, {".env": "A=1\n"})

        report = engine.pull({".env": "A=1\n"}, backup=True)

        assert report.backups == []

    def test_records_given_manifest(self, make_engine):
        engine = make_engine()
        remote = {".env": "A=1\n"}
        manifest = build_manifest("my-app", remote)

        engine.pull(remote, remote_manifest=manifest)

        assert engine.state_store.remote_fingerprint() == manifest_fingerprint(
            manifest
        )
        assert engine.check_push(manifest).safe is True

    def test_dry_run_writes_nothing(self, project_dir, make_engine):
        engine = make_engine()

        report = engine.pull({".env": "A=1\n"}, dry_run=True)

        assert report.files == [".env"]
        assert not (project_dir / ".env").exists()
        assert engine.state_store.load() is None

    def test_unsafe_names_skipped(self, project_dir, make_engine):
        engine = make_engine()

        report = engine.pull({"../evil.env": "X=1\n", ".env": "A=1\n"})

        assert report.files == [".env"]
        assert not (project_dir.parent / "evil.env").exists()


# ---------------------------------------------------------------------------
# diff
# ---------------------------------------------------------------------------


class TestDiff:
    """diff(): local vs remote comparison without side effects."""

    def test_file_statuses(self, project_dir, make_engine):
        _write(project_dir, ".env", "A=1\nB=2\nC=3\n")
        _write(project_dir, ".env.local", "X=1\n")
        _write(project_dir, ".env.test", "T=1\n")
        remote = {
            ".env": "B=20\nC=3\nD=4\n",
            ".env.prod": "P=1\n",
            ".env.test": "T=1\n",
        }

        diffs = {d.file_name: d for d in make_engine().diff(remote)}

        assert list(diffs) == [".env", ".env.local", ".env.prod", ".env.test"]
        env = diffs[".env"]
        assert env.status == DiffStatus.DIFFERENT
        assert env.added == ["A"]
        assert env.removed == ["D"]
        assert env.changed == ["B"]
        assert env.local_values == {"A": "1", "B": "2"}
        assert env.remote_values == {"D": "4", "B": "20"}
        assert diffs[".env.local"].status == DiffStatus.ONLY_LOCAL
        assert diffs[".env.prod"].status == DiffStatus.ONLY_REMOTE
        assert diffs[".env.test"].status == DiffStatus.IN_SYNC

    def test_formatting_only_difference_is_in_sync(
        self, project_dir, make_engine
    ):
        _write(project_dir, ".env", "# comment\nA=1\n")
        [diff] = make_engine().diff({".env": "A=1\n"})
        assert diff.status == DiffStatus.IN_SYNC

    def test_opaque_files_compared_whole(self, project_dir, make_engine):
        _write(project_dir, "app.json", '{"a": 1}\n')
        _write(project_dir, "same.json", "{}\n")
        engine = make_engine(project={"pattern": "*.json"})

        diffs = engine.diff({"app.json": '{"a": 2}\n', "same.json": "{}\n"})

        assert [(d.kind, d.status) for d in diffs] == [
            (FileKind.OPAQUE, DiffStatus.DIFFERENT),
            (FileKind.OPAQUE, DiffStatus.IN_SYNC),
        ]
        assert diffs[0].changed == []

    def test_single_file(self, project_dir, make_engine):
        _write(project_dir, ".env", "A=1\n")
        _write(project_dir, ".env.local", "X=1\n")

        diffs = make_engine().diff({".env": "A=2\n"}, file_name="./.env")

        assert [d.file_name for d in diffs] == [".env"]

    def test_invalid_file_name(self, make_engine):
        with pytest.raises(ValueError, match="Invalid file path"):
            make_engine().diff({}, file_name="../outside.env")

    def test_nothing_written(self, project_dir, make_engine):
        _write(project_dir, ".env", "A=1\n")
        engine = make_engine()

        engine.diff({".env": "A=2\n"})

        assert _read(project_dir, ".env") == "A=1\n"
        assert engine.state_store.load() is None
