"""Base snapshot persistence layer.

Stores the last mutually agreed version of every synced file in
``<state_dir>/snapshot.json`` (typically ``.pss/snapshot.json``), together
with the remote manifest fingerprint recorded at the end of that sync.
The snapshot supplies the *base* side of every three-way merge and the
reference fingerprint for the drift guard.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Self-describing entries** -- each file entry carries its content hash,
  so a snapshot whose content no longer matches its hash is ignored
  instead of being used as a wrong merge base.
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ValidationError

from ..file_handler import delete_file
from .fingerprint import content_hash

logger = logging.getLogger(__name__)

SNAPSHOT_FILE = "snapshot.json"


class BaseFileEntry(BaseModel):
    """One file of the base snapshot."""

    name: str
    hash: str
    content: str

    model_config = {"frozen": True}


class BaseSnapshot(BaseModel):
    """Last agreed state of a project.

    Attributes:
        version: Snapshot format version.
        files: Base content per file.
        synced_at: ISO 8601 timestamp of the sync that produced it.
        remote_fingerprint: Fingerprint of the remote manifest at that time.
    """

    version: int = 1
    files: list[BaseFileEntry] = []
    synced_at: str | None = None
    remote_fingerprint: str | None = None

    model_config = {"frozen": True}


class BaseSnapshotStore:
    """Load, save, and query the base snapshot of a project.

    Args:
        state_dir: Directory where the snapshot lives (typically
            ``<project>/.pss``).
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir

    @property
    def snapshot_path(self) -> Path:
        return self._state_dir / SNAPSHOT_FILE

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> BaseSnapshot | None:
        """Load the snapshot from disk.

        Returns:
            The snapshot, or ``None`` if none was saved yet or the file is
            unreadable.
        """
        path = self.snapshot_path
        if not path.exists():
            return None
        try:
            return BaseSnapshot.model_validate_json(
                path.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as exc:
            logger.warning("Ignoring unreadable base snapshot %s: %s", path, exc)
            return None

    def save(
        self, files: dict[str, str], remote_fingerprint: str | None
    ) -> BaseSnapshot:
        """Persist a new snapshot atomically.

        Writes to a temporary file in the state directory then atomically
        replaces the target.  Creates ``state_dir`` if it does not exist.

        Args:
            files: Agreed content per file name.
            remote_fingerprint: Fingerprint of the remote manifest that now
                matches *files*.

        Returns:
            The snapshot that was written.
        """
        snapshot = BaseSnapshot(
            files=[
                BaseFileEntry(
                    name=name, hash=content_hash(content), content=content
                )
                for name, content in sorted(files.items())
            ],
            synced_at=datetime.now(timezone.utc).isoformat(),
            remote_fingerprint=remote_fingerprint,
        )

        self._state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(snapshot.model_dump_json(indent=2))
            os.replace(tmp_path, self.snapshot_path)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        logger.debug(
            "Saved base snapshot with %d file(s) to %s",
            len(snapshot.files),
            self.snapshot_path,
        )
        return snapshot

    def clear(self) -> None:
        """Forget the base snapshot.  No-op if none was saved.

        Only the snapshot file is removed; other files in the state
        directory (such as a project config) are kept.
        """
        if delete_file(self.snapshot_path):
            logger.debug("Removed base snapshot %s", self.snapshot_path)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def load_contents(self) -> dict[str, str]:
        """Return base content per file name.

        Entries whose content does not match their recorded hash are
        skipped with a warning.
        """
        snapshot = self.load()
        if snapshot is None:
            return {}
        contents: dict[str, str] = {}
        for entry in snapshot.files:
            if content_hash(entry.content) != entry.hash:
                logger.warning(
                    "Base content for %s does not match its hash -- ignoring",
                    entry.name,
                )
                continue
            contents[entry.name] = entry.content
        return contents

    def has_valid_snapshot(self) -> bool:
        """Return ``True`` if a snapshot with usable base content exists."""
        return bool(self.load_contents())

    def remote_fingerprint(self) -> str | None:
        """Return the remote fingerprint recorded by the last sync."""
        snapshot = self.load()
        return snapshot.remote_fingerprint if snapshot else None
