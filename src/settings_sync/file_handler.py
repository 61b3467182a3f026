"""File handler module: tracked-file discovery, path validation, read/write.

Provides the local file I/O around the reconciliation engine.  Names are
always POSIX paths relative to the project directory, which is also the
form used in the base snapshot and the remote manifest.
"""

import fnmatch
import logging
import posixpath
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from charset_normalizer import from_bytes

logger = logging.getLogger(__name__)

# Never tracked, whatever the configured pattern says.
ALWAYS_IGNORED: tuple[str, ...] = (".git/**", "node_modules/**", "*.backup")


@dataclass
class TrackedFile:
    """A locally tracked file discovered in the project directory."""

    name: str
    path: Path
    content: str
    size: int
    modified_at: datetime


# =============================================================================
# Path Validation
# =============================================================================


def normalize_relative_path(name: str) -> str | None:
    """Normalise a project-relative file name.

    Args:
        name: A file name as stored in a manifest or snapshot.

    Returns:
        The normalised POSIX name, or ``None`` if the name is empty,
        absolute, or escapes the project directory.
    """
    if not name or not name.strip():
        return None
    candidate = name.replace("\\", "/")
    if candidate.startswith("/") or (
        len(candidate) > 1 and candidate[1] == ":"
    ):
        return None
    normalized = posixpath.normpath(candidate)
    if normalized in (".", "") or normalized.split("/")[0] == "..":
        return None
    return normalized


def _is_ignored(name: str, ignore: list[str]) -> bool:
    for pattern in ignore:
        if fnmatch.fnmatchcase(name, pattern):
            return True
        # "dir/**" also covers the directory itself
        if pattern.endswith("/**") and (
            name == pattern[:-3] or name.startswith(pattern[:-2])
        ):
            return True
    return False


# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Bytes that are valid UTF-8 are always decoded as UTF-8; only other
    content goes through charset-normalizer detection.  Defaults to UTF-8
    for empty files or when detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    try:
        return (raw.decode("utf-8"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        # ascii is a strict subset of utf-8
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)


def write_file(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Write content to a file, creating parent directories as needed.

    Args:
        path: Path to the output file.
        content: String content to write.
        encoding: Encoding to use (default: utf-8).

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)
    path.write_bytes(encoded)
    return len(encoded)


def delete_file(path: Path) -> bool:
    """Delete *path* if it exists.  Returns whether a file was removed."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


# =============================================================================
# Discovery
# =============================================================================


def discover_project_files(
    project_dir: Path,
    pattern: str,
    ignore: list[str] | None = None,
) -> list[TrackedFile]:
    """Find and read the files tracked in *project_dir*.

    Args:
        project_dir: Project root.
        pattern: Glob relative to the root (e.g. ``.env*`` or
            ``config/**/*.yaml``).  Dot-files are matched.
        ignore: Extra glob patterns (relative names) to exclude.

    Returns:
        Tracked files sorted by name.  Files that cannot be read are
        skipped with a warning.
    """
    ignore_patterns = list(ALWAYS_IGNORED) + list(ignore or [])
    files: list[TrackedFile] = []

    for path in sorted(project_dir.glob(pattern)):
        if not path.is_file():
            continue
        name = path.relative_to(project_dir).as_posix()
        if _is_ignored(name, ignore_patterns):
            continue
        try:
            content, _encoding = read_file_with_encoding(path)
            stats = path.stat()
        except OSError as exc:
            logger.warning("Skipping unreadable file %s: %s", path, exc)
            continue
        files.append(
            TrackedFile(
                name=name,
                path=path,
                content=content,
                size=stats.st_size,
                modified_at=datetime.fromtimestamp(
                    stats.st_mtime, tz=timezone.utc
                ),
            )
        )

    logger.debug(
        "Discovered %d tracked file(s) in %s", len(files), project_dir
    )
    return sorted(files, key=lambda f: f.name)
