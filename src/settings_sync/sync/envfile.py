"""Env-file codec and file-kind detection.

Parsing is delegated to python-dotenv (with variable interpolation turned
off, since values are synced verbatim).  Serialization writes one
``KEY=value`` line per key in lexical order and quotes values that would
not survive an unquoted round trip.
"""

from __future__ import annotations

import fnmatch
import io
import posixpath
import re
from dataclasses import dataclass, field

from dotenv import dotenv_values

from .models import FileKind

DEFAULT_KEYED_PATTERNS: tuple[str, ...] = (".env", ".env.*", "*.env")

# Values made only of these characters are written unquoted.
_SAFE_VALUE = re.compile(r"[A-Za-z0-9_\-.,:/@+=%~^*?!&|;<>()\[\]{}$]*")


@dataclass
class EnvDiff:
    """Key-level difference between two env mappings."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


def parse_env_file(content: str) -> dict[str, str]:
    """Parse env-file *content* into a key/value mapping.

    Comments, blank lines and keys without ``=`` are dropped.  Quoted
    values are unquoted; ``${VAR}`` references are kept literally.
    """
    values = dotenv_values(stream=io.StringIO(content), interpolate=False)
    return {key: value for key, value in values.items() if value is not None}


def _quote(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return f'"{escaped}"'


def serialize_env_file(values: dict[str, str]) -> str:
    """Render *values* as env-file text, keys in lexical order.

    ``parse_env_file(serialize_env_file(m)) == m`` holds for any mapping
    with valid keys.
    """
    lines = []
    for key in sorted(values):
        value = values[key]
        if _SAFE_VALUE.fullmatch(value):
            lines.append(f"{key}={value}")
        else:
            lines.append(f"{key}={_quote(value)}")
    return "\n".join(lines) + "\n" if lines else ""


def diff_env_files(
    local: dict[str, str], remote: dict[str, str]
) -> EnvDiff:
    """Compare two mappings from the local point of view."""
    diff = EnvDiff()
    for key in sorted(local):
        if key not in remote:
            diff.added.append(key)
        elif local[key] != remote[key]:
            diff.changed.append(key)
    diff.removed = sorted(key for key in remote if key not in local)
    return diff


def detect_file_kind(
    name: str, keyed_patterns: tuple[str, ...] | list[str] = DEFAULT_KEYED_PATTERNS
) -> FileKind:
    """Return ``KEYED`` for env files, ``OPAQUE`` for everything else.

    Patterns are matched against the base name of *name*.
    """
    base_name = posixpath.basename(name)
    for pattern in keyed_patterns:
        if fnmatch.fnmatchcase(base_name, pattern):
            return FileKind.KEYED
    return FileKind.OPAQUE
