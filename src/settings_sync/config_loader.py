"""
Configuration file discovery and loading for settings_sync.

Config is plain YAML split over up to three layers, lowest precedence first:

1. ``~/.config/pss/config.yml`` -- per-user defaults.
2. ``<project>/.pss/config.yml`` (or ``config.yaml``) -- per-project settings,
   stored next to the base snapshot.
3. The file named by ``PSS_CONFIG`` -- explicit override.

A higher layer replaces whole top-level sections (``project``, ``sync``,
``logging``) of the layers below it.  Files may pull in other files with
``!include`` and reference environment variables as ``${VAR}`` or
``${VAR:-default}``.

Usage:
    from settings_sync.config_loader import load_config

    config = load_config(project_dir)
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .config_schema import UnifiedConfig, build_config

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PSS_CONFIG"
PROJECT_CONFIG_DIR = ".pss"
PROJECT_CONFIG_NAMES = ("config.yml", "config.yaml")

# ${VAR} or ${VAR:-fallback}
_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------


def expand_env_vars(value: str) -> str:
    """Substitute ``${VAR}`` references in *value*.

    An unset or empty variable expands to its ``:-`` fallback, or to the
    empty string without one.  An unterminated ``${`` is kept as written.
    """

    def _lookup(match: re.Match) -> str:
        name, fallback = match.group(1), match.group(2)
        return os.environ.get(name) or fallback or ""

    return _ENV_REF.sub(_lookup, value)


def _expand_tree(node: Any) -> Any:
    if isinstance(node, str):
        return expand_env_vars(node)
    if isinstance(node, dict):
        return {key: _expand_tree(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_expand_tree(item) for item in node]
    return node


# ---------------------------------------------------------------------------
# YAML with !include
# ---------------------------------------------------------------------------


class IncludeLoader(yaml.SafeLoader):
    """Safe YAML loader that understands ``!include <path>``.

    The tag is registered on this subclass only; ``yaml.safe_load`` keeps
    rejecting it.  ``chain`` holds the files currently being loaded, outermost
    first, and is how include cycles are caught.
    """

    def __init__(self, stream, chain: tuple[Path, ...]) -> None:
        super().__init__(stream)
        self.chain = chain


def _construct_include(loader: IncludeLoader, node: yaml.ScalarNode) -> Any:
    current = loader.chain[-1]
    target = Path(loader.construct_scalar(node)).expanduser()
    if not target.is_absolute():
        target = current.parent / target
    target = target.resolve()

    if target in loader.chain:
        cycle = " -> ".join(str(p) for p in (*loader.chain, target))
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.is_file():
        raise FileNotFoundError(
            f"Include file not found: {target} (referenced from {current})"
        )
    return load_yaml_file(target, _chain=loader.chain)


IncludeLoader.add_constructor("!include", _construct_include)


def load_yaml_file(path: Path, *, _chain: tuple[Path, ...] = ()) -> Any:
    """Parse one YAML file, resolving ``!include`` relative to it.

    Raises:
        yaml.YAMLError: The file is not valid YAML.
        FileNotFoundError: An included file does not exist.
        ValueError: Files include each other in a cycle.
    """
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = IncludeLoader(fh, (*_chain, path))
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def global_config_path() -> Path:
    """Per-user config file location."""
    return Path.home() / ".config" / "pss" / "config.yml"


def discover_config_files(project_dir: Path | None = None) -> list[Path]:
    """Return the config files that exist, highest precedence first.

    Args:
        project_dir: Project whose ``.pss`` directory is searched; the
            current directory when omitted.
    """
    root = project_dir or Path.cwd()
    candidates: list[Path] = []

    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        candidates.append(Path(override).expanduser().resolve())
    candidates.extend(
        root / PROJECT_CONFIG_DIR / name for name in PROJECT_CONFIG_NAMES
    )
    candidates.append(global_config_path())

    return [path for path in candidates if path.is_file()]


_STARTER_CONFIG = """\
# project-settings-sync configuration
#
# project:
#   project_name: my-app
#   pattern: ".env*"
#   ignore:
#     - ".env.example"
#
# sync:
#   conflict_strategy: interactive   # interactive | local-wins | remote-wins
#   keyed_patterns: [".env", ".env.*", "*.env"]
#   state_dir: .pss
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path(project_dir: Path | None = None) -> Path:
    """Return the config file in effect, or where a project one would go.

    Nothing is created; see ``ensure_config()``.
    """
    existing = discover_config_files(project_dir)
    if existing:
        return existing[0]
    root = project_dir or Path.cwd()
    return root / PROJECT_CONFIG_DIR / PROJECT_CONFIG_NAMES[0]


def ensure_config(
    target: Path | None = None, project_dir: Path | None = None
) -> Path:
    """Make sure a config file exists, writing a commented starter if not.

    Args:
        target: Where to create the file when none exists yet; defaults to
            the project-level location.
        project_dir: Project to look in; the current directory when omitted.

    Returns:
        The existing or newly created config file.
    """
    existing = discover_config_files(project_dir)
    if existing:
        logger.debug("Using existing config file %s", existing[0])
        return existing[0]

    path = target or resolve_config_path(project_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_hierarchical_config(project_dir: Path | None = None) -> dict[str, Any]:
    """Load every discovered config file and merge them into one dict.

    Layers are applied from lowest to highest precedence; each layer's
    top-level sections replace earlier ones wholesale.  Environment
    references are expanded after merging.  Returns ``{}`` when no config
    file exists.
    """
    layers = discover_config_files(project_dir)
    if not layers:
        logger.debug("No config files found -- using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(layers):
        logger.debug("Loading config: %s", path)
        try:
            data = load_yaml_file(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Ignoring config file %s: top level is a %s, not a mapping",
                path,
                type(data).__name__,
            )
            continue
        merged.update(data)

    return _expand_tree(merged)


def load_config(project_dir: Path | None = None) -> UnifiedConfig:
    """Discover, merge and validate the configuration for *project_dir*.

    Raises:
        pydantic.ValidationError: A section holds invalid values.
    """
    return build_config(load_hierarchical_config(project_dir))
