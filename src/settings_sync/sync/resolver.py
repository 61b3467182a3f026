"""Conflict resolution for reconciled files.

Two layers:

- **Applier**: ``apply_resolutions()`` folds a list of ``Resolution``
  decisions into the final merged mapping (keyed files) or content (opaque
  files); ``all_conflicts_resolved()`` checks completeness;
  ``resolve_all_conflicts()`` builds a uniform batch of decisions.
- **Strategies**: resolvers that produce ``Resolution`` objects for
  conflicts:

  - ``LocalWinsResolver``: always picks local.
  - ``RemoteWinsResolver``: always picks remote.
  - ``InteractiveResolver``: answers ``skip`` and accumulates every conflict
    in ``pending_conflicts`` for the caller to present (no I/O here).
  - ``ScriptedResolver``: answers from a pre-recorded table of decisions.

The ``create_resolver()`` factory maps config strategy strings to resolver
instances.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .models import (
    ConflictEntry,
    FileKind,
    FileMergeResult,
    Resolution,
    ResolutionChoice,
)

logger = logging.getLogger(__name__)


class InvalidResolutionError(ValueError):
    """A resolution violates the caller contract (e.g. manual w/o value)."""


# ---------------------------------------------------------------------------
# Applier
# ---------------------------------------------------------------------------


def _find_resolution(
    resolutions: list[Resolution], key: str
) -> Resolution | None:
    for resolution in resolutions:
        if resolution.key == key:
            return resolution
    return None


def _chosen_value(
    conflict: ConflictEntry, resolution: Resolution
) -> tuple[bool, str | None]:
    """Return ``(apply, value)`` for a resolution; ``value=None`` removes."""
    choice = resolution.choice
    if choice == ResolutionChoice.LOCAL:
        return True, conflict.local_value
    if choice == ResolutionChoice.REMOTE:
        return True, conflict.remote_value
    if choice == ResolutionChoice.BASE:
        return True, conflict.base_value
    if choice == ResolutionChoice.MANUAL:
        if resolution.manual_value is None:
            raise InvalidResolutionError(
                f"Manual resolution for '{conflict.key}' has no manual_value"
            )
        return True, resolution.manual_value
    # skip: keep the provisional local preview
    return False, None


def apply_resolutions(
    result: FileMergeResult, resolutions: list[Resolution]
) -> dict[str, str] | str | None:
    """Apply conflict decisions to a merge result.

    The result itself is not modified.  For every open conflict the first
    resolution with a matching key is applied; conflicts with no matching
    resolution, or resolved with ``skip``, keep their provisional (local)
    value.  Resolutions for keys that are not in conflict are ignored.

    Args:
        result: Output of the file reconciliation driver.
        resolutions: Decisions, typically one per conflict.

    Returns:
        A new ``dict`` for keyed files, or the final content (``None`` when
        the file is removed) for opaque files.

    Raises:
        InvalidResolutionError: A ``manual`` resolution has no value.
    """
    if result.kind == FileKind.OPAQUE:
        content = result.merged_content
        for conflict in result.conflicts:
            resolution = _find_resolution(resolutions, conflict.key)
            if resolution is None:
                continue
            apply, value = _chosen_value(conflict, resolution)
            if apply:
                content = value
        return content

    final = dict(result.merged)
    for conflict in result.conflicts:
        resolution = _find_resolution(resolutions, conflict.key)
        if resolution is None:
            continue
        apply, value = _chosen_value(conflict, resolution)
        if not apply:
            continue
        if value is None:
            final.pop(conflict.key, None)
        else:
            final[conflict.key] = value
    return final


def all_conflicts_resolved(
    result: FileMergeResult, resolutions: list[Resolution]
) -> bool:
    """Return ``True`` if every conflict has a non-skip resolution."""
    for conflict in result.conflicts:
        resolution = _find_resolution(resolutions, conflict.key)
        if resolution is None or resolution.choice == ResolutionChoice.SKIP:
            return False
    return True


def resolve_all_conflicts(
    result: FileMergeResult, strategy: str
) -> list[Resolution]:
    """Build one resolution per conflict using a single side.

    Choosing a side that deleted the key deletes it in the final result.

    Args:
        result: The merge result whose conflicts should be resolved.
        strategy: ``"local"`` or ``"remote"``.

    Raises:
        ValueError: If the strategy is not ``"local"`` or ``"remote"``.
    """
    if strategy not in ("local", "remote"):
        raise ValueError(
            f"Unknown batch strategy: '{strategy}'. Valid strategies: ['local', 'remote']"
        )
    choice = ResolutionChoice(strategy)
    return [
        Resolution(key=conflict.key, choice=choice)
        for conflict in result.conflicts
    ]


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(self, file_name: str, conflict: ConflictEntry) -> Resolution:
        """Decide a single conflict.

        Args:
            file_name: File the conflict belongs to.
            conflict: The conflict details.

        Returns:
            The decision for ``conflict.key``.
        """
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Simple resolvers
# ---------------------------------------------------------------------------


class LocalWinsResolver:
    """Always resolve conflicts in favour of the local version."""

    def resolve(self, file_name: str, conflict: ConflictEntry) -> Resolution:
        """Always choose local."""
        return Resolution(key=conflict.key, choice=ResolutionChoice.LOCAL)


class RemoteWinsResolver:
    """Always resolve conflicts in favour of the remote version."""

    def resolve(self, file_name: str, conflict: ConflictEntry) -> Resolution:
        """Always choose remote."""
        return Resolution(key=conflict.key, choice=ResolutionChoice.REMOTE)


# ---------------------------------------------------------------------------
# Interactive / scripted resolvers
# ---------------------------------------------------------------------------


class InteractiveResolver:
    """Defer every conflict to a human.

    Each conflict is skipped and recorded in ``pending_conflicts`` as a
    ``(file_name, conflict)`` pair so the caller can prompt for it and feed
    the answers back through a ``ScriptedResolver``.
    """

    def __init__(self) -> None:
        self.pending_conflicts: list[tuple[str, ConflictEntry]] = []

    def resolve(self, file_name: str, conflict: ConflictEntry) -> Resolution:
        """Record the conflict and skip it."""
        logger.info(
            "Conflict on %s in %s -- pending review",
            conflict.key,
            file_name,
        )
        self.pending_conflicts.append((file_name, conflict))
        return Resolution(key=conflict.key, choice=ResolutionChoice.SKIP)


class ScriptedResolver:
    """Answer conflicts from a table of pre-recorded decisions.

    Args:
        decisions: Mapping of ``(file_name, key)`` to the decision.  Missing
            entries are skipped.
    """

    def __init__(self, decisions: dict[tuple[str, str], Resolution]) -> None:
        self.decisions = dict(decisions)

    def resolve(self, file_name: str, conflict: ConflictEntry) -> Resolution:
        """Look up the recorded decision, defaulting to skip."""
        decision = self.decisions.get((file_name, conflict.key))
        if decision is None:
            return Resolution(key=conflict.key, choice=ResolutionChoice.SKIP)
        return decision


def resolve_file(
    result: FileMergeResult, resolver: ConflictResolver
) -> list[Resolution]:
    """Ask *resolver* for a decision on every conflict of *result*."""
    return [
        resolver.resolve(result.file_name, conflict)
        for conflict in result.conflicts
    ]


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[str, type] = {
    "interactive": InteractiveResolver,
    "local-wins": LocalWinsResolver,
    "remote-wins": RemoteWinsResolver,
}


def create_resolver(strategy: str) -> ConflictResolver:
    """Create a conflict resolver for the given strategy string.

    Args:
        strategy: One of ``"interactive"``, ``"local-wins"``,
            ``"remote-wins"``.

    Returns:
        A ``ConflictResolver`` implementation instance.

    Raises:
        ValueError: If the strategy string is not recognised.
    """
    cls = _STRATEGY_MAP.get(strategy)
    if cls is None:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: {sorted(_STRATEGY_MAP.keys())}"
        )
    return cls()  # type: ignore[return-value]
