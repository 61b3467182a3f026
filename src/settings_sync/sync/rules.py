"""Three-way decision rule for a single key.

``resolve_key`` decides the fate of one key from its value in the base,
local and remote versions.  ``None`` means the key is absent in that
version; an empty string is an ordinary value.

Decision table (``-`` is absent, letters are distinct values):

====  =====  ======  ==========================================
Base  Local  Remote  Outcome
====  =====  ======  ==========================================
-     A      A       unchanged
-     A      B       conflict (new_key_collision)
-     A      -       auto-merge (added_from_local)
-     -      A       auto-merge (added_from_remote)
A     A      A       unchanged
A     B      A       auto-merge (updated_from_local)
A     A      B       auto-merge (updated_from_remote)
A     B      B       unchanged
A     B      C       conflict (divergent_edit)
A     -      A       auto-merge (deleted)
A     A      -       auto-merge (deleted)
A     -      -       auto-merge (deleted)
A     -      B       conflict (edit_vs_delete)
A     B      -       conflict (edit_vs_delete)
====  =====  ======  ==========================================
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from .models import AutoMergeAction, ConflictType


class OutcomeKind(str, Enum):
    """Top-level classification of a key outcome."""

    UNCHANGED = "unchanged"
    AUTO_MERGED = "auto_merged"
    CONFLICT = "conflict"


class KeyOutcome(BaseModel):
    """Result of ``resolve_key``.

    Attributes:
        kind: unchanged, auto_merged or conflict.
        value: Resolved value for unchanged/auto_merged (``None`` when the
            key ends up absent).
        action: Set only for ``auto_merged``.
        conflict_type: Set only for ``conflict``.
    """

    kind: OutcomeKind
    value: str | None = None
    action: AutoMergeAction | None = None
    conflict_type: ConflictType | None = None

    model_config = {"frozen": True}

    @classmethod
    def unchanged(cls, value: str | None) -> KeyOutcome:
        return cls(kind=OutcomeKind.UNCHANGED, value=value)

    @classmethod
    def auto_merged(
        cls, action: AutoMergeAction, value: str | None = None
    ) -> KeyOutcome:
        return cls(kind=OutcomeKind.AUTO_MERGED, action=action, value=value)

    @classmethod
    def conflict(cls, conflict_type: ConflictType) -> KeyOutcome:
        return cls(kind=OutcomeKind.CONFLICT, conflict_type=conflict_type)


def resolve_key(
    key: str,
    base_val: str | None,
    local_val: str | None,
    remote_val: str | None,
) -> KeyOutcome:
    """Decide the outcome for one key given its three versions.

    Args:
        key: The key being reconciled (informational only).
        base_val: Value at the last sync, ``None`` if there was none.
        local_val: Current local value, ``None`` if absent.
        remote_val: Current remote value, ``None`` if absent.

    Returns:
        Exactly one ``KeyOutcome``.  Never raises.
    """
    local_exists = local_val is not None
    remote_exists = remote_val is not None

    # First sync for this key
    if base_val is None:
        if local_exists and remote_exists:
            if local_val == remote_val:
                return KeyOutcome.unchanged(local_val)
            return KeyOutcome.conflict(ConflictType.NEW_KEY_COLLISION)
        if local_exists:
            return KeyOutcome.auto_merged(
                AutoMergeAction.ADDED_FROM_LOCAL, local_val
            )
        if remote_exists:
            return KeyOutcome.auto_merged(
                AutoMergeAction.ADDED_FROM_REMOTE, remote_val
            )
        return KeyOutcome.unchanged(None)

    local_changed = local_val != base_val
    remote_changed = remote_val != base_val
    local_deleted = not local_exists
    remote_deleted = not remote_exists

    if not local_changed and not remote_changed:
        return KeyOutcome.unchanged(base_val)

    if local_deleted and remote_deleted:
        return KeyOutcome.auto_merged(AutoMergeAction.DELETED)

    if local_deleted and not remote_changed:
        return KeyOutcome.auto_merged(AutoMergeAction.DELETED)

    if remote_deleted and not local_changed:
        return KeyOutcome.auto_merged(AutoMergeAction.DELETED)

    if local_deleted or remote_deleted:
        # One side deleted, the other edited
        return KeyOutcome.conflict(ConflictType.EDIT_VS_DELETE)

    if not remote_changed:
        return KeyOutcome.auto_merged(
            AutoMergeAction.UPDATED_FROM_LOCAL, local_val
        )

    if not local_changed:
        return KeyOutcome.auto_merged(
            AutoMergeAction.UPDATED_FROM_REMOTE, remote_val
        )

    if local_val == remote_val:
        return KeyOutcome.unchanged(local_val)

    return KeyOutcome.conflict(ConflictType.DIVERGENT_EDIT)
