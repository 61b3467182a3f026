"""Content hashing, manifest fingerprints and drift detection.

The drift guard answers one question before an unconditional push or
pull: has the other side moved since the last agreed base?

* ``remote_has_drifted`` compares the fingerprint recorded at the end of the
  previous sync with a fingerprint of the current remote manifest.
* ``local_drift`` compares current local content with the base snapshot.

If either reports drift, a blind overwrite is unsafe and the caller has to
fall back to full reconciliation.

Hashes use a versioned ``sha256:<hex>`` format.  Content is hashed as-is
(no line-ending or whitespace normalisation) because whitespace inside a
secret value is significant.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone

from .models import ManifestEntry, ProjectManifest

HASH_PREFIX = "sha256:"


def content_hash(content: str) -> str:
    """Return the ``sha256:<hex>`` digest of *content* encoded as UTF-8."""
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return f"{HASH_PREFIX}{digest}"


def manifest_fingerprint(manifest: ProjectManifest) -> str:
    """Compute a discovery-order independent fingerprint of *manifest*.

    Files are projected to ``(name, hash)`` and sorted by name before
    hashing, so two manifests describing the same content always produce
    the same fingerprint regardless of file order, sizes or timestamps.
    """
    files = sorted(
        ({"name": f.name, "hash": f.hash} for f in manifest.files),
        key=lambda f: f["name"],
    )
    canonical = json.dumps(
        {
            "version": manifest.version,
            "projectName": manifest.project_name,
            "files": files,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return content_hash(canonical)


def build_manifest(
    project_name: str,
    contents: dict[str, str],
    now: datetime | None = None,
) -> ProjectManifest:
    """Build a manifest describing *contents* (file name to content)."""
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    return ProjectManifest(
        project_name=project_name,
        files=[
            ManifestEntry(
                name=name,
                hash=content_hash(content),
                size=len(content.encode("utf-8")),
                updated_at=stamp,
            )
            for name, content in sorted(contents.items())
        ],
    )


def remote_has_drifted(
    base_fingerprint: str | None, current_fingerprint: str | None
) -> bool:
    """Return ``True`` if the remote moved since the recorded base.

    Without a recorded base fingerprint or without a remote manifest there
    is nothing to compare and no drift is reported.
    """
    if not base_fingerprint or not current_fingerprint:
        return False
    return base_fingerprint != current_fingerprint


def local_drift(
    base_contents: dict[str, str], local_contents: dict[str, str]
) -> list[str]:
    """Return sorted names of local files that moved since the base.

    A file counts as drifted when its hash differs from the base or when it
    is not in the base at all.  Files deleted locally are not reported, and
    an empty base (no prior sync) reports nothing.
    """
    if not base_contents:
        return []
    drifted = []
    for name, content in local_contents.items():
        base = base_contents.get(name)
        if base is None or content_hash(base) != content_hash(content):
            drifted.append(name)
    return sorted(drifted)


def local_has_drifted(
    base_contents: dict[str, str], local_contents: dict[str, str]
) -> bool:
    """Return ``True`` if any local file moved since the base."""
    return bool(local_drift(base_contents, local_contents))
