"""Artifact discovery and manifest generation.

This module handles:
- Walking an installed artifact directory
- Computing checksums
- Writing a manifest.json describing the installed files
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from riscv_bringup.types import ArtifactInfo

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def discover_artifacts(install_dir: Path) -> list[ArtifactInfo]:
    """Discover regular files in an installed artifact directory.

    Symlinks are skipped (they point at files that are listed themselves),
    as is any previous manifest.

    Args:
        install_dir: Artifact directory.

    Returns:
        List of ArtifactInfo sorted by relative path.
    """
    if not install_dir.exists():
        logger.warning("Artifact directory does not exist: %s", install_dir)
        return []

    artifacts: list[ArtifactInfo] = []
    for path in sorted(install_dir.rglob("*")):
        if path.is_symlink() or not path.is_file():
            continue
        relative = path.relative_to(install_dir).as_posix()
        if relative == MANIFEST_NAME:
            continue
        artifacts.append(
            ArtifactInfo(
                relative_path=relative,
                size_bytes=path.stat().st_size,
                sha256=compute_file_hash(path),
            )
        )
    return artifacts


def generate_manifest(
    component: str,
    artifacts: list[ArtifactInfo],
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a manifest for an installed component.

    Args:
        component: Component name.
        artifacts: Discovered artifacts.
        details: Extra fields (ISA, target, source ref).

    Returns:
        Manifest dictionary.
    """
    return {
        "component": component,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "details": details or {},
        "artifact_count": len(artifacts),
        "total_size_bytes": sum(a.size_bytes for a in artifacts),
        "artifacts": [asdict(a) for a in artifacts],
    }


def write_manifest(
    install_dir: Path,
    component: str,
    details: dict[str, Any] | None = None,
) -> Path:
    """Discover artifacts under *install_dir* and write its manifest.json.

    Returns:
        Path to the written manifest.
    """
    artifacts = discover_artifacts(install_dir)
    manifest = generate_manifest(component, artifacts, details)
    manifest_path = install_dir / MANIFEST_NAME
    with manifest_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)
        f.write("\n")
    logger.debug("Wrote manifest for %s (%d files)", component, len(artifacts))
    return manifest_path


def read_manifest(install_dir: Path) -> dict[str, Any] | None:
    """Read the manifest of an installed artifact, if present."""
    manifest_path = install_dir / MANIFEST_NAME
    if not manifest_path.exists():
        return None
    with manifest_path.open(encoding="utf-8") as f:
        data: dict[str, Any] = json.load(f)
    return data


__all__ = [
    "MANIFEST_NAME",
    "compute_file_hash",
    "discover_artifacts",
    "generate_manifest",
    "read_manifest",
    "write_manifest",
]
