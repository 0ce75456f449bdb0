"""Target manifest loading.

This module provides helpers for reading target manifests from YAML/JSON
files and discovering every manifest under a targets directory.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from riscv_bringup.targets.schema import TargetManifest

logger = logging.getLogger(__name__)

MANIFEST_FILENAMES = ("target.yaml", "target.yml", "target.json")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def load_manifest(path: Path) -> TargetManifest:
    """Load and validate a target manifest (YAML or JSON).

    File format is determined by extension.

    Raises:
        ValueError: If the extension is unsupported or content is malformed.
        pydantic.ValidationError: If data does not match the schema.
    """
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = load_yaml(path)
    elif suffix == ".json":
        data = load_json(path)
    else:
        raise ValueError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )
    return TargetManifest.model_validate(data)


def find_manifest(target_dir: Path) -> Path | None:
    """Return the manifest file inside *target_dir*, if any."""
    for filename in MANIFEST_FILENAMES:
        candidate = target_dir / filename
        if candidate.is_file():
            return candidate
    return None


def discover_manifests(targets_dir: Path) -> list[tuple[TargetManifest, Path]]:
    """Load every manifest under *targets_dir*.

    Args:
        targets_dir: Directory with one sub-directory per target.

    Returns:
        List of (manifest, target directory) sorted by directory name.

    Raises:
        ValueError: If a manifest's name does not match its directory.
        pydantic.ValidationError: If a manifest is invalid.
    """
    if not targets_dir.is_dir():
        return []

    found: list[tuple[TargetManifest, Path]] = []
    for target_dir in sorted(p for p in targets_dir.iterdir() if p.is_dir()):
        manifest_path = find_manifest(target_dir)
        if manifest_path is None:
            continue
        manifest = load_manifest(manifest_path)
        if manifest.name != target_dir.name:
            raise ValueError(
                f"Manifest {manifest_path} declares name '{manifest.name}' "
                f"but lives in directory '{target_dir.name}'"
            )
        logger.debug("Loaded target manifest %s", manifest_path)
        found.append((manifest, target_dir))
    return found


__all__ = [
    "MANIFEST_FILENAMES",
    "discover_manifests",
    "find_manifest",
    "load_json",
    "load_manifest",
    "load_yaml",
]
