"""Manifest file loading with validation.

SECURITY: File reads enforce a size limit so an oversized manifest cannot
exhaust memory. Input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from .adapters import ManifestError, adapter_for
from .config import MAX_MANIFEST_FILE_SIZE_BYTES
from .models import Resource

logger = logging.getLogger(__name__)


class ManifestLoadError(Exception):
    """Raised when a manifest file cannot be loaded or validated."""

    pass


def load_manifest(path: Path, max_bytes: int = MAX_MANIFEST_FILE_SIZE_BYTES) -> dict[str, Any]:
    """Load a manifest YAML file into a mapping.

    Raises:
        ManifestLoadError: If the file is missing, too large, not YAML, or
            not a mapping.
    """
    if not path.exists():
        raise ManifestLoadError(f"Manifest file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ManifestLoadError(f"Failed to stat manifest file {path}: {e}") from e

    if file_size > max_bytes:
        raise ManifestLoadError(f"Manifest file exceeds maximum size of {max_bytes} bytes: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestLoadError(f"Failed to read manifest file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ManifestLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise ManifestLoadError(f"Manifest file must contain a YAML mapping: {path}")

    return raw_data


def load_resource(
    path: Path, max_bytes: int = MAX_MANIFEST_FILE_SIZE_BYTES
) -> tuple[dict[str, Any], Resource]:
    """Load a manifest and translate it to the canonical resource.

    Returns:
        The raw manifest (for writing status back) and the resource.

    Raises:
        ManifestLoadError: If loading or validation fails.
    """
    manifest = load_manifest(path, max_bytes)
    try:
        resource = adapter_for(manifest).to_resource(manifest)
    except ManifestError as e:
        raise ManifestLoadError(f"{path}: {e}") from e

    logger.info(
        "Loaded manifest",
        extra={"path": str(path), "kind": manifest.get("kind"), "resource": resource.key},
    )
    return manifest, resource


def save_manifest(path: Path, manifest: dict[str, Any]) -> None:
    """Write a manifest back to disk.

    Raises:
        ManifestLoadError: If the file cannot be written.
    """
    try:
        path.write_text(yaml.safe_dump(manifest, sort_keys=False), encoding="utf-8")
    except OSError as e:
        raise ManifestLoadError(f"Failed to write manifest file {path}: {e}") from e
