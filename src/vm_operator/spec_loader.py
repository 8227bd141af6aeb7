"""VM spec file loading with validation.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import VmSpec

logger = logging.getLogger(__name__)

SPEC_FILE_SUFFIXES = (".yaml", ".yml")


class SpecLoadError(Exception):
    """Raised when spec loading or validation fails."""

    pass


def load_vm_spec(spec_path: Path) -> VmSpec:
    """Load and validate a VM spec from YAML.

    Both a flat mapping and the Kubernetes-style wrapper
    (``apiVersion``/``kind``/``metadata``/``spec``) are accepted.

    Args:
        spec_path: Path to the YAML file.

    Returns:
        Validated spec instance.

    Raises:
        SpecLoadError: If the spec cannot be loaded or fails validation.
    """
    if not spec_path.exists():
        raise SpecLoadError(f"Spec file not found: {spec_path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = spec_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat spec file {spec_path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Spec file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {spec_path}"
        )

    try:
        content = spec_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read spec file {spec_path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {spec_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Spec file must contain a YAML mapping: {spec_path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {spec_path}")
        # metadata.name stands in for a missing spec name
        metadata = raw_data.get("metadata") or {}
        if "name" not in spec_data and isinstance(metadata, dict) and metadata.get("name"):
            spec_data = {**spec_data, "name": metadata["name"]}
    else:
        spec_data = raw_data

    try:
        spec = VmSpec.model_validate(spec_data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {spec_path}:\n{error_list}") from e

    logger.info("Loaded spec for VM '%s' from %s", spec.name, spec_path)
    return spec


def load_vm_specs(specs_dir: Path) -> list[VmSpec]:
    """Load every ``*.yaml``/``*.yml`` spec in a directory, sorted by file name.

    Raises:
        SpecLoadError: If the directory is missing, a file fails to load, or
            two files declare the same VM name.
    """
    if not specs_dir.is_dir():
        raise SpecLoadError(f"Spec directory not found: {specs_dir}")

    specs: list[VmSpec] = []
    seen: dict[str, Path] = {}
    for path in sorted(specs_dir.iterdir()):
        if path.suffix not in SPEC_FILE_SUFFIXES or not path.is_file():
            continue
        spec = load_vm_spec(path)
        if spec.name in seen:
            raise SpecLoadError(
                f"VM name '{spec.name}' declared twice: {seen[spec.name]} and {path}"
            )
        seen[spec.name] = path
        specs.append(spec)

    logger.info("Loaded %d VM specs from %s", len(specs), specs_dir)
    return specs
