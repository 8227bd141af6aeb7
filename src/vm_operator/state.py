"""Local state file mapping VM names to resource ids and applied specs.

The file is the durable handle store between runs: a resource id is written
as soon as a VM exists, and the last successfully applied spec is kept so the
next update can compute pool changes and reboot impact.

Format::

    web-01:
      resource_id: pve1/qemu/101
      spec: {name: web-01, target_node: pve1, ...}
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_STATE_FILE_SIZE_BYTES
from .models import VmSpec

logger = logging.getLogger(__name__)


class StateError(Exception):
    """Raised when the state file cannot be read or written."""

    pass


@dataclass
class StateEntry:
    """What is known locally about one managed VM."""

    name: str
    resource_id: str
    spec: VmSpec | None = None


class StateStore:
    """YAML-backed store of :class:`StateEntry` records."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._entries: dict[str, StateEntry] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return

        # SECURITY: Check file size before reading to prevent DoS
        try:
            if self._path.stat().st_size > MAX_STATE_FILE_SIZE_BYTES:
                raise StateError(
                    f"State file exceeds maximum size of {MAX_STATE_FILE_SIZE_BYTES} bytes: "
                    f"{self._path}"
                )
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StateError(f"Failed to read state file {self._path}: {e}") from e
        except yaml.YAMLError as e:
            raise StateError(f"Invalid YAML in state file {self._path}: {e}") from e

        if raw is None:
            return
        if not isinstance(raw, dict):
            raise StateError(f"State file must contain a YAML mapping: {self._path}")

        for name, record in raw.items():
            if not isinstance(record, dict):
                raise StateError(f"State entry for '{name}' must be a mapping")
            spec_data = record.get("spec")
            try:
                spec = VmSpec.model_validate(spec_data) if spec_data else None
            except ValidationError as e:
                raise StateError(f"Stored spec for '{name}' is invalid: {e}") from e
            self._entries[str(name)] = StateEntry(
                name=str(name),
                resource_id=str(record.get("resource_id", "")),
                spec=spec,
            )

        logger.debug(
            "Loaded state file", extra={"path": str(self._path), "entries": len(self._entries)}
        )

    def save(self) -> None:
        """Write all entries, replacing the file atomically."""
        data: dict[str, Any] = {}
        for name in sorted(self._entries):
            entry = self._entries[name]
            record: dict[str, Any] = {"resource_id": entry.resource_id}
            if entry.spec is not None:
                record["spec"] = entry.spec.model_dump(mode="json", by_alias=True)
            data[name] = record

        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{self._path.name}.")
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                yaml.safe_dump(data, tmp, sort_keys=False)
            os.replace(tmp_name, self._path)
        except OSError as e:
            raise StateError(f"Failed to write state file {self._path}: {e}") from e

    def get(self, name: str) -> StateEntry | None:
        return self._entries.get(name)

    def names(self) -> list[str]:
        return sorted(self._entries)

    def put(self, name: str, resource_id: str, spec: VmSpec | None) -> None:
        """Record ``name`` and persist immediately."""
        self._entries[name] = StateEntry(name=name, resource_id=resource_id, spec=spec)
        self.save()

    def remove(self, name: str) -> None:
        """Forget ``name`` and persist immediately. Unknown names are ignored."""
        if self._entries.pop(name, None) is not None:
            self.save()
