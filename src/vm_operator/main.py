"""Wiring for the VM operator.

Builds the provider session, compute client and orchestrator from a
ProviderConfig, and runs apply/destroy/show against the local state store.
Several specs are applied concurrently; the session's admission gate bounds
how many of them talk to the API at once.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime

from .client import ComputeClient
from .config import ProviderConfig
from .identity import ResourceHandle
from .models import VmSpec
from .orchestrator import OperationResult, VmOrchestrator
from .proxmox import ProxmoxComputeClient
from .session import ProviderSession
from .state import StateStore

logger = logging.getLogger(__name__)

# Standard LogRecord attributes that are not copied into the JSON payload
_RESERVED_RECORD_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(config: ProviderConfig, level: int = logging.INFO) -> None:
    """Configure structured JSON logging to stdout and, if enabled, a file."""
    formatter = JsonFormatter()
    root_logger = logging.getLogger()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    if config.log_enable:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.setLevel(level)

    # Reduce noise from the HTTP stack
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("proxmoxer").setLevel(logging.WARNING)

    for logger_name, logger_level in config.resolved_log_levels().items():
        target = root_logger if logger_name == "_default" else logging.getLogger(logger_name)
        target.setLevel(logger_level)


def build_orchestrator(
    config: ProviderConfig, client: ComputeClient | None = None
) -> VmOrchestrator:
    """Create the session and orchestrator, with a Proxmox client by default."""
    session = ProviderSession(config, client or ProxmoxComputeClient(config))
    return VmOrchestrator(session)


async def apply_spec(
    orchestrator: VmOrchestrator, store: StateStore, spec: VmSpec
) -> OperationResult:
    """Create or update the VM for ``spec`` and record the outcome.

    A stored id whose VM is gone falls back to create. Whatever id the
    orchestrator leaves on the handle is persisted, including after a failure
    part-way through a create.
    """
    entry = store.get(spec.name)
    handle = ResourceHandle(entry.resource_id if entry else "")
    previous = entry.spec if entry else None

    try:
        if handle.is_set:
            current = await orchestrator.read(handle, spec)
            if current.state is not None:
                result = await orchestrator.update(handle, spec, previous)
                store.put(spec.name, handle.resource_id, spec)
                return result
            logger.info("Stored VM is gone, creating it again", extra={"vm_name": spec.name})

        result = await orchestrator.create(spec, handle)
        store.put(spec.name, handle.resource_id, spec)
        return result
    except Exception:
        if handle.is_set:
            store.put(spec.name, handle.resource_id, previous or spec)
        elif entry is not None:
            store.remove(spec.name)
        raise


async def apply_specs(
    orchestrator: VmOrchestrator, store: StateStore, specs: list[VmSpec]
) -> list[OperationResult | BaseException]:
    """Apply several specs concurrently. Failures are returned, not raised."""
    return await asyncio.gather(
        *(apply_spec(orchestrator, store, spec) for spec in specs),
        return_exceptions=True,
    )


async def destroy_vm(orchestrator: VmOrchestrator, store: StateStore, name: str) -> bool:
    """Delete the VM recorded under ``name``.

    Returns:
        False if nothing was recorded under ``name``.
    """
    entry = store.get(name)
    if entry is None or not entry.resource_id:
        return False

    handle = ResourceHandle(entry.resource_id)
    current = await orchestrator.read(handle)
    if current.state is not None:
        await orchestrator.delete(handle)
    store.remove(name)
    return True


async def show_vm(
    orchestrator: VmOrchestrator, store: StateStore, name: str
) -> OperationResult | None:
    """Read the observed state of the VM recorded under ``name``."""
    entry = store.get(name)
    if entry is None or not entry.resource_id:
        return None

    handle = ResourceHandle(entry.resource_id)
    result = await orchestrator.read(handle, entry.spec)
    if handle.resource_id != entry.resource_id:
        if handle.is_set:
            store.put(name, handle.resource_id, entry.spec)
        else:
            store.remove(name)
    return result
