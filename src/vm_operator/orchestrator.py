"""VM lifecycle orchestration.

This module drives a remote VM towards its desired state:

CREATE:
1. Reject same-name conflicts (force_create, or the VM lives on another node)
2. Adopt a same-name VM on the target node (recycle), or allocate an id and
   bring a new VM into existence by clone, installation media or network boot
3. Assign the resource id as soon as the VM exists, even if a later step fails
4. Attach the cloud-init drive, start the VM, discover its address

UPDATE:
1. Relocate first, then push configuration, then grow disks (never shrink)
2. Reassign the pool, decide on a reboot, converge the power state

DELETE:
1. Stop, wait for the stopped state (bounded), delete

Every operation holds a gate ticket from the provider session while it talks
to the backend.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .analyzer import ChangeImpact, assess_change_impact
from .client import ComputeApiError, VmNotFoundError, VmRef
from .devices import (
    drive_name,
    drop_keys,
    flatten_devices,
    index_disks_by_drive,
    strip_update_disk_keys,
)
from .discovery import ConnectionDiscoveryPoller
from .errors import (
    AmbiguousCreateStrategy,
    DuplicateResource,
    InvalidBootOrder,
    MalformedId,
    StopTimeout,
    UnknownAttributeError,
    UnsupportedShrink,
)
from .identity import VM_KIND, ResourceHandle, decode_resource_id
from .models import (
    DEFAULT_NETWORK_TAG,
    KNOWN_DISK_KEYS,
    KNOWN_NETWORK_KEYS,
    ConfigQemu,
    ConnectionInfo,
    ObservedVm,
    VmSpec,
    disk_size_gb,
    format_size_gb,
)
from .provenance import OperationProvenance, ProvenanceLogger, get_provenance_logger
from .session import AcquisitionTicket, ProviderSession
from .smbios import read_smbios_args

logger = logging.getLogger(__name__)

# Stop confirmation before delete
STOP_POLL_INTERVAL_SECONDS: float = 5
STOP_TIMEOUT_SECONDS: float = 300

# Disk growth retries (transient backend errors only)
DISK_RESIZE_ATTEMPTS = 5

NETWORK_BOOT_PATTERNS: tuple[re.Pattern[str], ...] = (re.compile(r"^order=.*net.*$"),)
CLOUD_INIT_DISK_PATTERN = re.compile(r"^.*-cloudinit.*")

STATUS_STOPPED = "stopped"
STATE_RUNNING = "running"

REBOOT_ADVISORY_SUMMARY = "VM needs to be rebooted and automatic_reboot is disabled"
REBOOT_ADVISORY_DETAIL = (
    "One or more parameters are modified that only take effect after a reboot "
    "(shutdown & start)."
)


class CreateStrategy(str, Enum):
    """How a VM came into existence on create."""

    CLONE = "clone"
    ISO = "iso"
    PXE = "pxe"
    RECYCLE = "recycle"


@dataclass
class Advisory:
    """Non-fatal warning attached to a successful operation."""

    summary: str
    detail: str = ""


@dataclass
class OperationResult:
    """Result of a single lifecycle operation."""

    operation: str
    resource_id: str = ""
    state: ObservedVm | None = None
    connection: ConnectionInfo | None = None
    strategy: CreateStrategy | None = None
    impact: ChangeImpact | None = None
    advisories: list[Advisory] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def absent(self) -> bool:
        """Whether the VM no longer exists (read only)."""
        return self.state is None and not self.resource_id


class VmOrchestrator:
    """Create, read, update and delete QEMU VMs through a provider session."""

    def __init__(
        self,
        session: ProviderSession,
        *,
        poller: ConnectionDiscoveryPoller | None = None,
        provenance: ProvenanceLogger | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            session: Provider session owning the client and the admission gate.
            poller: Connection discovery poller; built from the session if omitted.
            provenance: Provenance logger; the process-wide one if omitted.
        """
        self._session = session
        self._client = session.client
        self._poller = poller or ConnectionDiscoveryPoller(session)
        self._provenance = provenance or get_provenance_logger()

    @property
    def session(self) -> ProviderSession:
        return self._session

    async def _call(self, fn: Any, *args: Any, **kwargs: Any) -> Any:
        return await self._session.call(fn, *args, **kwargs)

    def _start_provenance(self, operation: str, vm_name: str = "") -> OperationProvenance:
        return self._provenance.create_provenance(
            operation, vm_name=vm_name, token_user=self._session.config.user_id
        )

    def _finish_provenance(
        self, provenance: OperationProvenance, result: OperationResult
    ) -> None:
        result.end_time = datetime.now(UTC)
        provenance.resource_id = result.resource_id or provenance.resource_id
        provenance.advisories = [a.summary for a in result.advisories]
        if result.strategy is not None:
            provenance.strategy = result.strategy.value
        if result.impact is not None:
            provenance.reboot_required = result.impact.reboot_required
            provenance.reboot_reasons = list(result.impact.reasons)
        provenance.finish()
        self._provenance.log_provenance(provenance)

    # =========================================================================
    # Create
    # =========================================================================

    async def create(self, spec: VmSpec, handle: ResourceHandle) -> OperationResult:
        """Bring the VM described by ``spec`` into existence.

        Args:
            spec: Desired VM state.
            handle: Caller's durable handle; written as soon as the VM exists.

        Returns:
            Result with the observed state and, if discovered, connection info.

        Raises:
            DuplicateResource: Same-name VM with force_create, or on another node.
            AmbiguousCreateStrategy: None of clone, iso or pxe requested.
            InvalidBootOrder: pxe requested without a network boot entry.
            UnsupportedShrink: A disk would have to shrink after cloning.
            GuestAgentUnavailable, NoAddressFound: Discovery failed.
            ComputeApiError: Any backend failure.
        """
        provenance = self._start_provenance("create", spec.name)
        result = OperationResult(operation="create")
        ticket = self._session.ticket()

        try:
            await ticket.acquire()
            vmr, config, strategy = await self._provision(spec, handle)
            result.strategy = strategy

            handle.set_id(spec.target_node, vmr.vmid)
            result.resource_id = handle.resource_id
            provenance.node = vmr.node
            logger.info(
                "VM provisioned",
                extra={
                    "vm_name": spec.name,
                    "vmid": vmr.vmid,
                    "node": vmr.node,
                    "strategy": strategy.value,
                    "resource_id": handle.resource_id,
                },
            )

            if spec.cloudinit_cdrom_storage:
                await self._call(
                    self._client.set_vm_config,
                    vmr,
                    {"cdrom": f"{spec.cloudinit_cdrom_storage}:cloudinit"},
                )

            await asyncio.sleep(spec.additional_wait)

            if spec.vm_state == STATE_RUNNING:
                logger.info("Starting VM", extra={"vmid": vmr.vmid, "node": vmr.node})
                await self._call(self._client.start_vm, vmr)
                provenance.power_action = "start"
                await asyncio.sleep(spec.additional_wait)
                result.connection = await self._discover(ticket, vmr, spec, config)
            else:
                logger.info(
                    "vm_state is not running, leaving VM stopped",
                    extra={"vmid": vmr.vmid, "vm_state": spec.vm_state},
                )

            ticket.release()
            result.state = await self._read(handle, spec)
            if result.state is not None:
                result.state.connection = result.connection
            return result

        except Exception as e:
            provenance.record_error(e)
            result.resource_id = handle.resource_id
            raise
        finally:
            ticket.release()
            self._finish_provenance(provenance, result)

    async def _provision(
        self, spec: VmSpec, handle: ResourceHandle
    ) -> tuple[VmRef, ConfigQemu, CreateStrategy]:
        config = spec.to_config_qemu()

        logger.debug("Checking for duplicate name", extra={"vm_name": spec.name})
        duplicate = await self._call(self._client.get_vm_ref_by_name, spec.name)

        if duplicate is not None and spec.force_create:
            raise DuplicateResource(
                f"duplicate VM name ({spec.name}) with vmId: {duplicate.vmid}. "
                "Set force_create=false to recycle"
            )
        if duplicate is not None and duplicate.node != spec.target_node:
            raise DuplicateResource(
                f"duplicate VM name ({spec.name}) with vmId: {duplicate.vmid} "
                f"on different target_node={duplicate.node}"
            )

        if duplicate is not None:
            await self._recycle(duplicate, spec, config, handle)
            return duplicate, config, CreateStrategy.RECYCLE

        vmid = spec.vmid or await self._call(self._client.next_vm_id)
        vmr = VmRef(vmid=vmid, node=spec.target_node, pool=spec.pool)

        if spec.clone:
            await self._clone(vmr, spec, config, handle)
            return vmr, config, CreateStrategy.CLONE

        if spec.iso:
            config.iso = spec.iso
            await self._call(self._client.create_vm, vmr, config)
            return vmr, config, CreateStrategy.ISO

        if spec.pxe:
            if not any(p.match(spec.boot) for p in NETWORK_BOOT_PATTERNS):
                raise InvalidBootOrder("no network boot option matched in 'boot' config")
            await self._call(self._client.create_vm, vmr, config)
            return vmr, config, CreateStrategy.PXE

        raise AmbiguousCreateStrategy("either 'clone', 'iso', or 'pxe' must be set")

    async def _clone(
        self, vmr: VmRef, spec: VmSpec, config: ConfigQemu, handle: ResourceHandle
    ) -> None:
        candidates = await self._call(self._client.get_vm_refs_by_name, spec.clone)
        if not candidates:
            raise VmNotFoundError(f"vm '{spec.clone}' not found", status_code=404)

        source = next((c for c in candidates if c.node == vmr.node), candidates[0])
        logger.info(
            "Cloning VM",
            extra={
                "source_vmid": source.vmid,
                "source_node": source.node,
                "vmid": vmr.vmid,
                "node": vmr.node,
                "full_clone": spec.full_clone,
            },
        )
        await self._call(self._client.clone_vm, source, vmr, config)

        try:
            await asyncio.sleep(spec.clone_wait)

            # Keep the cloned volumes attached: adopt the backend's file/volume
            # for every desired drive that does not name its own.
            cloned = await self._call(self._client.get_config, vmr)
            live = index_disks_by_drive(cloned.disks)
            for slot, desired in config.disks.items():
                if desired is None:
                    continue
                disk = live.get(drive_name(desired, slot))
                if disk is None:
                    continue
                if not desired.get("file"):
                    desired["file"] = disk.get("file", "")
                if not desired.get("volume"):
                    desired["volume"] = disk.get("volume", "")

            await self._call(self._client.update_config, vmr, config)
            await self.prepare_disk_size(vmr, config.disks, spec.additional_wait)
        except Exception:
            handle.set_id(vmr.node, vmr.vmid)
            raise

    async def _recycle(
        self, vmr: VmRef, spec: VmSpec, config: ConfigQemu, handle: ResourceHandle
    ) -> None:
        logger.info("Recycling VM", extra={"vmid": vmr.vmid, "node": vmr.node})
        try:
            await self._call(self._client.stop_vm, vmr)
        except ComputeApiError as e:
            logger.warning(
                "Stop before recycle failed, continuing",
                extra={"vmid": vmr.vmid, "error": str(e)},
            )

        try:
            await self._call(self._client.update_config, vmr, config)
            await self.prepare_disk_size(vmr, config.disks, spec.additional_wait)
        except Exception:
            handle.set_id(vmr.node, vmr.vmid)
            raise

    # =========================================================================
    # Disk growth
    # =========================================================================

    async def prepare_disk_size(
        self, vmr: VmRef, disks: dict[int, dict[str, Any] | None], retry_delay: float
    ) -> None:
        """Grow disks to their desired size. Disks never shrink.

        Args:
            vmr: The VM owning the disks.
            disks: Desired disk slot map.
            retry_delay: Seconds between resize attempts.

        Raises:
            UnsupportedShrink: If a desired size is below the current size.
            ComputeApiError: If a resize keeps failing or fails permanently.
        """
        live_config = await self._call(self._client.get_config, vmr)
        live = index_disks_by_drive(live_config.disks)

        for slot, disk in disks.items():
            if disk is None or disk.get("media") == "cdrom":
                continue

            disk_name = drive_name(disk, slot)
            live_disk = live.get(disk_name)
            if live_disk is None:
                logger.debug("Disk not present on VM, skipping", extra={"disk": disk_name})
                continue

            wanted = disk_size_gb(disk.get("size"))
            current = disk_size_gb(live_disk.get("size"))
            log_extra = {
                "vmid": vmr.vmid,
                "disk": disk_name,
                "current_size": format_size_gb(current),
                "wanted_size": format_size_gb(wanted),
            }

            if wanted > current:
                logger.info("Resizing disk", extra=log_extra)
                await self._resize_disk(vmr, disk_name, format_size_gb(wanted), retry_delay)
            elif wanted == current or wanted <= 0:
                logger.debug("Disk size unchanged, skipping resize", extra=log_extra)
            else:
                raise UnsupportedShrink(
                    "proxmox does not support decreasing disk size. "
                    f"Disk '{disk_name}' wanted to go from "
                    f"'{format_size_gb(current)}' to '{format_size_gb(wanted)}'"
                )

    async def _resize_disk(self, vmr: VmRef, disk_name: str, size: str, delay: float) -> None:
        last_error: ComputeApiError | None = None

        for attempt in range(1, DISK_RESIZE_ATTEMPTS + 1):
            try:
                await self._call(self._client.resize_disk, vmr, disk_name, size)
                return
            except ComputeApiError as e:
                if not e.transient:
                    raise
                last_error = e
                logger.warning(
                    "Disk resize failed, retrying",
                    extra={
                        "vmid": vmr.vmid,
                        "disk": disk_name,
                        "attempt": attempt,
                        "max_attempts": DISK_RESIZE_ATTEMPTS,
                        "error": str(e),
                    },
                )
                if attempt < DISK_RESIZE_ATTEMPTS:
                    await asyncio.sleep(delay)

        # SAFETY: the loop runs at least once and only falls through after a
        # transient failure, so last_error is set here
        assert last_error is not None, "Retry loop completed without setting last_error"
        raise last_error

    # =========================================================================
    # Update
    # =========================================================================

    async def update(
        self,
        handle: ResourceHandle,
        desired: VmSpec,
        previous: VmSpec | None = None,
    ) -> OperationResult:
        """Converge an existing VM onto ``desired``.

        Args:
            handle: Durable handle of the VM.
            desired: New desired state.
            previous: Previously applied desired state; drives pool reassignment
                and the reboot decision.

        Returns:
            Result with observed state, change impact and advisories.

        Raises:
            MalformedId: If the handle does not hold a valid identifier.
            UnsupportedShrink: If a disk would have to shrink.
            ComputeApiError: Any backend failure, including a missing VM.
        """
        provenance = self._start_provenance("update", desired.name)
        result = OperationResult(operation="update", resource_id=handle.resource_id)
        ticket = self._session.ticket()

        try:
            await ticket.acquire()
            location, _, vmid = decode_resource_id(handle.resource_id)
            vmr = VmRef(vmid=vmid, node=location)
            logger.info("Starting update of VM", extra={"vmid": vmid, "node": location})

            await self._call(self._client.get_vm_info, vmr)

            if vmr.node != desired.target_node:
                logger.info(
                    "Migrating VM",
                    extra={"vmid": vmid, "from_node": vmr.node, "to_node": desired.target_node},
                )
                await self._call(self._client.migrate_vm, vmr, desired.target_node, True)
                vmr.node = desired.target_node
                handle.set_id(vmr.node, vmid)
                result.resource_id = handle.resource_id

            config = desired.to_config_qemu()
            strip_update_disk_keys(config.disks)

            await self._call(self._client.update_config, vmr, config)
            await asyncio.sleep(desired.additional_wait)

            await self.prepare_disk_size(vmr, config.disks, desired.additional_wait)
            await asyncio.sleep(desired.additional_wait)

            if previous is not None and previous.pool != desired.pool:
                pool_ref = VmRef(vmid=vmid, node=vmr.node, pool=previous.pool)
                await self._call(self._client.update_vm_pool, pool_ref, desired.pool)

            impact = assess_change_impact(previous, desired) if previous else ChangeImpact()
            result.impact = impact
            provenance.power_action = await self._converge_power(vmr, desired, impact, result)

            if desired.vm_state == STATE_RUNNING:
                result.connection = await self._discover(ticket, vmr, desired, config)

            ticket.release()
            result.state = await self._read(handle, desired)
            if result.state is not None:
                result.state.connection = result.connection
            return result

        except Exception as e:
            provenance.record_error(e)
            raise
        finally:
            ticket.release()
            self._finish_provenance(provenance, result)

    async def _converge_power(
        self, vmr: VmRef, desired: VmSpec, impact: ChangeImpact, result: OperationResult
    ) -> str:
        action = ""
        state = await self._call(self._client.get_vm_state, vmr)
        running = state.get("status") != STATUS_STOPPED

        if running and desired.vm_state == STATUS_STOPPED:
            logger.info("Shutting down VM to match vm_state", extra={"vmid": vmr.vmid})
            action = await self._shutdown(vmr)
        elif running and impact.reboot_required:
            if desired.automatic_reboot:
                logger.info("Shutting down VM for required reboot", extra={"vmid": vmr.vmid})
                action = await self._shutdown(vmr)
            else:
                logger.warning(
                    REBOOT_ADVISORY_SUMMARY,
                    extra={"vmid": vmr.vmid, "reasons": impact.reasons},
                )
                result.advisories.append(
                    Advisory(summary=REBOOT_ADVISORY_SUMMARY, detail=REBOOT_ADVISORY_DETAIL)
                )

        state = await self._call(self._client.get_vm_state, vmr)
        if state.get("status") == STATUS_STOPPED and desired.vm_state == STATE_RUNNING:
            logger.info("Starting VM", extra={"vmid": vmr.vmid})
            await self._call(self._client.start_vm, vmr)
            action = f"{action}+start" if action else "start"
        return action

    async def _shutdown(self, vmr: VmRef) -> str:
        try:
            await self._call(self._client.shutdown_vm, vmr)
            return "shutdown"
        except ComputeApiError as e:
            logger.warning(
                "Graceful shutdown failed, stopping VM forcefully",
                extra={"vmid": vmr.vmid, "error": str(e)},
            )
            await self._call(self._client.stop_vm, vmr)
            return "stop"

    async def _discover(
        self, ticket: AcquisitionTicket, vmr: VmRef, spec: VmSpec, config: ConfigQemu
    ) -> ConnectionInfo | None:
        if self._session.config.discovery_outside_gate:
            ticket.release()
        return await self._poller.discover(vmr, spec, config)

    # =========================================================================
    # Read
    # =========================================================================

    async def read(self, handle: ResourceHandle, desired: VmSpec | None = None) -> OperationResult:
        """Read the observed state of the VM behind ``handle``.

        A VM that no longer exists is not an error: the handle is cleared and
        the result reports the resource as absent.

        Raises:
            MalformedId: If the handle does not hold a valid identifier
                (the handle is cleared first).
            UnknownAttributeError: If the backend reports unmodelled attributes.
        """
        provenance = self._start_provenance("read", desired.name if desired else "")
        provenance.resource_id = handle.resource_id
        result = OperationResult(operation="read")
        try:
            result.state = await self._read(handle, desired)
            result.resource_id = handle.resource_id
            provenance.absent = result.state is None
            return result
        except Exception as e:
            provenance.record_error(e)
            raise
        finally:
            self._finish_provenance(provenance, result)

    async def _read(self, handle: ResourceHandle, desired: VmSpec | None) -> ObservedVm | None:
        async with self._session.ticket():
            try:
                location, _, vmid = decode_resource_id(handle.resource_id)
            except MalformedId:
                handle.clear()
                raise

            vmr = VmRef(vmid=vmid, node=location)
            try:
                await self._call(self._client.get_vm_info, vmr)
            except VmNotFoundError as e:
                logger.info(
                    "VM not found, marking resource absent",
                    extra={"vmid": vmid, "error": str(e)},
                )
                handle.clear()
                return None

            config = await self._call(self._client.get_config, vmr)
            state = await self._call(self._client.get_vm_state, vmr)

            observed = self._observe(vmr, config, state.get("status", ""), desired)
            observed.pool = await self._find_pool(vmid, vmr.pool)

        handle.set_id(vmr.node, vmid)
        observed.resource_id = handle.resource_id
        logger.debug(
            "Finished VM read",
            extra={"vmid": vmid, "node": vmr.node, "vm_state": observed.vm_state},
        )
        return observed

    def _observe(
        self, vmr: VmRef, config: ConfigQemu, vm_state: str, desired: VmSpec | None
    ) -> ObservedVm:
        ignore_unknown = self._session.config.dangerously_ignore_unknown_attributes

        for disk in config.disks.values():
            if disk is None:
                continue
            for key in disk:
                if key in KNOWN_DISK_KEYS or key == "id":
                    continue
                if not ignore_unknown:
                    raise UnknownAttributeError(
                        f"API returned new disk parameter '{key}' we cannot process"
                    )

        for slot, disk in list(config.disks.items()):
            if disk is None:
                continue
            if CLOUD_INIT_DISK_PATTERN.match(str(disk.get("file", ""))):
                config.disks[slot] = None
                continue
            if not disk.get("cache"):
                disk["cache"] = "none"
            if disk.get("backup") in ("", None):
                disk["backup"] = True

        for network in config.networks.values():
            if network is None:
                continue
            if network.get("tag") in ("", None):
                network["tag"] = DEFAULT_NETWORK_TAG
            for key in network:
                if key not in KNOWN_NETWORK_KEYS and key != "id":
                    raise UnknownAttributeError(
                        f"API returned new network parameter '{key}' we cannot process"
                    )

        # Backend always masks the password; keep the declared one.
        config.cipassword = desired.cipassword if desired is not None else ""

        return ObservedVm(
            resource_id="",
            node=vmr.node,
            vmid=vmr.vmid,
            config=config,
            vm_state=vm_state,
            pool=vmr.pool,
            disks=drop_keys(["id"], flatten_devices(config.disks)),
            networks=drop_keys(["id"], flatten_devices(config.networks)),
            hostpci=flatten_devices(config.pci_devices),
            usbs=flatten_devices(config.usbs),
            unused_disks=flatten_devices(config.unused_disks),
            serials=flatten_devices(config.serials),
            smbios=read_smbios_args(config.smbios1),
            reboot_required=False,
        )

    async def _find_pool(self, vmid: int, fallback: str) -> str:
        try:
            pools = await self._call(self._client.get_pool_list)
        except ComputeApiError as e:
            logger.warning("Could not list pools", extra={"vmid": vmid, "error": str(e)})
            return fallback

        found = fallback
        for pool in pools:
            members = await self._call(self._client.get_pool_members, pool)
            for member in members:
                if member.get("type") == "storage":
                    continue
                if int(member.get("vmid", -1)) == vmid:
                    found = pool
        return found

    # =========================================================================
    # Delete
    # =========================================================================

    async def delete(self, handle: ResourceHandle) -> OperationResult:
        """Stop the VM if needed, wait for it to stop, then delete it.

        Raises:
            MalformedId: If the handle does not hold a valid identifier.
            StopTimeout: If the VM does not stop within STOP_TIMEOUT_SECONDS.
            ComputeApiError: Any backend failure.
        """
        provenance = self._start_provenance("delete")
        provenance.resource_id = handle.resource_id
        result = OperationResult(operation="delete", resource_id=handle.resource_id)

        try:
            async with self._session.ticket():
                location, _, vmid = decode_resource_id(handle.resource_id)
                vmr = VmRef(vmid=vmid, node=location)

                state = await self._call(self._client.get_vm_state, vmr)
                if state.get("status") != STATUS_STOPPED:
                    logger.info("Stopping VM before delete", extra={"vmid": vmid})
                    await self._call(self._client.stop_vm, vmr)
                    provenance.power_action = "stop"
                    await self._wait_for_stop(vmr)

                await self._call(self._client.delete_vm, vmr)

            logger.info("VM deleted", extra={"vmid": vmid, "node": location})
            handle.clear()
            return result

        except Exception as e:
            provenance.record_error(e)
            raise
        finally:
            self._finish_provenance(provenance, result)

    async def _wait_for_stop(self, vmr: VmRef) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + STOP_TIMEOUT_SECONDS

        while True:
            state = await self._call(self._client.get_vm_state, vmr)
            if state.get("status") == STATUS_STOPPED:
                return
            if loop.time() >= deadline:
                break
            await asyncio.sleep(STOP_POLL_INTERVAL_SECONDS)

        raise StopTimeout(
            f"VM {vmr.vmid} did not reach the stopped state within {STOP_TIMEOUT_SECONDS}s"
        )


__all__ = [
    "DISK_RESIZE_ATTEMPTS",
    "STOP_POLL_INTERVAL_SECONDS",
    "STOP_TIMEOUT_SECONDS",
    "VM_KIND",
    "Advisory",
    "CreateStrategy",
    "OperationResult",
    "VmOrchestrator",
]
