"""Mock ComputeClient backed by :class:`MockComputeState`.

Records every call, simulates PVE behaviour closely enough for the
orchestrator (volume naming, cloud-init drives, agent start-up delay) and
supports per-method failure injection.
"""

from __future__ import annotations

import copy
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from vm_operator.client import (
    AgentNetworkInterface,
    AgentNotRunningError,
    ComputeApiError,
    VmNotFoundError,
    VmRef,
)
from vm_operator.models import ConfigQemu

from .state import MockComputeState, MockVm


class MockComputeClient:
    """In-memory ComputeClient.

    Usage:
        state = MockComputeState()
        client = MockComputeClient(state)
        client.inject_failure("resize_disk", ComputeApiError("busy", transient=True))
    """

    def __init__(self, state: MockComputeState | None = None, *, latency: float = 0.0) -> None:
        """Initialize the client.

        Args:
            state: Shared cluster state; a fresh one if omitted.
            latency: Seconds every call blocks, for concurrency tests.
        """
        self.state = state or MockComputeState()
        self.latency = latency
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.pushed_configs: list[ConfigQemu] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._failures: dict[str, list[Exception]] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def inject_failure(self, method: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls of ``method`` raise ``error``."""
        with self._lock:
            self._failures.setdefault(method, []).extend([error] * times)

    def call_count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    @contextmanager
    def _op(self, method: str, *args: Any) -> Iterator[None]:
        with self._lock:
            self.calls.append((method, args))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            pending = self._failures.get(method)
            error = pending.pop(0) if pending else None
        try:
            if self.latency:
                time.sleep(self.latency)
            if error is not None:
                raise error
            with self.state.lock:
                yield
        finally:
            with self._lock:
                self.in_flight -= 1

    def _vm(self, vmid: int) -> MockVm:
        vm = self.state.get_vm(vmid)
        if vm is None:
            raise VmNotFoundError(f"Configuration file 'qemu-server/{vmid}.conf' does not exist")
        return vm

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get_vm_refs_by_name(self, name: str) -> list[VmRef]:
        with self._op("get_vm_refs_by_name", name):
            return [
                VmRef(vmid=vm.vmid, node=vm.node, pool=vm.pool)
                for vm in sorted(self.state.find_by_name(name), key=lambda v: v.vmid)
            ]

    def get_vm_ref_by_name(self, name: str) -> VmRef | None:
        with self._op("get_vm_ref_by_name", name):
            matches = sorted(self.state.find_by_name(name), key=lambda v: v.vmid)
            if not matches:
                return None
            vm = matches[0]
            return VmRef(vmid=vm.vmid, node=vm.node, pool=vm.pool)

    def get_vm_info(self, vmr: VmRef) -> dict[str, Any]:
        with self._op("get_vm_info", vmr.vmid):
            vm = self._vm(vmr.vmid)
            vmr.node = vm.node
            vmr.pool = vm.pool
            return {"name": vm.name}

    def next_vm_id(self) -> int:
        with self._op("next_vm_id"):
            return self.state.allocate_vmid()

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @staticmethod
    def _attach_volumes(vmid: int, config: ConfigQemu) -> None:
        for slot, disk in config.disks.items():
            if disk is None or disk.get("media") == "cdrom" or disk.get("file"):
                continue
            disk["file"] = f"vm-{vmid}-disk-{slot}"
            disk["volume"] = f"{disk.get('storage', '')}:{disk['file']}"

    def _assign_mac(self, vmid: int, config: ConfigQemu) -> None:
        for slot, network in config.networks.items():
            if network is not None and not network.get("macaddr"):
                network["macaddr"] = f"BC:24:11:00:{vmid % 256:02X}:{slot:02X}"

    def create_vm(self, vmr: VmRef, config: ConfigQemu) -> None:
        with self._op("create_vm", vmr.vmid, vmr.node):
            if vmr.vmid in self.state.vms:
                raise ComputeApiError(f"VM {vmr.vmid} already exists", status_code=500)
            vm_config = copy.deepcopy(config)
            self._attach_volumes(vmr.vmid, vm_config)
            self._assign_mac(vmr.vmid, vm_config)
            self.state.add_vm(
                config.name, vmr.node, vmid=vmr.vmid, config=vm_config, pool=config.pool
            )

    def clone_vm(self, source: VmRef, target: VmRef, config: ConfigQemu) -> None:
        with self._op("clone_vm", source.vmid, target.vmid, target.node):
            template = self._vm(source.vmid)
            vm_config = copy.deepcopy(template.config)
            for slot, disk in vm_config.disks.items():
                if disk is not None and disk.get("file") and "cloudinit" not in disk["file"]:
                    disk["file"] = f"vm-{target.vmid}-disk-{slot}"
                    disk["volume"] = f"{disk.get('storage', '')}:{disk['file']}"
            self.state.add_vm(
                config.name, target.node, vmid=target.vmid, config=vm_config, pool=config.pool
            )

    def update_config(self, vmr: VmRef, config: ConfigQemu) -> None:
        with self._op("update_config", vmr.vmid):
            self.pushed_configs.append(copy.deepcopy(config))
            vm = self._vm(vmr.vmid)
            live = vm.config
            new_config = copy.deepcopy(config)
            new_config.pool = vm.pool

            for slot, disk in new_config.disks.items():
                current = live.disks.get(slot)
                if disk is None or current is None:
                    continue
                # Existing volumes are re-referenced; size changes need resize_disk
                for key in ("file", "volume", "size", "storage"):
                    if current.get(key):
                        disk[key] = current[key]
            for slot, disk in live.disks.items():
                if disk is not None and "cloudinit" in str(disk.get("file", "")):
                    if new_config.disks.get(slot) is None:
                        new_config.disks[slot] = disk

            self._attach_volumes(vmr.vmid, new_config)
            for slot, network in new_config.networks.items():
                current = live.networks.get(slot)
                if network is not None and current is not None and not network.get("macaddr"):
                    network["macaddr"] = current.get("macaddr", "")
            self._assign_mac(vmr.vmid, new_config)
            vm.config = new_config

    def set_vm_config(self, vmr: VmRef, params: dict[str, Any]) -> None:
        with self._op("set_vm_config", vmr.vmid, tuple(sorted(params))):
            vm = self._vm(vmr.vmid)
            cdrom = params.get("cdrom", "")
            if cdrom.endswith(":cloudinit"):
                storage = cdrom.split(":")[0]
                slot = 2
                while vm.config.disks.get(slot) is not None:
                    slot += 1
                vm.config.disks[slot] = {
                    "type": "ide",
                    "slot": 2,
                    "storage": storage,
                    "file": f"vm-{vmr.vmid}-cloudinit",
                    "volume": f"{storage}:vm-{vmr.vmid}-cloudinit",
                    "media": "cdrom",
                }

    def get_config(self, vmr: VmRef) -> ConfigQemu:
        with self._op("get_config", vmr.vmid):
            vm = self._vm(vmr.vmid)
            config = copy.deepcopy(vm.config)
            config.pool = vm.pool
            return config

    def get_vm_config(self, vmr: VmRef) -> dict[str, Any]:
        with self._op("get_vm_config", vmr.vmid):
            vm = self._vm(vmr.vmid)
            raw: dict[str, Any] = {"name": vm.name, "agent": str(vm.config.agent)}
            for slot, network in vm.config.networks.items():
                if network is not None:
                    raw[f"net{slot}"] = (
                        f"{network.get('model', 'virtio')}={network.get('macaddr', '')},"
                        f"bridge={network.get('bridge', 'vmbr0')}"
                    )
            return raw

    def resize_disk(self, vmr: VmRef, disk: str, size: str) -> None:
        with self._op("resize_disk", vmr.vmid, disk, size):
            vm = self._vm(vmr.vmid)
            for slot, record in vm.config.disks.items():
                if record is None:
                    continue
                index = record.get("slot")
                if f"{record.get('type', '')}{slot if index is None else index}" == disk:
                    record["size"] = size
                    return
            raise ComputeApiError(f"disk '{disk}' does not exist", status_code=500)

    # -------------------------------------------------------------------------
    # Power
    # -------------------------------------------------------------------------

    def get_vm_state(self, vmr: VmRef) -> dict[str, Any]:
        with self._op("get_vm_state", vmr.vmid):
            vm = self._vm(vmr.vmid)
            return {"status": vm.status, "agent": vm.config.agent}

    def start_vm(self, vmr: VmRef) -> None:
        with self._op("start_vm", vmr.vmid):
            vm = self._vm(vmr.vmid)
            vm.status = "running"
            addresses = self.state.boot_addresses.get(vm.name)
            if addresses is not None and not vm.interfaces:
                vm.interfaces = [
                    AgentNetworkInterface(
                        name="eth0", mac_address=vm.primary_mac(), ip_addresses=list(addresses)
                    )
                ]

    def stop_vm(self, vmr: VmRef) -> None:
        with self._op("stop_vm", vmr.vmid):
            vm = self._vm(vmr.vmid)
            if not vm.ignore_stop:
                vm.status = "stopped"

    def shutdown_vm(self, vmr: VmRef) -> None:
        with self._op("shutdown_vm", vmr.vmid):
            vm = self._vm(vmr.vmid)
            if not vm.ignore_stop:
                vm.status = "stopped"

    def delete_vm(self, vmr: VmRef) -> None:
        with self._op("delete_vm", vmr.vmid):
            self._vm(vmr.vmid)
            self.state.remove_vm(vmr.vmid)

    def migrate_vm(self, vmr: VmRef, target_node: str, online: bool = True) -> None:
        with self._op("migrate_vm", vmr.vmid, target_node):
            self._vm(vmr.vmid).node = target_node

    # -------------------------------------------------------------------------
    # Pools
    # -------------------------------------------------------------------------

    def get_pool_list(self) -> list[str]:
        with self._op("get_pool_list"):
            return sorted(set(self.state.pools) | set(self.state.pool_storage))

    def get_pool_members(self, pool: str) -> list[dict[str, Any]]:
        with self._op("get_pool_members", pool):
            members: list[dict[str, Any]] = [
                {"type": "storage", "storage": name, "id": f"storage/{name}"}
                for name in self.state.pool_storage.get(pool, [])
            ]
            members.extend(
                {"type": "qemu", "vmid": vmid, "id": f"qemu/{vmid}"}
                for vmid in sorted(self.state.pools.get(pool, set()))
            )
            return members

    def update_vm_pool(self, vmr: VmRef, pool: str) -> None:
        with self._op("update_vm_pool", vmr.vmid, vmr.pool, pool):
            self._vm(vmr.vmid)
            self.state.set_pool(vmr.vmid, pool)
            vmr.pool = pool

    # -------------------------------------------------------------------------
    # Guest agent and access
    # -------------------------------------------------------------------------

    def get_agent_network_interfaces(self, vmr: VmRef) -> list[AgentNetworkInterface]:
        with self._op("get_agent_network_interfaces", vmr.vmid):
            vm = self._vm(vmr.vmid)
            if vm.status != "running" or vm.agent_pending_polls > 0:
                vm.agent_pending_polls = max(0, vm.agent_pending_polls - 1)
                raise AgentNotRunningError("QEMU guest agent is not running", status_code=500)
            return copy.deepcopy(vm.interfaces)

    def get_permissions(self) -> list[str]:
        with self._op("get_permissions"):
            return sorted(self.state.permissions)
