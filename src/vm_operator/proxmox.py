"""Proxmox VE implementation of :class:`ComputeClient` on top of proxmoxer.

Maps the orchestrator's vocabulary onto the PVE REST API:
- VM configuration is flattened to PVE's ``key=value`` option strings
  (``scsi0: local-lvm:vm-100-disk-0,size=10G,ssd=1``) and parsed back
- Long-running calls return a task UPID which is polled until it stops
- Backend failures become :class:`ComputeApiError` with a transient flag
"""

from __future__ import annotations

import logging
import re
import time
import urllib.parse
from collections.abc import Callable
from typing import Any, TypeVar

import requests
from proxmoxer import ProxmoxAPI
from proxmoxer.core import ResourceException

from .client import (
    AgentNetworkInterface,
    AgentNotRunningError,
    ComputeApiError,
    VmNotFoundError,
    VmRef,
)
from .config import ProviderConfig
from .models import MAX_IPCONFIG_INDEX, ConfigQemu, disk_size_gb

logger = logging.getLogger(__name__)

T = TypeVar("T")

TASK_POLL_INTERVAL_SECONDS = 1.0

DISK_KEY_PATTERN = re.compile(r"^(ide|sata|scsi|virtio)([0-9]+)$")
NETWORK_KEY_PATTERN = re.compile(r"^net([0-9]+)$")
SERIAL_KEY_PATTERN = re.compile(r"^serial([0-9]+)$")
HOSTPCI_KEY_PATTERN = re.compile(r"^hostpci([0-9]+)$")
USB_KEY_PATTERN = re.compile(r"^usb([0-9]+)$")
UNUSED_KEY_PATTERN = re.compile(r"^unused([0-9]+)$")
IPCONFIG_KEY_PATTERN = re.compile(r"^ipconfig([0-9]+)$")
DEVICE_KEY_PATTERN = re.compile(r"^(ide|sata|scsi|virtio|net|serial|hostpci|usb|ipconfig)[0-9]+$")

AGENT_NOT_RUNNING_MARKERS = ("guest agent is not running", "qemu guest agent is not running")
NOT_FOUND_MARKERS = ("does not exist", "not found")

DISK_BOOL_KEYS = frozenset({"backup", "iothread", "replicate", "ssd"})
DISK_INT_KEYS = frozenset({"iops", "iops_rd", "iops_wr"})
DISK_FLOAT_KEYS = frozenset({"mbps", "mbps_rd", "mbps_wr"})
DISK_OPTION_KEYS = (
    "format",
    "cache",
    "backup",
    "iothread",
    "replicate",
    "ssd",
    "discard",
    "aio",
    "mbps",
    "mbps_rd",
    "mbps_wr",
    "iops",
    "iops_rd",
    "iops_wr",
    "media",
)
NETWORK_BOOL_KEYS = frozenset({"firewall", "link_down"})


# =============================================================================
# Option String Codec
# =============================================================================


def _bool(value: Any) -> bool:
    return str(value).lower() in ("1", "true", "on", "yes")


def _flag(value: bool) -> str:
    return "1" if value else "0"


def _split_options(raw: str) -> tuple[str, dict[str, str]]:
    """Split ``head,k=v,k=v``. A head containing ``=`` is returned as an option."""
    head = ""
    options: dict[str, str] = {}
    for index, part in enumerate(raw.split(",")):
        if not part:
            continue
        if "=" not in part:
            if index == 0:
                head = part
            continue
        key, value = part.split("=", 1)
        options[key] = value
    return head, options


def format_disk(disk: dict[str, Any], existing_volume: str = "") -> str:
    """Render a disk slot as a PVE drive string.

    Existing volumes are referenced as-is. Otherwise ``storage:size`` asks PVE
    to allocate a new volume of ``size`` gigabytes.
    """
    if existing_volume:
        head = existing_volume
    elif disk.get("volume"):
        head = str(disk["volume"])
    elif disk.get("file"):
        file = str(disk["file"])
        head = file if ":" in file or not disk.get("storage") else f"{disk['storage']}:{file}"
    else:
        head = f"{disk.get('storage', '')}:{int(disk_size_gb(disk.get('size')))}"

    parts = [head]
    for key in DISK_OPTION_KEYS:
        value = disk.get(key)
        if key in DISK_BOOL_KEYS:
            if value is not None:
                parts.append(f"{key}={_flag(bool(value))}")
            continue
        if value in (None, "", 0):
            continue
        if key == "format" and head.startswith(("local-lvm:", "local-zfs:")):
            continue
        parts.append(f"{key}={value}")
    return ",".join(parts)


def parse_disk(disk_type: str, slot: int, raw: str) -> dict[str, Any]:
    """Parse a PVE drive string into a disk record."""
    head, options = _split_options(raw)
    if not head and "file" in options:
        head = options.pop("file")
    record: dict[str, Any] = {"type": disk_type, "slot": slot}
    if head:
        record["volume"] = head
        storage, _, file = head.partition(":")
        record["storage"] = storage if file else ""
        record["file"] = file or head
    for key, value in options.items():
        if key in DISK_BOOL_KEYS:
            record[key] = _bool(value)
        elif key in DISK_INT_KEYS:
            record[key] = int(value)
        elif key in DISK_FLOAT_KEYS:
            record[key] = float(value)
        else:
            record[key] = value
    return record


def format_network(network: dict[str, Any]) -> str:
    """Render a network slot as ``model[=mac],bridge=..,...``."""
    model = network["model"]
    head = f"{model}={network['macaddr']}" if network.get("macaddr") else model
    parts = [head, f"bridge={network.get('bridge', 'vmbr0')}"]
    tag = network.get("tag", -1)
    if tag is not None and int(tag) >= 0:
        parts.append(f"tag={tag}")
    for key in ("firewall", "link_down"):
        if network.get(key):
            parts.append(f"{key}=1")
    if network.get("rate"):
        parts.append(f"rate={network['rate']}")
    if network.get("queues"):
        parts.append(f"queues={network['queues']}")
    return ",".join(parts)


def parse_network(raw: str) -> dict[str, Any]:
    """Parse a PVE ``netN`` value into a network record."""
    record: dict[str, Any] = {}
    first, _, _ = raw.partition(",")
    model, _, mac = first.partition("=")
    record["model"] = model
    record["macaddr"] = mac
    _, options = _split_options(raw[len(first) :])
    for key, value in options.items():
        if key in NETWORK_BOOL_KEYS:
            record[key] = _bool(value)
        elif key in ("tag", "queues"):
            record[key] = int(value)
        elif key == "rate":
            record[key] = float(value)
        else:
            record[key] = value
    return record


def format_hostpci(device: dict[str, Any]) -> str:
    parts = [str(device["host"])]
    if device.get("pcie"):
        parts.append("pcie=1")
    if device.get("rombar") is False:
        parts.append("rombar=0")
    if device.get("xvga"):
        parts.append("x-vga=1")
    if device.get("mdev"):
        parts.append(f"mdev={device['mdev']}")
    return ",".join(parts)


def parse_hostpci(raw: str) -> dict[str, Any]:
    head, options = _split_options(raw)
    record: dict[str, Any] = {"host": options.pop("host", head)}
    for key, value in options.items():
        if key == "x-vga":
            record["xvga"] = _bool(value)
        elif key in ("pcie", "rombar"):
            record[key] = _bool(value)
        else:
            record[key] = value
    return record


def format_usb(device: dict[str, Any]) -> str:
    parts = [f"host={device['host']}"]
    if device.get("usb3"):
        parts.append("usb3=1")
    return ",".join(parts)


def parse_usb(raw: str) -> dict[str, Any]:
    head, options = _split_options(raw)
    record: dict[str, Any] = {"host": options.pop("host", head)}
    for key, value in options.items():
        record[key] = _bool(value) if key == "usb3" else value
    return record


def format_vga(vga: dict[str, Any]) -> str:
    parts = [str(vga.get("type", "std"))]
    if vga.get("memory"):
        parts.append(f"memory={vga['memory']}")
    return ",".join(parts)


def parse_vga(raw: str) -> dict[str, Any]:
    head, options = _split_options(raw)
    record: dict[str, Any] = {"type": options.pop("type", head)}
    if "memory" in options:
        record["memory"] = int(options["memory"])
    return record


def _disk_key(slot: int, disk: dict[str, Any]) -> str:
    index = disk.get("slot")
    return f"{disk.get('type', '')}{slot if index is None else index}"


def config_to_params(
    config: ConfigQemu, existing_volumes: dict[str, str] | None = None
) -> dict[str, Any]:
    """Flatten a :class:`ConfigQemu` into PVE API parameters.

    Args:
        config: Configuration to push.
        existing_volumes: Drive key to volume id for disks already attached;
            those are re-referenced instead of reallocated.
    """
    existing_volumes = existing_volumes or {}
    params: dict[str, Any] = {
        "name": config.name,
        "bios": config.bios,
        "onboot": _flag(config.onboot),
        "tablet": _flag(config.tablet),
        "agent": str(config.agent),
        "memory": config.memory,
        "balloon": config.balloon,
        "cores": config.cores,
        "sockets": config.sockets,
        "cpu": config.cpu,
        "numa": _flag(config.numa),
        "kvm": _flag(config.kvm),
        "ostype": config.qemu_os,
    }
    optional = {
        "description": config.description,
        "startup": config.startup,
        "boot": config.boot,
        "bootdisk": config.bootdisk,
        "machine": config.machine,
        "hotplug": config.hotplug,
        "scsihw": config.scsihw,
        "tags": config.tags,
        "args": config.args,
        "smbios1": config.smbios1,
        "ciuser": config.ciuser,
        "cipassword": config.cipassword,
        "cicustom": config.cicustom,
        "searchdomain": config.searchdomain,
        "nameserver": config.nameserver,
    }
    params.update({key: value for key, value in optional.items() if value})
    if config.vcpus:
        params["vcpus"] = config.vcpus
    if config.sshkeys:
        # PVE expects the key list percent-encoded
        params["sshkeys"] = urllib.parse.quote(config.sshkeys, safe="")
    if config.vga:
        params["vga"] = format_vga(config.vga)
    if config.iso:
        params["ide2"] = f"{config.iso},media=cdrom"

    for index, value in config.ipconfig.items():
        if value:
            params[f"ipconfig{index}"] = value
    for slot, disk in config.disks.items():
        if disk is not None:
            key = _disk_key(slot, disk)
            params[key] = format_disk(disk, existing_volumes.get(key, ""))
    for slot, network in config.networks.items():
        if network is not None:
            params[f"net{slot}"] = format_network(network)
    for slot, serial in config.serials.items():
        if serial is not None:
            params[f"serial{slot}"] = serial.get("type", "socket")
    for slot, device in config.pci_devices.items():
        if device is not None:
            params[f"hostpci{slot}"] = format_hostpci(device)
    for slot, device in config.usbs.items():
        if device is not None:
            params[f"usb{slot}"] = format_usb(device)
    return params


def _int(raw: dict[str, Any], key: str, default: int) -> int:
    value = raw.get(key)
    if value in (None, ""):
        return default
    return int(value)


def params_to_config(raw: dict[str, Any]) -> ConfigQemu:
    """Parse a PVE VM config response into a :class:`ConfigQemu`."""
    agent_head, agent_options = _split_options(str(raw.get("agent", "0")))
    agent = _bool(agent_options.get("enabled", agent_head or "0"))

    config = ConfigQemu(
        name=str(raw.get("name", "")),
        description=str(raw.get("description", "")),
        bios=str(raw.get("bios", "seabios")),
        onboot=_bool(raw.get("onboot", 0)),
        startup=str(raw.get("startup", "")),
        tablet=_bool(raw.get("tablet", 1)),
        boot=str(raw.get("boot", "")),
        bootdisk=str(raw.get("bootdisk", "")),
        agent=1 if agent else 0,
        memory=_int(raw, "memory", 512),
        machine=str(raw.get("machine", "")),
        balloon=_int(raw, "balloon", 0),
        cores=_int(raw, "cores", 1),
        sockets=_int(raw, "sockets", 1),
        vcpus=_int(raw, "vcpus", 0),
        cpu=str(raw.get("cpu", "host")),
        numa=_bool(raw.get("numa", 0)),
        kvm=_bool(raw.get("kvm", 1)),
        hotplug=str(raw.get("hotplug", "")),
        scsihw=str(raw.get("scsihw", "")),
        qemu_os=str(raw.get("ostype", "other")),
        tags=str(raw.get("tags", "")),
        args=str(raw.get("args", "")),
        smbios1=str(raw.get("smbios1", "")),
        vga=parse_vga(str(raw["vga"])) if raw.get("vga") else {},
        ciuser=str(raw.get("ciuser", "")),
        cipassword=str(raw.get("cipassword", "")),
        cicustom=str(raw.get("cicustom", "")),
        searchdomain=str(raw.get("searchdomain", "")),
        nameserver=str(raw.get("nameserver", "")),
        sshkeys=urllib.parse.unquote(str(raw.get("sshkeys", ""))),
    )

    # Drives on different buses may share an index; the later key in sorted
    # order moves to the next free map slot and keeps its own "slot".
    for key, value in sorted(raw.items()):
        if match := DISK_KEY_PATTERN.match(key):
            slot = int(match.group(2))
            while slot in config.disks:
                slot += 1
            config.disks[slot] = parse_disk(match.group(1), int(match.group(2)), str(value))
        elif match := NETWORK_KEY_PATTERN.match(key):
            config.networks[int(match.group(1))] = parse_network(str(value))
        elif match := SERIAL_KEY_PATTERN.match(key):
            slot = int(match.group(1))
            config.serials[slot] = {"id": slot, "type": str(value)}
        elif match := HOSTPCI_KEY_PATTERN.match(key):
            config.pci_devices[int(match.group(1))] = parse_hostpci(str(value))
        elif match := USB_KEY_PATTERN.match(key):
            config.usbs[int(match.group(1))] = parse_usb(str(value))
        elif match := UNUSED_KEY_PATTERN.match(key):
            config.unused_disks[int(match.group(1))] = {
                "slot": int(match.group(1)),
                "file": str(value),
            }
        elif match := IPCONFIG_KEY_PATTERN.match(key):
            index = int(match.group(1))
            if index <= MAX_IPCONFIG_INDEX:
                config.ipconfig[index] = str(value)
    return config


# =============================================================================
# Client
# =============================================================================


class ProxmoxComputeClient:
    """ComputeClient backed by the Proxmox VE API."""

    def __init__(self, config: ProviderConfig, api: ProxmoxAPI | None = None) -> None:
        """Initialize the client.

        Args:
            config: Provider configuration (endpoint, token, TLS, timeouts).
            api: Pre-built proxmoxer handle; built from ``config`` if omitted.
        """
        self._config = config
        token_name = config.token_id.split("!", 1)[1] if "!" in config.token_id else ""
        self._api = api or ProxmoxAPI(
            config.api_host,
            user=config.user_id,
            token_name=token_name,
            token_value=config.token_secret,
            verify_ssl=config.verify_ssl,
            port=config.api_port,
            timeout=config.http_timeout_seconds,
        )

    def _call(self, action: Callable[[], T], context: str) -> T:
        try:
            return action()
        except ResourceException as e:
            text = f"{e.status_message} {e.content}".lower()
            message = f"PVE {context} failed: {e}"
            if any(marker in text for marker in AGENT_NOT_RUNNING_MARKERS):
                raise AgentNotRunningError(message, status_code=e.status_code) from e
            if e.status_code == 404 or any(marker in text for marker in NOT_FOUND_MARKERS):
                raise VmNotFoundError(message, status_code=e.status_code) from e
            raise ComputeApiError(
                message, status_code=e.status_code, transient=e.status_code >= 500
            ) from e
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ComputeApiError(f"PVE {context} failed: {e}", transient=True) from e

    def _qemu(self, vmr: VmRef) -> Any:
        return self._api.nodes(vmr.node).qemu(vmr.vmid)

    def _wait_for_task(self, node: str, upid: Any, context: str) -> None:
        if not isinstance(upid, str) or not upid.startswith("UPID:"):
            return
        deadline = time.monotonic() + self._config.http_timeout_seconds
        while time.monotonic() < deadline:
            status = self._call(
                lambda: self._api.nodes(node).tasks(upid).status.get(), f"poll task {upid}"
            )
            if status.get("status") == "stopped":
                exit_status = status.get("exitstatus", "")
                if exit_status != "OK":
                    raise ComputeApiError(f"PVE {context} task {upid} failed: {exit_status}")
                return
            time.sleep(TASK_POLL_INTERVAL_SECONDS)
        raise ComputeApiError(
            f"PVE {context} task {upid} did not finish within "
            f"{self._config.http_timeout_seconds}s",
            transient=True,
        )

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def _vm_resources(self) -> list[dict[str, Any]]:
        resources = self._call(lambda: self._api.cluster.resources.get(type="vm"), "list VMs")
        return [r for r in resources if r.get("type", "qemu") == "qemu"]

    @staticmethod
    def _ref_from_resource(resource: dict[str, Any]) -> VmRef:
        return VmRef(
            vmid=int(resource["vmid"]),
            node=str(resource.get("node", "")),
            pool=str(resource.get("pool", "")),
            vm_type=str(resource.get("type", "qemu")),
            ha_state=str(resource.get("hastate", "")),
        )

    def get_vm_refs_by_name(self, name: str) -> list[VmRef]:
        return [self._ref_from_resource(r) for r in self._vm_resources() if r.get("name") == name]

    def get_vm_ref_by_name(self, name: str) -> VmRef | None:
        refs = self.get_vm_refs_by_name(name)
        return refs[0] if refs else None

    def get_vm_info(self, vmr: VmRef) -> dict[str, Any]:
        """Resolve ``vmr`` against the cluster and return its raw config.

        Node, pool and HA state on ``vmr`` are refreshed from the cluster view.

        Raises:
            VmNotFoundError: If no QEMU VM with this id exists.
        """
        for resource in self._vm_resources():
            if int(resource.get("vmid", -1)) != vmr.vmid:
                continue
            found = self._ref_from_resource(resource)
            vmr.node, vmr.pool, vmr.vm_type = found.node, found.pool, found.vm_type
            vmr.ha_state = found.ha_state
            return self.get_vm_config(vmr)
        raise VmNotFoundError(f"vm '{vmr.vmid}' not found", status_code=404)

    def next_vm_id(self) -> int:
        return int(self._call(lambda: self._api.cluster.nextid.get(), "fetch next VMID"))

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def create_vm(self, vmr: VmRef, config: ConfigQemu) -> None:
        params = config_to_params(config)
        params["vmid"] = vmr.vmid
        if config.pool:
            params["pool"] = config.pool
        logger.debug("Creating VM", extra={"vmid": vmr.vmid, "node": vmr.node})
        upid = self._call(lambda: self._api.nodes(vmr.node).qemu.post(**params), "create VM")
        self._wait_for_task(vmr.node, upid, "create VM")
        self._apply_ha(vmr, config)

    def clone_vm(self, source: VmRef, target: VmRef, config: ConfigQemu) -> None:
        params: dict[str, Any] = {
            "newid": target.vmid,
            "name": config.name,
            "full": _flag(config.full_clone),
            "target": target.node,
        }
        if config.pool:
            params["pool"] = config.pool
        upid = self._call(lambda: self._qemu(source).clone.post(**params), "clone VM")
        self._wait_for_task(source.node, upid, "clone VM")

    def update_config(self, vmr: VmRef, config: ConfigQemu) -> None:
        current = self.get_vm_config(vmr)
        existing = {
            key: parse_disk(m.group(1), int(m.group(2)), str(value)).get("volume", "")
            for key, value in current.items()
            if (m := DISK_KEY_PATTERN.match(key))
        }
        params = config_to_params(config, existing)

        removed = [
            key
            for key, value in current.items()
            if DEVICE_KEY_PATTERN.match(key)
            and key not in params
            and "cloudinit" not in str(value)
        ]
        if removed:
            params["delete"] = ",".join(sorted(removed))

        logger.debug(
            "Updating VM config",
            extra={"vmid": vmr.vmid, "node": vmr.node, "removed": removed},
        )
        upid = self._call(lambda: self._qemu(vmr).config.post(**params), "update config")
        self._wait_for_task(vmr.node, upid, "update config")
        self._apply_ha(vmr, config)

    def set_vm_config(self, vmr: VmRef, params: dict[str, Any]) -> None:
        upid = self._call(lambda: self._qemu(vmr).config.post(**params), "set config")
        self._wait_for_task(vmr.node, upid, "set config")

    def get_vm_config(self, vmr: VmRef) -> dict[str, Any]:
        return self._call(lambda: self._qemu(vmr).config.get(), f"get config for {vmr.vmid}")

    def get_config(self, vmr: VmRef) -> ConfigQemu:
        config = params_to_config(self.get_vm_config(vmr))
        config.pool = vmr.pool
        config.hastate = vmr.ha_state
        config.hagroup = vmr.ha_group
        return config

    def resize_disk(self, vmr: VmRef, disk: str, size: str) -> None:
        upid = self._call(lambda: self._qemu(vmr).resize.put(disk=disk, size=size), "resize disk")
        self._wait_for_task(vmr.node, upid, "resize disk")

    def _apply_ha(self, vmr: VmRef, config: ConfigQemu) -> None:
        sid = f"vm:{vmr.vmid}"
        configured = vmr.ha_state != ""
        if not config.hastate:
            if configured:
                self._call(lambda: self._api.cluster.ha.resources(sid).delete(), "remove HA")
            return
        params = {"state": config.hastate}
        if config.hagroup:
            params["group"] = config.hagroup
        if configured:
            self._call(lambda: self._api.cluster.ha.resources(sid).put(**params), "update HA")
        else:
            self._call(lambda: self._api.cluster.ha.resources.post(sid=sid, **params), "add HA")
        vmr.ha_state, vmr.ha_group = config.hastate, config.hagroup

    # -------------------------------------------------------------------------
    # Power
    # -------------------------------------------------------------------------

    def get_vm_state(self, vmr: VmRef) -> dict[str, Any]:
        return self._call(lambda: self._qemu(vmr).status.current.get(), "get VM state")

    def _power(self, vmr: VmRef, action: str) -> None:
        upid = self._call(
            lambda: getattr(self._qemu(vmr).status, action).post(), f"{action} VM"
        )
        self._wait_for_task(vmr.node, upid, f"{action} VM")

    def start_vm(self, vmr: VmRef) -> None:
        self._power(vmr, "start")

    def stop_vm(self, vmr: VmRef) -> None:
        self._power(vmr, "stop")

    def shutdown_vm(self, vmr: VmRef) -> None:
        self._power(vmr, "shutdown")

    def delete_vm(self, vmr: VmRef) -> None:
        upid = self._call(lambda: self._qemu(vmr).delete(), "delete VM")
        self._wait_for_task(vmr.node, upid, "delete VM")

    def migrate_vm(self, vmr: VmRef, target_node: str, online: bool = True) -> None:
        upid = self._call(
            lambda: self._qemu(vmr).migrate.post(target=target_node, online=_flag(online)),
            "migrate VM",
        )
        self._wait_for_task(vmr.node, upid, "migrate VM")

    # -------------------------------------------------------------------------
    # Pools
    # -------------------------------------------------------------------------

    def get_pool_list(self) -> list[str]:
        pools = self._call(lambda: self._api.pools.get(), "list pools")
        return [str(p["poolid"]) for p in pools if "poolid" in p]

    def get_pool_members(self, pool: str) -> list[dict[str, Any]]:
        info = self._call(lambda: self._api.pools(pool).get(), f"get pool {pool}")
        return list(info.get("members", []))

    def update_vm_pool(self, vmr: VmRef, pool: str) -> None:
        if vmr.pool:
            self._call(
                lambda: self._api.pools(vmr.pool).put(vms=str(vmr.vmid), delete="1"),
                f"remove VM from pool {vmr.pool}",
            )
        if pool:
            self._call(
                lambda: self._api.pools(pool).put(vms=str(vmr.vmid)),
                f"add VM to pool {pool}",
            )
        vmr.pool = pool

    # -------------------------------------------------------------------------
    # Guest agent and access
    # -------------------------------------------------------------------------

    def get_agent_network_interfaces(self, vmr: VmRef) -> list[AgentNetworkInterface]:
        response = self._call(
            lambda: self._qemu(vmr).agent("network-get-interfaces").get(),
            "query guest agent",
        )
        result = response.get("result", []) if isinstance(response, dict) else []
        return [
            AgentNetworkInterface(
                name=str(iface.get("name", "")),
                mac_address=str(iface.get("hardware-address", "")),
                ip_addresses=[
                    str(addr["ip-address"])
                    for addr in iface.get("ip-addresses", [])
                    if "ip-address" in addr
                ],
            )
            for iface in result
        ]

    def get_permissions(self) -> list[str]:
        permissions = self._call(
            lambda: self._api.access.permissions.get(path="/"), "read permissions"
        )
        granted = permissions.get("/", {}) if isinstance(permissions, dict) else {}
        return sorted(name for name, value in granted.items() if value)
