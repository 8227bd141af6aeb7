"""Pydantic models for VM specifications and the backend configuration shape.

These models provide:
1. Type-safe YAML parsing of desired VM state
2. Validation at the boundary (fail fast, fail loudly)
3. Conversion to the slot-keyed :class:`ConfigQemu` the backend understands
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator

from .devices import DeviceMap, devices_set_to_map, expand_devices
from .smbios import build_smbios_args

MAX_IPCONFIG_INDEX = 15
VM_STATES = ("running", "stopped")
DISK_TYPES = ("ide", "sata", "scsi", "virtio")
NETWORK_MODELS = ("e1000", "e1000e", "rtl8139", "virtio", "vmxnet3")

SIZE_PATTERN = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*([KMGT]?)B?\s*$", re.IGNORECASE)
_SIZE_FACTORS_GB = {"K": 1 / (1024 * 1024), "M": 1 / 1024, "G": 1.0, "T": 1024.0, "": 1.0}


def disk_size_gb(size: Any) -> float:
    """Convert a disk size such as ``"10G"``, ``"512M"`` or ``20`` to gigabytes.

    Plain numbers are taken as gigabytes. Unparseable or empty values are 0.
    """
    if size is None or size == "":
        return 0.0
    if isinstance(size, int | float):
        return float(size)
    match = SIZE_PATTERN.match(str(size))
    if match is None:
        return 0.0
    return float(match.group(1)) * _SIZE_FACTORS_GB[match.group(2).upper()]


def format_size_gb(size_gb: float) -> str:
    """Render gigabytes the way the resize call expects (``"12G"``)."""
    if size_gb == int(size_gb):
        return f"{int(size_gb)}G"
    return f"{size_gb:g}G"


# =============================================================================
# Device Models
# =============================================================================


class DiskSpec(BaseModel):
    """One disk slot. The slot number is the position in ``VmSpec.disk``."""

    model_config = {"extra": "forbid"}

    type: str
    storage: str = ""
    size: str = ""
    format: str = "raw"
    cache: str = "none"
    backup: bool = True
    iothread: bool = False
    replicate: bool = False
    ssd: bool = False
    discard: str = ""
    aio: str = ""
    mbps: float = 0
    mbps_rd: float = 0
    mbps_wr: float = 0
    iops: int = 0
    iops_rd: int = 0
    iops_wr: int = 0
    file: str = ""
    media: str = ""
    volume: str = ""
    slot: int | None = None
    storage_type: str = ""

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v not in DISK_TYPES:
            raise ValueError(f"type must be one of {DISK_TYPES}")
        return v

    @field_validator("size", mode="before")
    @classmethod
    def normalize_size(cls, v: Any) -> str:
        if isinstance(v, int | float):
            return format_size_gb(float(v))
        if v and SIZE_PATTERN.match(str(v)) is None:
            raise ValueError(f"size must look like 10G, 512M or 1T: {v}")
        return str(v or "")


class NetworkSpec(BaseModel):
    """One network interface slot."""

    model_config = {"extra": "forbid"}

    model: str
    macaddr: str = ""
    bridge: str = "vmbr0"
    tag: int = -1
    firewall: bool = False
    rate: float = 0
    queues: int = 0
    link_down: bool = False

    @field_validator("model")
    @classmethod
    def validate_model(cls, v: str) -> str:
        if v not in NETWORK_MODELS:
            raise ValueError(f"model must be one of {NETWORK_MODELS}")
        return v


class SerialSpec(BaseModel):
    """Serial port keyed by an explicit id (``serial0`` to ``serial3``)."""

    model_config = {"extra": "forbid"}

    id: Annotated[int, Field(ge=0, le=3)]
    type: str = "socket"


class HostPciSpec(BaseModel):
    """PCI passthrough device."""

    model_config = {"extra": "forbid"}

    host: str
    rombar: bool = True
    pcie: bool = False
    xvga: bool = False
    mdev: str = ""


class UsbSpec(BaseModel):
    """USB passthrough device."""

    model_config = {"extra": "forbid"}

    host: str
    usb3: bool = False


class VgaSpec(BaseModel):
    """Display adapter."""

    model_config = {"extra": "forbid"}

    type: str = "std"
    memory: int | None = None


class SmbiosSpec(BaseModel):
    """SMBIOS type 1 fields."""

    model_config = {"extra": "forbid"}

    uuid: str = ""
    serial: str = ""
    manufacturer: str = ""
    product: str = ""
    version: str = ""
    sku: str = ""
    family: str = ""


# =============================================================================
# Backend Configuration Shape
# =============================================================================


@dataclass
class ConfigQemu:
    """Desired or observed VM configuration in backend terms.

    Device collections are slot maps; ``None`` marks an unused slot.
    """

    name: str = ""
    description: str = ""
    pool: str = ""
    bios: str = "seabios"
    onboot: bool = False
    startup: str = ""
    tablet: bool = True
    boot: str = ""
    bootdisk: str = ""
    agent: int = 0
    memory: int = 512
    machine: str = ""
    balloon: int = 0
    cores: int = 1
    sockets: int = 1
    vcpus: int = 0
    cpu: str = "host"
    numa: bool = False
    kvm: bool = True
    hotplug: str = ""
    scsihw: str = ""
    hastate: str = ""
    hagroup: str = ""
    qemu_os: str = "l26"
    tags: str = ""
    args: str = ""
    smbios1: str = ""
    iso: str = ""
    full_clone: bool = True
    vga: dict[str, Any] = field(default_factory=dict)

    # Cloud-init
    ciuser: str = ""
    cipassword: str = ""
    cicustom: str = ""
    searchdomain: str = ""
    nameserver: str = ""
    sshkeys: str = ""
    ipconfig: dict[int, str] = field(default_factory=dict)

    # Devices
    disks: DeviceMap = field(default_factory=dict)
    networks: DeviceMap = field(default_factory=dict)
    serials: DeviceMap = field(default_factory=dict)
    pci_devices: DeviceMap = field(default_factory=dict)
    usbs: DeviceMap = field(default_factory=dict)
    unused_disks: DeviceMap = field(default_factory=dict)

    def has_cloud_init(self) -> bool:
        """Whether any cloud-init setting is present."""
        return bool(
            self.ciuser
            or self.cipassword
            or self.cicustom
            or self.searchdomain
            or self.nameserver
            or self.sshkeys
            or any(self.ipconfig.values())
        )


# =============================================================================
# VM Specification
# =============================================================================


class VmSpec(BaseModel):
    """Desired state of one QEMU virtual machine."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    # Identity and placement
    name: Annotated[str, Field(min_length=1, max_length=128)]
    target_node: Annotated[str, Field(min_length=1)]
    vmid: Annotated[int, Field(ge=0)] = 0
    description: str = Field("", alias="desc")
    pool: str = ""
    tags: str = ""
    hastate: str = ""
    hagroup: str = ""

    # Creation strategy
    clone: str = ""
    full_clone: bool = True
    iso: str = ""
    pxe: bool = False
    force_create: bool = False
    clone_wait: Annotated[float, Field(ge=0)] = 10
    additional_wait: Annotated[float, Field(ge=0)] = 5

    # Hardware
    bios: str = "seabios"
    onboot: bool = False
    startup: str = ""
    tablet: bool = True
    boot: str = ""
    bootdisk: str = ""
    agent: Annotated[int, Field(ge=0, le=1)] = 0
    memory: Annotated[int, Field(ge=16)] = 512
    machine: str = ""
    balloon: Annotated[int, Field(ge=0)] = 0
    sockets: Annotated[int, Field(ge=1)] = 1
    cores: Annotated[int, Field(ge=1)] = 1
    vcpus: Annotated[int, Field(ge=0)] = 0
    cpu: str = "host"
    numa: bool = False
    kvm: bool = True
    hotplug: str = "network,disk,usb"
    scsihw: str = ""
    qemu_os: str = "l26"
    os_type: str = ""
    args: str = ""

    # Devices
    vga: list[VgaSpec] = Field(default_factory=list, max_length=1)
    network: list[NetworkSpec | None] = Field(default_factory=list)
    disk: list[DiskSpec | None] = Field(default_factory=list)
    serial: list[SerialSpec] = Field(default_factory=list)
    hostpci: list[HostPciSpec | None] = Field(default_factory=list)
    usb: list[UsbSpec | None] = Field(default_factory=list)
    smbios: list[SmbiosSpec] = Field(default_factory=list, max_length=1)

    # Power and connection
    vm_state: str = "running"
    automatic_reboot: bool = True
    define_connection_info: bool = True

    # Cloud-init
    cloudinit_cdrom_storage: str = ""
    ciuser: str = ""
    cipassword: str = ""
    cicustom: str = ""
    searchdomain: str = ""
    nameserver: str = ""
    sshkeys: str = ""
    ipconfig: dict[int, str] = Field(default_factory=dict)

    @field_validator("vm_state")
    @classmethod
    def validate_vm_state(cls, v: str) -> str:
        if v not in VM_STATES:
            raise ValueError(f"vm_state must be one of {VM_STATES}")
        return v

    @field_validator("ipconfig")
    @classmethod
    def validate_ipconfig(cls, v: dict[int, str]) -> dict[int, str]:
        for index in v:
            if not 0 <= index <= MAX_IPCONFIG_INDEX:
                raise ValueError(f"ipconfig index must be between 0 and {MAX_IPCONFIG_INDEX}")
        return v

    @field_validator("hotplug")
    @classmethod
    def normalize_hotplug(cls, v: str) -> str:
        return ",".join(part.strip() for part in v.split(",") if part.strip())

    @property
    def hotplug_features(self) -> frozenset[str]:
        return frozenset(part for part in self.hotplug.split(",") if part)

    def disk_records(self) -> list[dict[str, Any] | None]:
        return [None if d is None else d.model_dump() for d in self.disk]

    def network_records(self) -> list[dict[str, Any] | None]:
        return [None if n is None else n.model_dump() for n in self.network]

    def to_config_qemu(self) -> ConfigQemu:
        """Convert the spec to the backend configuration shape."""
        return ConfigQemu(
            name=self.name,
            description=self.description,
            pool=self.pool,
            bios=self.bios,
            onboot=self.onboot,
            startup=self.startup,
            tablet=self.tablet,
            boot=self.boot,
            bootdisk=self.bootdisk,
            agent=self.agent,
            memory=self.memory,
            machine=self.machine,
            balloon=self.balloon,
            cores=self.cores,
            sockets=self.sockets,
            vcpus=self.vcpus,
            cpu=self.cpu,
            numa=self.numa,
            kvm=self.kvm,
            hotplug=self.hotplug,
            scsihw=self.scsihw,
            hastate=self.hastate,
            hagroup=self.hagroup,
            qemu_os=self.qemu_os,
            tags=self.tags,
            args=self.args,
            smbios1=build_smbios_args([s.model_dump() for s in self.smbios]),
            iso=self.iso,
            full_clone=self.full_clone,
            vga=self.vga[0].model_dump(exclude_none=True) if self.vga else {},
            ciuser=self.ciuser,
            cipassword=self.cipassword,
            cicustom=self.cicustom,
            searchdomain=self.searchdomain,
            nameserver=self.nameserver,
            sshkeys=self.sshkeys,
            ipconfig=dict(self.ipconfig),
            disks=expand_devices(self.disk_records()),
            networks=expand_devices(self.network_records()),
            serials=devices_set_to_map(s.model_dump() for s in self.serial),
            pci_devices=expand_devices(
                [None if p is None else p.model_dump() for p in self.hostpci]
            ),
            usbs=expand_devices([None if u is None else u.model_dump() for u in self.usb]),
        )


# Attribute names the read path accepts from the backend for each device kind
KNOWN_DISK_KEYS = frozenset(DiskSpec.model_fields)
KNOWN_NETWORK_KEYS = frozenset(NetworkSpec.model_fields)
DEFAULT_NETWORK_TAG = NetworkSpec.model_fields["tag"].default


# =============================================================================
# Observed State
# =============================================================================


@dataclass
class ConnectionInfo:
    """How provisioners reach the VM after boot."""

    host: str
    port: str = "22"
    type: str = "ssh"

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "host": self.host, "port": self.port}


@dataclass
class ObservedVm:
    """State of a VM as read back from the backend."""

    resource_id: str
    node: str
    vmid: int
    config: ConfigQemu
    vm_state: str = ""
    pool: str = ""
    disks: list[dict[str, Any]] = field(default_factory=list)
    networks: list[dict[str, Any]] = field(default_factory=list)
    hostpci: list[dict[str, Any]] = field(default_factory=list)
    usbs: list[dict[str, Any]] = field(default_factory=list)
    unused_disks: list[dict[str, Any]] = field(default_factory=list)
    serials: list[dict[str, Any]] = field(default_factory=list)
    smbios: list[dict[str, str]] = field(default_factory=list)
    reboot_required: bool = False
    connection: ConnectionInfo | None = None

    @property
    def ssh_host(self) -> str:
        return self.connection.host if self.connection else ""

    @property
    def ssh_port(self) -> str:
        return self.connection.port if self.connection else ""

    @property
    def default_ipv4_address(self) -> str:
        return self.ssh_host

    def to_dict(self) -> dict[str, Any]:
        """Flatten to the user-facing attribute names for display and storage."""
        cfg = self.config
        result: dict[str, Any] = {
            "id": self.resource_id,
            "target_node": self.node,
            "vmid": self.vmid,
            "name": cfg.name,
            "desc": cfg.description,
            "pool": self.pool,
            "vm_state": self.vm_state,
            "bios": cfg.bios,
            "onboot": cfg.onboot,
            "boot": cfg.boot,
            "agent": cfg.agent,
            "memory": cfg.memory,
            "balloon": cfg.balloon,
            "sockets": cfg.sockets,
            "cores": cfg.cores,
            "vcpus": cfg.vcpus,
            "cpu": cfg.cpu,
            "hotplug": cfg.hotplug,
            "qemu_os": cfg.qemu_os,
            "tags": cfg.tags,
            "ciuser": cfg.ciuser,
            "ipconfig": dict(cfg.ipconfig),
            "disk": self.disks,
            "network": self.networks,
            "hostpci": self.hostpci,
            "usb": self.usbs,
            "unused_disk": self.unused_disks,
            "serial": self.serials,
            "smbios": self.smbios,
            "reboot_required": self.reboot_required,
        }
        if self.connection is not None:
            result["ssh_host"] = self.ssh_host
            result["ssh_port"] = self.ssh_port
            result["default_ipv4_address"] = self.default_ipv4_address
        return result
