"""Compute API client interface.

The orchestrator talks to the backend only through :class:`ComputeClient`.
Methods are synchronous; the session runs them in an executor so a slow HTTP
call never blocks the event loop.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .models import ConfigQemu

LIMITED_BROADCAST = "255.255.255.255"


class ComputeApiError(Exception):
    """Error reported by the compute backend.

    Attributes:
        status_code: HTTP status code, if the backend answered at all.
        transient: Whether retrying the same call may succeed.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


class VmNotFoundError(ComputeApiError):
    """Raised when the addressed VM does not exist on the backend."""

    pass


class AgentNotRunningError(ComputeApiError):
    """Raised when the guest agent is not (yet) running inside the VM."""

    pass


@dataclass
class VmRef:
    """Backend address of a VM.

    ``node`` is rewritten on migration and ``pool`` is only attached for pool
    reassignment; everything else is fixed for the lifetime of the reference.
    """

    vmid: int
    node: str = ""
    pool: str = ""
    vm_type: str = "qemu"
    ha_state: str = ""
    ha_group: str = ""


@dataclass
class AgentNetworkInterface:
    """One network interface as reported by the guest agent."""

    name: str
    mac_address: str
    ip_addresses: list[str] = field(default_factory=list)

    def global_ipv4_addresses(self) -> list[str]:
        """Global unicast addresses that are not IPv6, in reported order."""
        found: list[str] = []
        for raw in self.ip_addresses:
            if raw.count(":") >= 2:
                continue
            try:
                address = ipaddress.ip_address(raw)
            except ValueError:
                continue
            if (
                address.is_loopback
                or address.is_link_local
                or address.is_multicast
                or address.is_unspecified
                or raw == LIMITED_BROADCAST
            ):
                continue
            found.append(raw)
        return found


class ComputeClient(Protocol):
    """Operations the lifecycle orchestrator consumes from the backend."""

    def get_vm_ref_by_name(self, name: str) -> VmRef | None: ...

    def get_vm_refs_by_name(self, name: str) -> list[VmRef]: ...

    def get_vm_info(self, vmr: VmRef) -> dict[str, Any]: ...

    def next_vm_id(self) -> int: ...

    def create_vm(self, vmr: VmRef, config: ConfigQemu) -> None: ...

    def clone_vm(self, source: VmRef, target: VmRef, config: ConfigQemu) -> None: ...

    def update_config(self, vmr: VmRef, config: ConfigQemu) -> None: ...

    def set_vm_config(self, vmr: VmRef, params: dict[str, Any]) -> None: ...

    def get_config(self, vmr: VmRef) -> ConfigQemu: ...

    def get_vm_config(self, vmr: VmRef) -> dict[str, Any]: ...

    def resize_disk(self, vmr: VmRef, disk: str, size: str) -> None: ...

    def get_vm_state(self, vmr: VmRef) -> dict[str, Any]: ...

    def start_vm(self, vmr: VmRef) -> None: ...

    def stop_vm(self, vmr: VmRef) -> None: ...

    def shutdown_vm(self, vmr: VmRef) -> None: ...

    def delete_vm(self, vmr: VmRef) -> None: ...

    def get_pool_list(self) -> list[str]: ...

    def get_pool_members(self, pool: str) -> list[dict[str, Any]]: ...

    def update_vm_pool(self, vmr: VmRef, pool: str) -> None: ...

    def migrate_vm(self, vmr: VmRef, target_node: str, online: bool = True) -> None: ...

    def get_agent_network_interfaces(self, vmr: VmRef) -> list[AgentNetworkInterface]: ...

    def get_permissions(self) -> list[str]: ...
