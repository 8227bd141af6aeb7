"""Connection discovery after boot.

Waits for the QEMU guest agent inside a freshly started VM and resolves the
address provisioners should connect to.

STATES:
- Disabled: connection info opted out, or the agent is not enabled
- WaitingForAgent: poll the agent until it answers
- ResolvingAddress: match the primary NIC's MAC and pick a global IPv4 address
- Resolved / TimedOut

Every loop shares one monotonic deadline derived from the create timeout.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import re
from typing import TYPE_CHECKING

from .client import AgentNetworkInterface, AgentNotRunningError, VmRef
from .errors import GuestAgentUnavailable, NoAddressFound
from .models import ConfigQemu, ConnectionInfo, VmSpec

if TYPE_CHECKING:
    from .session import ProviderSession

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = "22"
DHCP_IPCONFIG = "ip=dhcp"

MAC_ADDRESS_PATTERN = re.compile(r"([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}")
IPCONFIG_ADDRESS_PATTERN = re.compile(r"ip6?=([0-9a-fA-F:.]+)")


def split_host_port(host: str, default_port: str = DEFAULT_SSH_PORT) -> tuple[str, str]:
    """Split ``host:port``; bare hosts and IPv6 literals keep the default port."""
    if host.count(":") == 1:
        address, port = host.split(":")
        return address, port
    return host, default_port


class ConnectionDiscoveryPoller:
    """Resolve a reachable address for a running VM via its guest agent."""

    def __init__(
        self,
        session: ProviderSession,
        *,
        timeout_seconds: float | None = None,
        poll_interval_seconds: float | None = None,
    ) -> None:
        """Initialize the poller.

        Args:
            session: Provider session used to run client calls.
            timeout_seconds: Overall deadline; defaults to the create timeout.
            poll_interval_seconds: Delay between agent polls.
        """
        self._session = session
        config = session.config
        self._timeout = (
            config.create_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._interval = (
            config.agent_poll_interval_seconds
            if poll_interval_seconds is None
            else poll_interval_seconds
        )

    async def discover(
        self, vmr: VmRef, spec: VmSpec, config: ConfigQemu
    ) -> ConnectionInfo | None:
        """Run discovery for ``vmr``.

        Args:
            vmr: The VM to inspect.
            spec: Desired state (opt-out flag, agent flag, ipconfig0).
            config: Configuration that was pushed (cloud-init presence).

        Returns:
            Connection info, or None when discovery is disabled.

        Raises:
            GuestAgentUnavailable: If the agent never answers before the deadline.
            NoAddressFound: If no address could be resolved by any path.
            ComputeApiError: For any backend failure other than "agent not running".
        """
        log_extra = {"vmid": vmr.vmid, "node": vmr.node}

        if not spec.define_connection_info:
            logger.info("define_connection_info is disabled, skipping discovery", extra=log_extra)
            return None
        if spec.agent != 1:
            logger.info("QEMU agent is disabled, cannot discover address", extra=log_extra)
            return None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        logger.info(
            "Waiting for guest agent",
            extra={**log_extra, "timeout_seconds": self._timeout},
        )

        await self._wait_for_agent(vmr, deadline)

        vm_config = await self._session.call(self._session.client.get_vm_config, vmr)
        mac_match = MAC_ADDRESS_PATTERN.search(str(vm_config.get("net0", "")))
        primary_mac = mac_match.group(0) if mac_match else ""

        ssh_host = await self._resolve_address(vmr, primary_mac, deadline)
        if not ssh_host:
            logger.warning("No address found on primary interface", extra=log_extra)

        ssh_port = DEFAULT_SSH_PORT
        if config.has_cloud_init():
            ssh_host = await self._apply_cloud_init_address(vmr, spec, ssh_host)

        if ssh_host:
            ssh_host, ssh_port = split_host_port(ssh_host, ssh_port)

        if not ssh_host:
            raise NoAddressFound("cannot find any IP address")

        logger.info(
            "Connection info resolved",
            extra={**log_extra, "ssh_host": ssh_host, "ssh_port": ssh_port},
        )
        return ConnectionInfo(host=ssh_host, port=ssh_port)

    async def _wait_for_agent(self, vmr: VmRef, deadline: float) -> list[AgentNetworkInterface]:
        loop = asyncio.get_running_loop()
        last_error: AgentNotRunningError | None = None
        attempts = 0

        while loop.time() < deadline:
            attempts += 1
            try:
                interfaces = await self._session.call(
                    self._session.client.get_agent_network_interfaces, vmr
                )
            except AgentNotRunningError as e:
                last_error = e
                logger.debug(
                    "Guest agent not running yet",
                    extra={"vmid": vmr.vmid, "attempt": attempts},
                )
                await asyncio.sleep(self._interval)
                continue

            logger.info(
                "Found working QEMU agent",
                extra={"vmid": vmr.vmid, "attempt": attempts, "interfaces": len(interfaces)},
            )
            return interfaces

        raise GuestAgentUnavailable(
            f"QEMU agent is enabled for VM {vmr.vmid} but did not answer within "
            f"{self._timeout}s: {last_error}"
        )

    async def _resolve_address(self, vmr: VmRef, primary_mac: str, deadline: float) -> str:
        loop = asyncio.get_running_loop()

        while loop.time() < deadline:
            try:
                interfaces = await self._session.call(
                    self._session.client.get_agent_network_interfaces, vmr
                )
            except AgentNotRunningError as e:
                logger.debug("Agent dropped while resolving address", extra={"error": str(e)})
            else:
                for iface in interfaces:
                    if iface.mac_address.upper() != primary_mac.upper():
                        continue
                    addresses = iface.global_ipv4_addresses()
                    if addresses:
                        return addresses[0]
            await asyncio.sleep(self._interval)

        return ""

    async def _apply_cloud_init_address(self, vmr: VmRef, spec: VmSpec, discovered: str) -> str:
        ipconfig0 = spec.ipconfig.get(0, "")
        if not ipconfig0:
            return discovered

        state = await self._session.call(self._session.client.get_vm_state, vmr)
        agent_enabled = state.get("agent") == 1
        if ipconfig0 == DHCP_IPCONFIG and agent_enabled:
            return discovered

        match = IPCONFIG_ADDRESS_PATTERN.search(ipconfig0)
        if match is None:
            return discovered
        declared = match.group(1)
        ssh_host = discovered or declared

        declared_ip = declared.split(":")[0]
        interfaces = await self._session.call(
            self._session.client.get_agent_network_interfaces, vmr
        )
        for iface in interfaces:
            if _contains_address(iface.ip_addresses, declared_ip):
                ssh_host = declared
                break

        logger.debug(
            "Applied cloud-init address",
            extra={"vmid": vmr.vmid, "declared": declared, "ssh_host": ssh_host},
        )
        return ssh_host


def _contains_address(addresses: list[str], wanted: str) -> bool:
    try:
        target = ipaddress.ip_address(wanted)
    except ValueError:
        return False
    for raw in addresses:
        try:
            if ipaddress.ip_address(raw) == target:
                return True
        except ValueError:
            continue
    return False
