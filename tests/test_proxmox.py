"""Tests for the Proxmox VE adapter."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests
from proxmoxer.core import ResourceException

from vm_operator.client import AgentNotRunningError, ComputeApiError, VmNotFoundError, VmRef
from vm_operator.config import ProviderConfig
from vm_operator.models import ConfigQemu
from vm_operator.proxmox import (
    ProxmoxComputeClient,
    config_to_params,
    format_disk,
    format_hostpci,
    format_network,
    params_to_config,
    parse_disk,
    parse_hostpci,
    parse_network,
    parse_usb,
    parse_vga,
)

UPID = "UPID:pve1:0000ABCD:0001:65000000:qmresize:100:terraform@pve!ops:"


# =============================================================================
# Option String Codec
# =============================================================================


class TestDiskCodec:
    """Tests for drive string formatting and parsing."""

    def test_new_disk_allocates_on_storage(self) -> None:
        """Test that a disk without a volume asks for storage:size."""
        disk = {
            "type": "scsi",
            "storage": "local-lvm",
            "size": "20G",
            "format": "raw",
            "cache": "none",
            "backup": True,
            "ssd": True,
        }

        assert format_disk(disk) == "local-lvm:20,cache=none,backup=1,ssd=1"

    def test_existing_volume_referenced(self) -> None:
        """Test that an attached volume is re-referenced instead of reallocated."""
        disk = {"type": "scsi", "storage": "local-lvm", "size": "20G"}

        assert format_disk(disk, "local-lvm:vm-100-disk-0") == "local-lvm:vm-100-disk-0"

    def test_file_prefixed_with_storage(self) -> None:
        """Test that a bare file name is qualified with its storage."""
        disk = {"type": "virtio", "storage": "ceph", "file": "vm-1-disk-0", "format": "qcow2"}

        assert format_disk(disk) == "ceph:vm-1-disk-0,format=qcow2"

    def test_parse_typed_options(self) -> None:
        """Test that drive options are parsed to their declared types."""
        record = parse_disk("scsi", 0, "local-lvm:vm-100-disk-0,size=20G,ssd=1,iops=100,mbps=1.5")

        assert record == {
            "type": "scsi",
            "slot": 0,
            "volume": "local-lvm:vm-100-disk-0",
            "storage": "local-lvm",
            "file": "vm-100-disk-0",
            "size": "20G",
            "ssd": True,
            "iops": 100,
            "mbps": 1.5,
        }


class TestNetworkCodec:
    """Tests for netN strings."""

    def test_format_omits_unset_tag(self) -> None:
        """Test that tag -1 is not sent."""
        network = {"model": "virtio", "macaddr": "AA:BB", "bridge": "vmbr1", "tag": -1, "firewall": True}

        assert format_network(network) == "virtio=AA:BB,bridge=vmbr1,firewall=1"

    def test_parse(self) -> None:
        """Test parsing model, MAC and options."""
        record = parse_network("virtio=AA:BB:CC:DD:EE:01,bridge=vmbr0,tag=20,firewall=1")

        assert record == {
            "model": "virtio",
            "macaddr": "AA:BB:CC:DD:EE:01",
            "bridge": "vmbr0",
            "tag": 20,
            "firewall": True,
        }


class TestPassthroughCodec:
    """Tests for PCI, USB and display strings."""

    def test_hostpci_xvga_spelling(self) -> None:
        """Test that xvga maps to the x-vga option both ways."""
        formatted = format_hostpci({"host": "0000:01:00", "pcie": True, "rombar": False, "xvga": True})

        assert formatted == "0000:01:00,pcie=1,rombar=0,x-vga=1"
        assert parse_hostpci("0000:01:00,pcie=1,x-vga=1") == {
            "host": "0000:01:00",
            "pcie": True,
            "xvga": True,
        }

    def test_usb_host_option(self) -> None:
        """Test that a host= option is read as the device."""
        assert parse_usb("host=1234:5678,usb3=1") == {"host": "1234:5678", "usb3": True}

    def test_vga_memory(self) -> None:
        """Test that display memory is an integer."""
        assert parse_vga("qxl,memory=32") == {"type": "qxl", "memory": 32}


class TestConfigParams:
    """Tests for whole-configuration conversion."""

    def test_config_to_params(self) -> None:
        """Test flattening of scalars, cloud-init and devices."""
        config = ConfigQemu(
            name="web-01",
            memory=2048,
            sshkeys="ssh-ed25519 AAAA ops@host\n",
            iso="local:iso/debian.iso",
            ipconfig={0: "ip=dhcp", 1: ""},
            disks={0: {"type": "scsi", "storage": "local-lvm", "size": "10G"}, 1: None},
            networks={0: {"model": "virtio", "bridge": "vmbr0"}},
        )

        params = config_to_params(config)

        assert params["name"] == "web-01"
        assert params["memory"] == 2048
        assert params["kvm"] == "1"
        assert params["sshkeys"] == "ssh-ed25519%20AAAA%20ops%40host%0A"
        assert params["ide2"] == "local:iso/debian.iso,media=cdrom"
        assert params["ipconfig0"] == "ip=dhcp"
        assert "ipconfig1" not in params
        assert params["scsi0"] == "local-lvm:10"
        assert "scsi1" not in params
        assert params["net0"] == "virtio,bridge=vmbr0"
        assert "description" not in params

    def test_params_to_config(self) -> None:
        """Test parsing a raw PVE config response."""
        raw = {
            "name": "web-01",
            "agent": "1,fstrim_cloned_disks=1",
            "memory": "4096",
            "ostype": "l26",
            "sshkeys": "ssh-ed25519%20AAAA%20ops%40host",
            "scsi0": "local-lvm:vm-100-disk-0,size=10G",
            "ide2": "local-lvm:vm-100-cloudinit,media=cdrom",
            "net0": "virtio=AA:BB:CC:DD:EE:01,bridge=vmbr0",
            "unused0": "local-lvm:vm-100-disk-9",
            "ipconfig0": "ip=10.0.0.5/24,gw=10.0.0.1",
            "serial0": "socket",
        }

        config = params_to_config(raw)

        assert config.agent == 1
        assert config.memory == 4096
        assert config.sshkeys == "ssh-ed25519 AAAA ops@host"
        assert config.disks[0] is not None
        assert config.disks[0]["file"] == "vm-100-disk-0"
        assert config.disks[2] is not None
        assert config.disks[2]["media"] == "cdrom"
        assert config.networks[0] == {
            "model": "virtio",
            "macaddr": "AA:BB:CC:DD:EE:01",
            "bridge": "vmbr0",
        }
        assert config.unused_disks[0] == {"slot": 0, "file": "local-lvm:vm-100-disk-9"}
        assert config.ipconfig == {0: "ip=10.0.0.5/24,gw=10.0.0.1"}
        assert config.serials[0] == {"id": 0, "type": "socket"}

    def test_shared_drive_index(self) -> None:
        """Test that drives sharing an index are placed the same way in any key order."""
        scsi = "local-lvm:vm-100-disk-0,size=10G"
        virtio = "local-lvm:vm-100-disk-1,size=30G"

        forward = params_to_config({"scsi0": scsi, "virtio0": virtio})
        backward = params_to_config({"virtio0": virtio, "scsi0": scsi})

        assert forward.disks == backward.disks
        assert forward.disks[0] is not None
        assert forward.disks[0]["type"] == "scsi"
        assert forward.disks[1] is not None
        assert forward.disks[1]["type"] == "virtio"
        assert forward.disks[1]["slot"] == 0
        assert forward.disks[1]["file"] == "vm-100-disk-1"

    def test_agent_enabled_option(self) -> None:
        """Test the enabled= spelling of the agent option."""
        assert params_to_config({"agent": "enabled=1"}).agent == 1
        assert params_to_config({}).agent == 0


# =============================================================================
# Client
# =============================================================================


@pytest.fixture
def api() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(provider_config: ProviderConfig, api: MagicMock) -> ProxmoxComputeClient:
    return ProxmoxComputeClient(provider_config, api=api)


def _qemu(api: MagicMock) -> MagicMock:
    return api.nodes.return_value.qemu.return_value


class TestClientConstruction:
    """Tests for building the proxmoxer handle."""

    def test_token_auth(self, provider_config: ProviderConfig) -> None:
        """Test that the API handle is built from the token identity."""
        with patch("vm_operator.proxmox.ProxmoxAPI") as mock_api:
            ProxmoxComputeClient(provider_config)

        mock_api.assert_called_once()
        args, kwargs = mock_api.call_args
        assert args == ("pve.example.com",)
        assert kwargs["user"] == "terraform@pve"
        assert kwargs["token_name"] == "ops"
        assert kwargs["token_value"] == "secret"
        assert kwargs["port"] == 8006


class TestErrorMapping:
    """Tests for backend error translation."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (ResourceException(500, "Internal Server Error", "QEMU guest agent is not running"), AgentNotRunningError),
            (ResourceException(404, "Not Found", ""), VmNotFoundError),
            (
                ResourceException(500, "Internal Server Error", "Configuration file 'qemu-server/100.conf' does not exist"),
                VmNotFoundError,
            ),
        ],
    )
    def test_specific_errors(
        self, client: ProxmoxComputeClient, api: MagicMock, error: Exception, expected: type
    ) -> None:
        """Test that well-known failures map to their specific error types."""
        _qemu(api).status.current.get.side_effect = error

        with pytest.raises(expected):
            client.get_vm_state(VmRef(vmid=100, node="pve1"))

    def test_server_error_is_transient(self, client: ProxmoxComputeClient, api: MagicMock) -> None:
        """Test that 5xx responses are marked transient."""
        _qemu(api).status.current.get.side_effect = ResourceException(503, "Service Unavailable", "busy")

        with pytest.raises(ComputeApiError) as exc_info:
            client.get_vm_state(VmRef(vmid=100, node="pve1"))

        assert exc_info.value.transient is True
        assert exc_info.value.status_code == 503

    def test_client_error_is_permanent(self, client: ProxmoxComputeClient, api: MagicMock) -> None:
        """Test that 4xx responses are not retried."""
        _qemu(api).status.current.get.side_effect = ResourceException(400, "Bad Request", "invalid parameter")

        with pytest.raises(ComputeApiError) as exc_info:
            client.get_vm_state(VmRef(vmid=100, node="pve1"))

        assert exc_info.value.transient is False

    def test_connection_error_is_transient(self, client: ProxmoxComputeClient, api: MagicMock) -> None:
        """Test that network failures are marked transient."""
        _qemu(api).status.current.get.side_effect = requests.ConnectionError("reset")

        with pytest.raises(ComputeApiError) as exc_info:
            client.get_vm_state(VmRef(vmid=100, node="pve1"))

        assert exc_info.value.transient is True


class TestTasks:
    """Tests for task polling."""

    def test_resize_waits_for_task(
        self, client: ProxmoxComputeClient, api: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that a returned UPID is polled until it stops."""
        monkeypatch.setattr("vm_operator.proxmox.TASK_POLL_INTERVAL_SECONDS", 0)
        _qemu(api).resize.put.return_value = UPID
        task_status = api.nodes.return_value.tasks.return_value.status.get
        task_status.side_effect = [{"status": "running"}, {"status": "stopped", "exitstatus": "OK"}]

        client.resize_disk(VmRef(vmid=100, node="pve1"), "scsi0", "20G")

        _qemu(api).resize.put.assert_called_once_with(disk="scsi0", size="20G")
        assert task_status.call_count == 2

    def test_failed_task(self, client: ProxmoxComputeClient, api: MagicMock) -> None:
        """Test that a task ending with a non-OK exit status fails."""
        _qemu(api).status.start.post.return_value = UPID
        api.nodes.return_value.tasks.return_value.status.get.return_value = {
            "status": "stopped",
            "exitstatus": "start failed: QEMU exited with code 1",
        }

        with pytest.raises(ComputeApiError) as exc_info:
            client.start_vm(VmRef(vmid=100, node="pve1"))

        assert "QEMU exited with code 1" in str(exc_info.value)


class TestLookup:
    """Tests for cluster lookups."""

    RESOURCES = [
        {"vmid": 100, "node": "pve2", "type": "qemu", "name": "web-01", "pool": "prod"},
        {"vmid": 101, "node": "pve1", "type": "lxc", "name": "web-01"},
        {"vmid": 102, "node": "pve1", "type": "qemu", "name": "db-01", "hastate": "started"},
    ]

    def test_refs_by_name_skip_containers(self, client: ProxmoxComputeClient, api: MagicMock) -> None:
        """Test that only QEMU guests are matched by name."""
        api.cluster.resources.get.return_value = self.RESOURCES

        refs = client.get_vm_refs_by_name("web-01")

        assert [(r.vmid, r.node, r.pool) for r in refs] == [(100, "pve2", "prod")]

    def test_get_vm_info_refreshes_ref(self, client: ProxmoxComputeClient, api: MagicMock) -> None:
        """Test that node, pool and HA state come from the cluster view."""
        api.cluster.resources.get.return_value = self.RESOURCES
        _qemu(api).config.get.return_value = {"name": "db-01"}
        vmr = VmRef(vmid=102, node="pve9")

        info = client.get_vm_info(vmr)

        assert info == {"name": "db-01"}
        assert (vmr.node, vmr.ha_state) == ("pve1", "started")

    def test_get_vm_info_missing(self, client: ProxmoxComputeClient, api: MagicMock) -> None:
        """Test that an unknown id raises VmNotFoundError."""
        api.cluster.resources.get.return_value = self.RESOURCES

        with pytest.raises(VmNotFoundError):
            client.get_vm_info(VmRef(vmid=999))

    def test_next_vm_id(self, client: ProxmoxComputeClient, api: MagicMock) -> None:
        """Test that the next free id is returned as an integer."""
        api.cluster.nextid.get.return_value = "105"

        assert client.next_vm_id() == 105


class TestUpdateConfig:
    """Tests for configuration pushes."""

    def test_reuses_volumes_and_deletes_removed_devices(
        self, client: ProxmoxComputeClient, api: MagicMock
    ) -> None:
        """Test that attached disks keep their volume and dropped devices are deleted."""
        _qemu(api).config.get.return_value = {
            "name": "web-01",
            "scsi0": "local-lvm:vm-100-disk-0,size=10G",
            "net1": "virtio=AA:BB:CC:DD:EE:02,bridge=vmbr0",
            "ide2": "local-lvm:vm-100-cloudinit,media=cdrom",
        }
        config = ConfigQemu(
            name="web-01",
            disks={0: {"type": "scsi", "storage": "local-lvm", "size": "10G"}},
            networks={0: {"model": "virtio", "bridge": "vmbr0"}},
        )

        client.update_config(VmRef(vmid=100, node="pve1"), config)

        params = _qemu(api).config.post.call_args.kwargs
        assert params["scsi0"] == "local-lvm:vm-100-disk-0"
        assert params["delete"] == "net1"
        api.cluster.ha.resources.post.assert_not_called()

    def test_ha_registration(self, client: ProxmoxComputeClient, api: MagicMock) -> None:
        """Test that a requested HA state registers the VM as an HA resource."""
        _qemu(api).config.get.return_value = {"name": "web-01"}
        vmr = VmRef(vmid=100, node="pve1")

        client.update_config(vmr, ConfigQemu(name="web-01", hastate="started", hagroup="g1"))

        api.cluster.ha.resources.post.assert_called_once_with(
            sid="vm:100", state="started", group="g1"
        )
        assert vmr.ha_state == "started"


class TestPoolsAndAccess:
    """Tests for pools, the guest agent and permissions."""

    def test_pool_move(self, client: ProxmoxComputeClient, api: MagicMock) -> None:
        """Test that moving pools removes from the old and adds to the new."""
        vmr = VmRef(vmid=100, node="pve1", pool="dev")

        client.update_vm_pool(vmr, "prod")

        api.pools.assert_any_call("dev")
        api.pools.assert_any_call("prod")
        assert api.pools.return_value.put.call_args_list[0].kwargs == {"vms": "100", "delete": "1"}
        assert api.pools.return_value.put.call_args_list[1].kwargs == {"vms": "100"}
        assert vmr.pool == "prod"

    def test_agent_interfaces(self, client: ProxmoxComputeClient, api: MagicMock) -> None:
        """Test that guest agent output becomes AgentNetworkInterface records."""
        _qemu(api).agent.return_value.get.return_value = {
            "result": [
                {
                    "name": "eth0",
                    "hardware-address": "aa:bb:cc:dd:ee:01",
                    "ip-addresses": [{"ip-address": "10.0.0.5"}, {"prefix": 24}],
                }
            ]
        }

        interfaces = client.get_agent_network_interfaces(VmRef(vmid=100, node="pve1"))

        assert len(interfaces) == 1
        assert interfaces[0].mac_address == "aa:bb:cc:dd:ee:01"
        assert interfaces[0].ip_addresses == ["10.0.0.5"]
        _qemu(api).agent.assert_called_with("network-get-interfaces")

    def test_permissions(self, client: ProxmoxComputeClient, api: MagicMock) -> None:
        """Test that only granted privileges on / are returned."""
        api.access.permissions.get.return_value = {"/": {"VM.Audit": 1, "Sys.Audit": 0}}

        assert client.get_permissions() == ["VM.Audit"]
