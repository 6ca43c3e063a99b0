"""Shared test fixtures for pvedriver tests."""

from typing import Dict, Optional
from unittest import mock

import pytest

from pvedriver.config import DriverConfig
from pvedriver.models import TaskStatus
from pvedriver.proxmox_api import ProxmoxClient

GIG = 1024 ** 3


@pytest.fixture
def driver_config() -> DriverConfig:
    """Config for a 2 core / 8GB VM placed via HA group."""
    return DriverConfig(
        host="pve.example.com",
        group="some-group",
        user="root",
        password="secret",
        memory_gb=8,
        cpu_cores=2,
        scsi_disk_size_gb=0,
        machine_name="test-machine",
        ssh_key_path="/tmp/pvedriver-test/id_rsa",
    )


@pytest.fixture
def mock_proxmox():
    """Mock proxmoxer API tree."""
    proxmox = mock.MagicMock()
    proxmox.cluster.nextid.get.return_value = "100"
    proxmox.nodes.get.return_value = []
    proxmox.nodes.return_value.qemu.get.return_value = []
    proxmox.nodes.return_value.tasks.return_value.status.get.return_value = {
        "status": "stopped",
        "exitstatus": "OK",
    }
    return proxmox


@pytest.fixture
def proxmox_client(driver_config, mock_proxmox) -> ProxmoxClient:
    """ProxmoxClient wired to the mock API tree (no connection attempt)."""
    return ProxmoxClient(driver_config, proxmox=mock_proxmox)


class TaskBook:
    """Per-UPID task outcomes for a mocked ProxmoxClient."""

    def __init__(self) -> None:
        self.outcomes: Dict[str, Optional[str]] = {}

    def fail(self, upid: str, exit_status: Optional[str] = "ERROR") -> None:
        self.outcomes[upid] = exit_status

    def status(self, node: str, upid: str) -> TaskStatus:
        return TaskStatus(upid=upid, status="stopped", exit_status=self.outcomes.get(upid, "OK"))


@pytest.fixture
def task_book() -> TaskBook:
    return TaskBook()


@pytest.fixture
def fake_client(task_book):
    """ProxmoxClient double with every lifecycle call returning a distinct UPID."""
    client = mock.MagicMock(spec=ProxmoxClient)
    client.next_vmid.return_value = 123
    client.list_nodes.return_value = []
    client.create_vm.return_value = "UPID:create"
    client.start_vm.return_value = "UPID:start"
    client.shutdown_vm.return_value = "UPID:shutdown"
    client.reboot_vm.return_value = "UPID:reboot"
    client.stop_vm.return_value = "UPID:stop"
    client.delete_vm.return_value = "UPID:delete"
    client.download_url.return_value = "UPID:download"
    client.resize_disk.return_value = None
    client.task_status.side_effect = task_book.status
    client.agent_network_interfaces.return_value = {
        "result": [
            {"name": "lo", "ip-addresses": [{"ip-address-type": "ipv4", "ip-address": "127.0.0.1"}]},
            {"name": "ens18", "ip-addresses": [{"ip-address-type": "ipv4", "ip-address": "10.0.0.1"}]},
        ]
    }
    return client


@pytest.fixture
def fake_bootstrap():
    bootstrap = mock.MagicMock()
    bootstrap.resolve.return_value = b'{"ignition":{"version":"3.4.0"},"passwd":{"users":[]}}'
    return bootstrap


@pytest.fixture
def no_sleep():
    """Skip real sleeps in polling loops and settle windows."""
    with mock.patch("time.sleep") as sleep:
        yield sleep
