#!/usr/bin/env python3
"""
src/pvedriver/provisioner.py

Provision and manage a single Proxmox VE VM for a machine-management tool.

Create is a small saga: once the VM definition exists a "remove VM"
compensation is registered, and any later failure unwinds it before the
error is returned. A VM either reaches network-ready or is gone.
"""

import logging
import time
from typing import Any, Optional

from pvedriver.bootstrap import IgnitionBootstrap
from pvedriver.config import DriverConfig
from pvedriver.exceptions import InvalidVMID, ProvisionerError, ProvisioningFailed
from pvedriver.models import ProvisioningSession, ProvisioningStage, VMIdentity, VMState
from pvedriver.network_waiter import NetworkWaiter
from pvedriver.node_selector import NodeSelector
from pvedriver.proxmox_api import ProxmoxClient
from pvedriver.retry import retry
from pvedriver.task_poller import TaskPoller

logger = logging.getLogger(__name__)

CREATE_TIMEOUT = 2 * 60
START_TIMEOUT = 2 * 60
LIFECYCLE_TIMEOUT = 10 * 60
DOWNLOAD_TIMEOUT = 10 * 60

SETTLE_DELAY = 10
RESIZE_RETRY_DELAY = 10
RESIZE_ATTEMPTS = 10


class Provisioner:
    """Driver facade over one VM: create/remove and power lifecycle."""

    def __init__(
        self,
        config: DriverConfig,
        client: Optional[ProxmoxClient] = None,
        bootstrap: Optional[Any] = None,
        vmid: int = 0,
    ):
        """
        Args:
            config: Resolved driver settings
            client: Proxmox client; one is created (lazily connecting) if omitted
            bootstrap: Object with resolve() -> bytes; defaults to IgnitionBootstrap
            vmid: VMID of an existing VM to manage, 0 if none yet
        """
        self.config = config
        self.client = client or ProxmoxClient(config)
        self.bootstrap = bootstrap or IgnitionBootstrap(config)
        self.identity = VMIdentity(vmid=vmid, node=config.node, name=config.machine_name)
        self.ip_address = ""
        self.session: Optional[ProvisioningSession] = None

    @property
    def vmid(self) -> int:
        return self.identity.vmid

    @property
    def node(self) -> str:
        return self.identity.node

    def _debug(self, msg: str) -> None:
        if self.config.debug:
            logger.info(msg)
        else:
            logger.debug(msg)

    def _require_vmid(self) -> None:
        if not self.identity.is_valid:
            raise InvalidVMID(self.vmid)

    # === SUB-CONTRACTS ===

    def select_node(self) -> str:
        return NodeSelector(self.client).select_node(
            self.config.node, self.config.group, self.config.cpu_cores, self.config.memory_bytes
        )

    def await_task(self, upid: str, timeout: float) -> None:
        TaskPoller(self.client, self.node).await_task(upid, timeout)

    def await_network(self) -> str:
        return NetworkWaiter(self.client).await_network(self.vmid, self.node)

    # === CREATE ===

    def _create_params(self, blob: bytes) -> dict:
        fw_cfg = "name=opt/com.coreos/config,string='{}'".format(blob.decode().replace(",", ",,"))
        net = f"virtio,bridge={self.config.net_bridge}"
        if self.config.net_vlan_tag:
            net += f",tag={self.config.net_vlan_tag}"

        params = {
            "vmid": self.vmid,
            "name": self.identity.name,
            "memory": self.config.memory_mb,
            "cores": self.config.cpu_cores,
            "net0": net,
            "agent": "enabled=1",
            "serial0": "socket",
            "args": f"-fw_cfg {fw_cfg}",
        }
        if self.config.pool:
            params["pool"] = self.config.pool
        if self.config.scsi:
            scsi = self.config.scsi
            if self.config.scsi_import:
                scsi += f",import-from={self.config.scsi_import}"
            params["scsi0"] = scsi
        if self.config.iso_url:
            params["ide2"] = f"{self.config.iso_storage}:iso/{self.config.iso_filename},media=cdrom"
        return params

    def _download_iso(self) -> None:
        self._debug(f"Downloading {self.config.iso_url} to {self.config.iso_storage} on {self.node}")
        upid = self.client.download_url(
            self.node, self.config.iso_storage, self.config.iso_url, self.config.iso_filename
        )
        self.await_task(upid, DOWNLOAD_TIMEOUT)

    def _resize_disk(self) -> None:
        size = f"{self.config.scsi_disk_size_gb}G"
        self._debug(f"Resizing scsi0 of VM {self.vmid} to {size}")
        upid = self.client.resize_disk(self.vmid, self.node, "scsi0", size)
        if isinstance(upid, str) and upid.startswith("UPID:"):
            self.await_task(upid, CREATE_TIMEOUT)

    def create(self) -> str:
        """
        Create, start and wait for the VM to come up on the network.

        Returns:
            The VM's IPv4 address

        Raises:
            ProvisioningFailed: A step failed after the VM existed; it was removed
            ProvisionerError: A step failed before any VM object existed
        """
        self.config.validate()
        session = ProvisioningSession()
        self.session = session

        self._debug("getting next vmid")
        self.identity.vmid = self.client.next_vmid()
        session.vmid = self.vmid
        session.advance(ProvisioningStage.ALLOCATED)
        self._debug(f"Next ID is '{self.vmid}'")

        blob = self.bootstrap.resolve()
        self.identity.node = self.select_node()

        if self.config.iso_url:
            self._download_iso()

        upid = self.client.create_vm(self.node, **self._create_params(blob))
        self.await_task(upid, CREATE_TIMEOUT)

        session.register("remove VM", self.remove)
        session.advance(ProvisioningStage.DEFINED)

        try:
            if self.config.scsi and self.config.scsi_disk_size_gb > 0:
                time.sleep(SETTLE_DELAY)
                retry(self._resize_disk, RESIZE_RETRY_DELAY, RESIZE_ATTEMPTS)

            self.start()
            session.advance(ProvisioningStage.STARTED)

            self._debug(f"waiting for VM to start, wait {SETTLE_DELAY} seconds")
            time.sleep(SETTLE_DELAY)

            ip = self.await_network()
        except BaseException as e:
            logger.error(f"Provisioning VM {self.vmid} on {self.node} failed, rolling back: {e!r}")
            session.compensate()
            # Interrupts and exits keep their type once the VM is gone
            if not isinstance(e, Exception):
                raise
            raise ProvisioningFailed(e) from e

        session.complete(ip)
        self.ip_address = ip
        logger.info(f"VM {self.identity.name!r} (vmid={self.vmid}) is ready at {ip}")
        return ip

    # === LIFECYCLE ===

    def start(self) -> None:
        self._require_vmid()
        self._debug(f"Starting VM {self.vmid}")
        self.await_task(self.client.start_vm(self.vmid, self.node), START_TIMEOUT)

    def stop(self) -> None:
        """Graceful ACPI shutdown."""
        self._require_vmid()
        self._debug(f"Shutting down VM {self.vmid}")
        self.await_task(self.client.shutdown_vm(self.vmid, self.node), LIFECYCLE_TIMEOUT)

    def restart(self) -> None:
        self._require_vmid()
        self._debug(f"Rebooting VM {self.vmid}")
        self.await_task(self.client.reboot_vm(self.vmid, self.node), LIFECYCLE_TIMEOUT)

    def kill(self) -> None:
        """Forced stop."""
        self._require_vmid()
        self._debug(f"Stopping VM {self.vmid}")
        self.await_task(self.client.stop_vm(self.vmid, self.node), LIFECYCLE_TIMEOUT)

    def remove(self) -> None:
        """Force-stop then delete the VM with all its disks. No-op without a VMID."""
        if self.vmid < 1:
            return

        try:
            self.kill()
        except Exception as e:
            logger.warning(
                f"Error stopping VM {self.vmid} before delete, continuing: {e}",
                extra={"vmid": self.vmid, "node": self.node, "error": str(e)},
            )

        self._debug(f"Deleting VM {self.vmid}")
        upid = self.client.delete_vm(self.vmid, self.node, purge=True, destroy_unreferenced_disks=True)
        self.await_task(upid, LIFECYCLE_TIMEOUT)

    def get_state(self) -> VMState:
        self._require_vmid()
        try:
            status = self.client.vm_status(self.vmid, self.node).get("status")
        except Exception as e:
            logger.error(f"Error checking VM {self.vmid}: {e}")
            return VMState.ERROR

        if status == "stopped":
            return VMState.STOPPED
        if status == "running":
            return VMState.RUNNING
        return VMState.ERROR

    # === FACADE HELPERS ===

    def get_ip(self) -> str:
        if not self.ip_address:
            raise ProvisionerError(f"IP address of VM {self.vmid} is not known")
        return self.ip_address

    def get_ssh_hostname(self) -> str:
        return self.get_ip()

    def get_ssh_port(self) -> int:
        return self.config.ssh_port

    def get_ssh_username(self) -> str:
        return self.config.ssh_user

    def get_url(self) -> str:
        return f"tcp://{self.get_ip()}:2376"
