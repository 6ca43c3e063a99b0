from typing import Any, Callable, Dict, List, Optional, TypeVar
import functools
import logging

import requests
from proxmoxer import ProxmoxAPI
from proxmoxer.core import AuthenticationError

from pvedriver.config import DriverConfig
from pvedriver.exceptions import ControlPlaneConnectionError
from pvedriver.models import ClusterNode, RunningWorkload, TaskStatus

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Transport and auth failures; API errors (ResourceException) pass through.
CONNECTION_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout, AuthenticationError)


def translate_connection_errors(func: F) -> F:
    """Re-raise transport and auth failures as ControlPlaneConnectionError."""

    @functools.wraps(func)
    def wrapper(self: "ProxmoxClient", *args: Any, **kwargs: Any) -> Any:
        try:
            return func(self, *args, **kwargs)
        except CONNECTION_ERRORS as e:
            logger.error(f"Proxmox at {self.config.host} unreachable during {func.__name__}: {e}")
            raise ControlPlaneConnectionError(f"Cannot reach Proxmox at {self.config.host}: {e}") from e

    return wrapper  # type: ignore[return-value]


class ProxmoxClient:
    """Wrapper around the Proxmox API exposing only what provisioning needs.

    The underlying ProxmoxAPI session is opened on first use and reused for
    the lifetime of this object.
    """

    def __init__(self, config: DriverConfig, proxmox: Optional[Any] = None) -> None:
        self.config = config
        self._proxmox = proxmox

    @property
    def proxmox(self) -> Any:
        return self.ensure_client()

    def ensure_client(self) -> Any:
        """Return the API session, connecting (and authenticating) if needed."""
        if self._proxmox is not None:
            return self._proxmox

        user = f"{self.config.user}@{self.config.realm}"
        logger.debug(f"Connecting to {self.config.host} as {user}")
        try:
            if self.config.api_token:
                token_user, token_value = self.config.api_token.split("=", 1)
                user, token_name = token_user.split("!", 1)
                self._proxmox = ProxmoxAPI(
                    self.config.host,
                    user=user,
                    token_name=token_name,
                    token_value=token_value,
                    verify_ssl=self.config.verify_ssl,
                )
            else:
                self._proxmox = ProxmoxAPI(
                    self.config.host,
                    user=user,
                    password=self.config.password,
                    verify_ssl=self.config.verify_ssl,
                )
        except ValueError as e:
            raise ControlPlaneConnectionError(f"Malformed API token for {self.config.host}: {e}") from e
        except Exception as e:
            logger.error(f"Error connecting to {self.config.host}: {e}")
            raise ControlPlaneConnectionError(f"Cannot connect to Proxmox at {self.config.host}: {e}") from e
        return self._proxmox

    # === CLUSTER ===

    @translate_connection_errors
    def next_vmid(self) -> int:
        """Allocate the next free cluster-wide VMID."""
        return int(self.proxmox.cluster.nextid.get())

    @translate_connection_errors
    def list_nodes(self) -> List[ClusterNode]:
        return [ClusterNode.from_api(n) for n in self.proxmox.nodes.get()]

    @translate_connection_errors
    def get_ha_group(self, group: str) -> Dict[str, Any]:
        """Raw HA group record; members are in the comma-separated 'nodes' field."""
        return self.proxmox.cluster.ha.groups(group).get()  # type: ignore[no-any-return]

    # === WORKLOADS ===

    @translate_connection_errors
    def list_vms(self, node: str) -> List[RunningWorkload]:
        return [RunningWorkload.from_api(vm) for vm in self.proxmox.nodes(node).qemu.get()]

    # === LIFECYCLE ===

    @translate_connection_errors
    def create_vm(self, node: str, **params: Any) -> str:
        """Create a VM definition; returns the task UPID."""
        return self.proxmox.nodes(node).qemu.post(**params)  # type: ignore[no-any-return]

    @translate_connection_errors
    def start_vm(self, vmid: int, node: str) -> str:
        return self.proxmox.nodes(node).qemu(vmid).status.start.post()  # type: ignore[no-any-return]

    @translate_connection_errors
    def shutdown_vm(self, vmid: int, node: str) -> str:
        return self.proxmox.nodes(node).qemu(vmid).status.shutdown.post()  # type: ignore[no-any-return]

    @translate_connection_errors
    def reboot_vm(self, vmid: int, node: str) -> str:
        return self.proxmox.nodes(node).qemu(vmid).status.reboot.post()  # type: ignore[no-any-return]

    @translate_connection_errors
    def stop_vm(self, vmid: int, node: str) -> str:
        """Forced stop (power off)."""
        return self.proxmox.nodes(node).qemu(vmid).status.stop.post()  # type: ignore[no-any-return]

    @translate_connection_errors
    def resize_disk(self, vmid: int, node: str, disk: str, size: str) -> Optional[str]:
        """Grow a disk; newer Proxmox releases return a UPID, older ones nothing."""
        return self.proxmox.nodes(node).qemu(vmid).resize.put(disk=disk, size=size)  # type: ignore[no-any-return]

    @translate_connection_errors
    def delete_vm(self, vmid: int, node: str, purge: bool = True, destroy_unreferenced_disks: bool = True) -> str:
        params = {
            "purge": int(purge),
            "destroy-unreferenced-disks": int(destroy_unreferenced_disks),
        }
        return self.proxmox.nodes(node).qemu(vmid).delete(**params)  # type: ignore[no-any-return]

    @translate_connection_errors
    def vm_status(self, vmid: int, node: str) -> Dict[str, Any]:
        return self.proxmox.nodes(node).qemu(vmid).status.current.get()  # type: ignore[no-any-return]

    # === STORAGE ===

    @translate_connection_errors
    def download_url(self, node: str, storage: str, url: str, filename: str, content: str = "iso") -> str:
        """Have the node fetch a file into storage; returns the task UPID."""
        return self.proxmox.nodes(node).storage(storage)("download-url").post(  # type: ignore[no-any-return]
            content=content, filename=filename, url=url
        )

    # === TASKS / AGENT ===

    @translate_connection_errors
    def task_status(self, node: str, upid: str) -> TaskStatus:
        data = self.proxmox.nodes(node).tasks(upid).status.get()
        return TaskStatus.from_api(upid, data)

    @translate_connection_errors
    def agent_network_interfaces(self, vmid: int, node: str) -> Any:
        """Raw guest agent reply to network-get-interfaces."""
        return self.proxmox.nodes(node).qemu(vmid).agent("network-get-interfaces").get()
