"""Exceptions raised by the Proxmox VE provisioning driver."""

from typing import Optional


class ProvisionerError(Exception):
    """Base exception for provisioning driver errors."""

    pass


class ConfigurationError(ProvisionerError):
    """Invalid or incomplete driver configuration."""

    pass


class ControlPlaneConnectionError(ProvisionerError):
    """The Proxmox API could not be reached or refused authentication."""

    pass


class BootstrapError(ProvisionerError):
    """SSH key import/generation or bootstrap config assembly failed."""

    pass


class InvalidVMID(ProvisionerError, ValueError):
    """A lifecycle operation was attempted without a valid VMID."""

    def __init__(self, vmid: int) -> None:
        super().__init__(f"invalid VMID {vmid}")
        self.vmid = vmid


# === PLACEMENT ===


class PlacementError(ProvisionerError):
    """Base exception for node placement failures."""

    pass


class MissingPlacementConstraint(PlacementError):
    """Neither an explicit node nor an HA group was given."""

    def __init__(self) -> None:
        super().__init__("Cannot automatically choose node without HA group")


class NoAvailableNode(PlacementError):
    """No online node in the HA group can fit the request."""

    def __init__(self, group: str) -> None:
        super().__init__(f"Could not find an available, online node for placement in group {group!r}")
        self.group = group


class BadGroupResponseShape(PlacementError):
    """The HA group lookup did not return a usable node list."""

    def __init__(self, nodes_field: object) -> None:
        super().__init__(f"bad format groups.nodes response {nodes_field!r}")
        self.nodes_field = nodes_field


# === TASKS ===


class TaskError(ProvisionerError):
    """Base exception for asynchronous Proxmox task failures."""

    def __init__(self, message: str, upid: str) -> None:
        super().__init__(message)
        self.upid = upid


class TaskFailed(TaskError):
    """The task finished with a non-OK exit status."""

    def __init__(self, upid: str, exit_status: Optional[str]) -> None:
        super().__init__(f"task failed '{exit_status}'", upid)
        self.exit_status = exit_status


class TaskTimeout(TaskError):
    """The task did not finish before the deadline."""

    def __init__(self, upid: str, timeout: float) -> None:
        super().__init__(f"timed out waiting for task {upid} after {timeout:.0f}s", upid)
        self.timeout = timeout


class NetworkTimeout(ProvisionerError):
    """The guest agent never reported a usable IPv4 address."""

    def __init__(self, vmid: int, attempts: int) -> None:
        super().__init__(f"failed waiting for IP of VM {vmid} after {attempts} attempts")
        self.vmid = vmid
        self.attempts = attempts


class ProvisioningFailed(ProvisionerError):
    """Create failed after the VM object existed; the VM has been torn down."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"provisioning failed: {cause}")
        self.cause = cause
