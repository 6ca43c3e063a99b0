"""Data models for cluster placement and VM provisioning."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

GB = 1024 ** 3


class VMState(Enum):
    """Machine state reported to the driver facade."""

    RUNNING = "Running"
    STOPPED = "Stopped"
    ERROR = "Error"


class ProvisioningStage(Enum):
    """Lifecycle stage of a single provisioning session."""

    UNPROVISIONED = "unprovisioned"
    ALLOCATED = "allocated"
    DEFINED = "defined"
    STARTED = "started"
    NETWORK_READY = "network_ready"
    TEARING_DOWN = "tearing_down"
    REMOVED = "removed"


@dataclass
class ClusterNode:
    """A Proxmox cluster node as returned by /nodes."""

    name: str
    status: str
    cpu_cores: int
    memory_bytes: int

    @property
    def is_online(self) -> bool:
        return self.status == "online"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ClusterNode":
        return cls(
            name=data["node"],
            status=data.get("status", "unknown"),
            cpu_cores=int(data.get("maxcpu", 0)),
            memory_bytes=int(data.get("maxmem", 0)),
        )


@dataclass
class RunningWorkload:
    """A QEMU VM on a node, reduced to what placement needs."""

    cpu_cores: int
    memory_bytes: int
    status: str

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RunningWorkload":
        return cls(
            cpu_cores=int(data.get("cpus", 0)),
            memory_bytes=int(data.get("maxmem", 0)),
            status=data.get("status", "unknown"),
        )


@dataclass
class HAGroup:
    """An HA group and its ordered member nodes."""

    name: str
    members: List[str] = field(default_factory=list)

    @classmethod
    def parse(cls, name: str, nodes_csv: str) -> "HAGroup":
        """Parse a comma-separated member list.

        Proxmox allows ``node:priority`` entries; only the node name is kept.
        """
        members = []
        for entry in nodes_csv.strip().split(","):
            node = entry.split(":", 1)[0].strip()
            if node:
                members.append(node)
        return cls(name=name, members=members)


@dataclass
class PlacementRequest:
    """Where and how big a new VM should be."""

    requested_cores: int
    requested_memory_bytes: int
    explicit_node: str = ""
    ha_group: str = ""


@dataclass
class NodeUtilization:
    """Used capacity on a node, summed over running workloads."""

    node: ClusterNode
    used_cpu: int = 0
    used_memory_bytes: int = 0

    @property
    def free_memory_bytes(self) -> int:
        return self.node.memory_bytes - self.used_memory_bytes

    @classmethod
    def from_workloads(cls, node: ClusterNode, workloads: List[RunningWorkload]) -> "NodeUtilization":
        running = [w for w in workloads if w.is_running]
        return cls(
            node=node,
            used_cpu=sum(w.cpu_cores for w in running),
            used_memory_bytes=sum(w.memory_bytes for w in running),
        )


@dataclass
class TaskStatus:
    """Status of an asynchronous Proxmox task (UPID)."""

    upid: str
    status: str
    exit_status: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    @property
    def succeeded(self) -> bool:
        return not self.is_running and self.exit_status == "OK"

    @classmethod
    def from_api(cls, upid: str, data: Dict[str, Any]) -> "TaskStatus":
        return cls(upid=upid, status=data.get("status", ""), exit_status=data.get("exitstatus"))


@dataclass
class VMIdentity:
    """VMID, node and machine name of a provisioned VM."""

    vmid: int = 0
    node: str = ""
    name: str = ""

    @property
    def is_valid(self) -> bool:
        return self.vmid > 0


Compensation = Tuple[str, Callable[[], Any]]


@dataclass
class ProvisioningSession:
    """Transient state threaded through a single Create call.

    Compensations are pushed as steps with remote side effects complete and
    are unwound in reverse order when a later step fails.
    """

    vmid: int = 0
    stage: ProvisioningStage = ProvisioningStage.UNPROVISIONED
    ip_address: str = ""
    compensations: List[Compensation] = field(default_factory=list)

    @property
    def dangling(self) -> bool:
        return bool(self.compensations)

    def advance(self, stage: ProvisioningStage) -> None:
        logger.debug(f"session vmid={self.vmid}: {self.stage.value} -> {stage.value}")
        self.stage = stage

    def register(self, description: str, action: Callable[[], Any]) -> None:
        self.compensations.append((description, action))

    def complete(self, ip_address: str) -> None:
        self.ip_address = ip_address
        self.compensations.clear()
        self.advance(ProvisioningStage.NETWORK_READY)

    def compensate(self) -> None:
        """Run registered compensations newest first; errors are logged only."""
        self.advance(ProvisioningStage.TEARING_DOWN)
        while self.compensations:
            description, action = self.compensations.pop()
            try:
                action()
            except Exception as e:
                logger.error(f"Error during rollback step '{description}' for VM {self.vmid}: {e}")
        self.advance(ProvisioningStage.REMOVED)
