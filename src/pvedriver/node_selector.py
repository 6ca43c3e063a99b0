"""Choose the cluster node a new VM should be placed on."""

import logging
from typing import Optional

from pvedriver.exceptions import BadGroupResponseShape, MissingPlacementConstraint, NoAvailableNode
from pvedriver.models import GB, HAGroup, NodeUtilization, PlacementRequest
from pvedriver.proxmox_api import ProxmoxClient

logger = logging.getLogger(__name__)


class NodeSelector:
    """Greedy most-free-memory placement within an HA group.

    Cluster state is read fresh on every call and nothing is reserved, so two
    concurrent placements may pick the same node. Proxmox rejects the create
    if that over-commits it.
    """

    def __init__(self, client: ProxmoxClient):
        self.client = client

    def resolve_group(self, group: str) -> HAGroup:
        record = self.client.get_ha_group(group)
        nodes_field = record.get("nodes") if isinstance(record, dict) else None
        if not isinstance(nodes_field, str):
            raise BadGroupResponseShape(nodes_field)
        return HAGroup.parse(group, nodes_field)

    def select(self, request: PlacementRequest) -> str:
        """Return the node name for the request.

        Raises:
            MissingPlacementConstraint: No explicit node and no HA group
            BadGroupResponseShape: HA group lookup returned no member list
            NoAvailableNode: No online member can fit the request
        """
        if request.explicit_node:
            logger.debug(f"Using explicitly configured node {request.explicit_node}")
            return request.explicit_node
        if not request.ha_group:
            raise MissingPlacementConstraint()

        group = self.resolve_group(request.ha_group)
        logger.debug(f"Looking for availability in {','.join(group.members)}")

        best: Optional[NodeUtilization] = None
        max_avail_mem = 0
        for node in self.client.list_nodes():
            if node.name not in group.members or not node.is_online:
                continue

            usage = NodeUtilization.from_workloads(node, self.client.list_vms(node.name))
            logger.debug(
                f"Node {node.name}: {node.cpu_cores} CPU / {node.memory_bytes // GB}GB total, "
                f"{usage.used_cpu} CPU / {usage.used_memory_bytes // GB}GB used"
            )

            if (
                usage.free_memory_bytes > max_avail_mem
                and usage.used_memory_bytes + request.requested_memory_bytes < node.memory_bytes
                and request.requested_cores + usage.used_cpu < node.cpu_cores
            ):
                best = usage
                max_avail_mem = usage.free_memory_bytes

        if best is None:
            raise NoAvailableNode(request.ha_group)

        logger.info(f"Selected node {best.node.name} ({best.free_memory_bytes // GB}GB free)")
        return best.node.name

    def select_node(self, explicit_node: str, ha_group: str, requested_cores: int, requested_memory: int) -> str:
        return self.select(
            PlacementRequest(
                requested_cores=requested_cores,
                requested_memory_bytes=requested_memory,
                explicit_node=explicit_node,
                ha_group=ha_group,
            )
        )
