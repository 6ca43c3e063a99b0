"""Wait for a freshly booted VM to report an IPv4 address via the guest agent."""

import logging
import time
from typing import Any, Optional

from pvedriver.exceptions import NetworkTimeout
from pvedriver.proxmox_api import ProxmoxClient

logger = logging.getLogger(__name__)

LOOPBACK_IFACE = "lo"
LOOPBACK_IPV4 = "127.0.0.1"


def find_ipv4_address(payload: Any) -> Optional[str]:
    """Return the first non-loopback IPv4 address in a network-get-interfaces reply.

    Anything that does not look like the agent's reply yields None.
    """
    if not isinstance(payload, dict):
        return None
    nics = payload.get("result")
    if not isinstance(nics, list):
        return None

    for nic in nics:
        if not isinstance(nic, dict) or nic.get("name") == LOOPBACK_IFACE:
            continue
        addresses = nic.get("ip-addresses") or []
        if not isinstance(addresses, list):
            continue
        for addr in addresses:
            if not isinstance(addr, dict):
                continue
            if addr.get("ip-address-type") == "ipv4" and addr.get("ip-address") not in (None, "", LOOPBACK_IPV4):
                return str(addr["ip-address"])
    return None


class NetworkWaiter:
    """Poll the QEMU guest agent until the VM has a usable address."""

    def __init__(self, client: ProxmoxClient, max_attempts: int = 60, interval: float = 5.0):
        self.client = client
        self.max_attempts = max_attempts
        self.interval = interval

    def check_ip(self, vmid: int, node: str) -> Optional[str]:
        """Single attempt; agent errors count as 'no address yet'."""
        try:
            payload = self.client.agent_network_interfaces(vmid, node)
        except Exception as e:
            logger.debug(f"Guest agent on VM {vmid} not answering yet: {e}")
            return None
        logger.debug(f"agent-resp: {payload}")
        return find_ipv4_address(payload)

    def await_network(self, vmid: int, node: str) -> str:
        """Return the VM's IPv4 address or raise NetworkTimeout."""
        for attempt in range(1, self.max_attempts + 1):
            ip = self.check_ip(vmid, node)
            if ip:
                logger.info(f"VM {vmid} is reachable at {ip}")
                return ip
            logger.debug(f"Waiting for VM {vmid} network ({attempt}/{self.max_attempts})")
            if attempt < self.max_attempts:
                time.sleep(self.interval)
        raise NetworkTimeout(vmid, self.max_attempts)
