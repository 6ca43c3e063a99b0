"""Turn Proxmox's asynchronous task (UPID) model into blocking calls."""

import logging
import time

from pvedriver.exceptions import TaskFailed, TaskTimeout
from pvedriver.proxmox_api import ProxmoxClient

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5


class TaskPoller:
    """Poll a node's task status endpoint until the task finishes."""

    def __init__(self, client: ProxmoxClient, node: str, poll_interval: float = POLL_INTERVAL):
        self.client = client
        self.node = node
        self.poll_interval = poll_interval

    def await_task(self, upid: str, timeout: float) -> None:
        """Block until the task ends.

        Args:
            upid: Task identifier returned by a state-changing call
            timeout: Seconds to wait before giving up

        Raises:
            TaskFailed: Task ended with a missing or non-OK exit status
            TaskTimeout: Task was still running at the deadline
        """
        deadline = time.time() + timeout
        while time.time() <= deadline:
            task = self.client.task_status(self.node, upid)
            if not task.is_running:
                if not task.succeeded:
                    logger.error(f"Task {upid} on {self.node} failed: {task.exit_status}")
                    raise TaskFailed(upid, task.exit_status)
                logger.debug(f"Task {upid} on {self.node} finished OK")
                return
            time.sleep(self.poll_interval)

        raise TaskTimeout(upid, timeout)
