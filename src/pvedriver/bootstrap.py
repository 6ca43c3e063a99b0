#!/usr/bin/env python3
"""
src/pvedriver/bootstrap.py

Build the Ignition document handed to a new VM through QEMU fw_cfg:
SSH keys imported from GitHub/Launchpad plus a freshly generated machine key,
and a systemd unit that layers qemu-guest-agent so the network wait can see
the guest's address.
"""

import json
import logging
import os
from typing import Any, Dict, List

import paramiko
import requests

from pvedriver.config import DriverConfig
from pvedriver.exceptions import BootstrapError

logger = logging.getLogger(__name__)

IGNITION_VERSION = "3.4.0"

KEY_IMPORT_URLS = {
    "gh": "https://github.com/{user}.keys",
    "lp": "https://launchpad.net/~{user}/+sshkeys",
}

GUEST_AGENT_UNIT_NAME = "rpm-ostree-install-qemu-guest-agent.service"
GUEST_AGENT_UNIT = """
[Unit]
Description=Layer qemu-guest-agent with rpm-ostree
Wants=network-online.target
After=network-online.target
Before=zincati.service
ConditionPathExists=!/var/lib/%N.stamp

[Service]
Type=oneshot
RemainAfterExit=yes
ExecStart=/usr/bin/rpm-ostree install --apply-live --allow-inactive qemu-guest-agent
ExecStart=/bin/systemctl --now enable qemu-guest-agent
ExecStart=/bin/touch /var/lib/%N.stamp

[Install]
WantedBy=multi-user.target
"""


def import_ssh_keys(import_id: str, timeout: int = 30) -> List[str]:
    """
    Fetch public keys for an import id like 'gh:octocat' or 'lp:someone'.

    Args:
        import_id: '<source>:<username>', empty for no import
        timeout: HTTP timeout in seconds

    Returns:
        One entry per non-blank line of the key listing

    Raises:
        BootstrapError: Malformed id, unknown source, or non-200 response
    """
    if not import_id:
        return []

    parts = import_id.split(":")
    if len(parts) != 2:
        raise BootstrapError(f"Invalid import id {import_id} should look like gh:UserName")
    source, user = parts
    if source not in KEY_IMPORT_URLS:
        raise BootstrapError(f"Invalid import type should be one of (gh, lp) got '{source}'")

    url = KEY_IMPORT_URLS[source].format(user=user)
    logger.debug(f"Importing SSH keys from {url}")
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise BootstrapError(f"Failed to fetch SSH keys from {url}: {e}") from e
    if resp.status_code != 200:
        raise BootstrapError(f"received non 200 from key import '{resp.status_code}'")

    return [line.strip() for line in resp.text.splitlines() if line.strip()]


def generate_ssh_key(key_path: str, bits: int = 2048) -> str:
    """Create an RSA key pair at key_path / key_path.pub and return the public line."""
    logger.debug(f"Creating new SSH keypair at {key_path}")
    try:
        os.makedirs(os.path.dirname(key_path) or ".", exist_ok=True)
        key = paramiko.RSAKey.generate(bits)
        key.write_private_key_file(key_path)
        public = f"{key.get_name()} {key.get_base64()}"
        with open(key_path + ".pub", "w") as f:
            f.write(public + "\n")
    except (OSError, paramiko.SSHException) as e:
        raise BootstrapError(f"could not generate ssh key: {e}") from e
    return public


def build_ignition_config(ssh_user: str, keys: List[str]) -> Dict[str, Any]:
    """Ignition document creating ssh_user with the given authorized keys."""
    return {
        "ignition": {"version": IGNITION_VERSION},
        "passwd": {
            "users": [
                {
                    "name": ssh_user,
                    "groups": ["wheel", "sudo"],
                    "sshAuthorizedKeys": keys,
                }
            ]
        },
        "systemd": {
            "units": [
                {
                    "name": GUEST_AGENT_UNIT_NAME,
                    "enabled": True,
                    "contents": GUEST_AGENT_UNIT,
                }
            ]
        },
    }


class IgnitionBootstrap:
    """Default bootstrap collaborator for the provisioner."""

    def __init__(self, config: DriverConfig):
        self.config = config

    def resolve(self) -> bytes:
        """Return the compact JSON Ignition config as bytes."""
        keys = import_ssh_keys(self.config.ssh_import_id)
        keys.append(generate_ssh_key(self.config.get_ssh_key_path()))
        cfg = build_ignition_config(self.config.ssh_user, keys)
        return json.dumps(cfg, separators=(",", ":")).encode()
