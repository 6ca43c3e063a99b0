import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from pvedriver.exceptions import ConfigurationError
from pvedriver.models import GB


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


@dataclass
class DriverConfig:
    """Resolved driver settings for one machine.

    Loaded from PROXMOXVE_* environment variables (and a .env file if present).
    """

    host: str = "192.168.1.253"
    node: str = ""
    group: str = ""
    user: str = "root"
    password: str = ""
    realm: str = "pam"
    api_token: Optional[str] = None
    pool: str = ""
    verify_ssl: bool = False

    memory_gb: int = 8
    cpu_cores: int = 2
    scsi: str = ""
    scsi_import: str = ""
    scsi_disk_size_gb: int = 32
    net_bridge: str = "vmbr0"
    net_vlan_tag: int = 0

    iso_url: str = ""
    iso_filename: str = ""
    iso_storage: str = "local"

    machine_name: str = "default"
    ssh_user: str = "rancher"
    ssh_import_id: str = ""
    ssh_port: int = 22
    ssh_key_path: str = ""

    debug: bool = False

    @property
    def memory_bytes(self) -> int:
        return self.memory_gb * GB

    @property
    def memory_mb(self) -> int:
        return self.memory_gb * 1024

    def get_ssh_key_path(self) -> str:
        if self.ssh_key_path:
            return os.path.expanduser(self.ssh_key_path)
        return os.path.expanduser(f"~/.docker/machine/machines/{self.machine_name}/id_rsa")

    def validate(self) -> None:
        """Raise ConfigurationError if the settings cannot describe a VM."""
        if not self.host:
            raise ConfigurationError("PROXMOXVE_PROXMOX_HOST is required")
        if self.cpu_cores < 1:
            raise ConfigurationError(f"cpu_cores must be positive, got {self.cpu_cores}")
        if self.memory_gb < 1:
            raise ConfigurationError(f"memory_gb must be positive, got {self.memory_gb}")
        if self.scsi_disk_size_gb < 0:
            raise ConfigurationError(f"scsi_disk_size_gb must not be negative, got {self.scsi_disk_size_gb}")
        if self.iso_url and not self.iso_filename:
            raise ConfigurationError("PROXMOXVE_VM_ISO_FILENAME is required when PROXMOXVE_VM_ISO_URL is set")

    @classmethod
    def from_env(cls, machine_name: Optional[str] = None) -> "DriverConfig":
        """Build a config from the environment."""
        load_dotenv()

        return cls(
            host=os.getenv("PROXMOXVE_PROXMOX_HOST", "192.168.1.253"),
            node=os.getenv("PROXMOXVE_PROXMOX_NODE", ""),
            group=os.getenv("PROXMOXVE_PROXMOX_GROUP", ""),
            user=os.getenv("PROXMOXVE_PROXMOX_USER_NAME", "root"),
            password=os.getenv("PROXMOXVE_PROXMOX_USER_PASSWORD", ""),
            realm=os.getenv("PROXMOXVE_PROXMOX_REALM", "pam"),
            api_token=os.getenv("PROXMOXVE_PROXMOX_API_TOKEN") or None,
            pool=os.getenv("PROXMOXVE_PROXMOX_POOL", ""),
            verify_ssl=_env_bool("PROXMOXVE_PROXMOX_VERIFY_SSL"),
            memory_gb=_env_int("PROXMOXVE_VM_MEMORY", 8),
            cpu_cores=_env_int("PROXMOXVE_VM_CORES", 2),
            scsi=os.getenv("PROXMOXVE_VM_SCSI", ""),
            scsi_import=os.getenv("PROXMOXVE_VM_SCSI_IMPORT", ""),
            scsi_disk_size_gb=_env_int("PROXMOXVE_VM_SCSI_SIZE", 32),
            net_bridge=os.getenv("PROXMOXVE_VM_NET_BRIDGE", "vmbr0"),
            net_vlan_tag=_env_int("PROXMOXVE_VM_NET_TAG", 0),
            iso_url=os.getenv("PROXMOXVE_VM_ISO_URL", ""),
            iso_filename=os.getenv("PROXMOXVE_VM_ISO_FILENAME", ""),
            iso_storage=os.getenv("PROXMOXVE_VM_ISO_STORAGE", "local"),
            machine_name=machine_name or os.getenv("PROXMOXVE_MACHINE_NAME", "default"),
            ssh_user=os.getenv("PROXMOXVE_SSH_USERNAME", "rancher"),
            ssh_import_id=os.getenv("PROXMOXVE_SSH_IMPORT_ID", ""),
            ssh_port=_env_int("PROXMOXVE_SSH_PORT", 22),
            ssh_key_path=os.getenv("PROXMOXVE_SSH_KEY_PATH", ""),
            debug=_env_bool("PROXMOXVE_DEBUG_DRIVER"),
        )
