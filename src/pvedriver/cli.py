#!/usr/bin/env python3
"""
Proxmox VE machine driver CLI.

    pvedriver create --name web-1       # Provision a VM and wait for its IP
    pvedriver state --vmid 123 --node pve1
    pvedriver remove --vmid 123 --node pve1

Connection and VM settings come from PROXMOXVE_* environment variables
(or a .env file); see DriverConfig.
"""

import logging
from typing import Callable, Optional

import typer
from rich.console import Console
from rich.table import Table

from pvedriver.config import DriverConfig
from pvedriver.exceptions import ProvisionerError
from pvedriver.models import VMState
from pvedriver.provisioner import Provisioner

app = typer.Typer(
    name="pvedriver",
    help="Proxmox VE machine provisioning driver",
    add_completion=False
)
console = Console()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


def get_provisioner(
    vmid: int = 0, node: Optional[str] = None, name: Optional[str] = None, debug: bool = False
) -> Provisioner:
    """Build a provisioner from the environment, overriding node and name if given."""
    config = DriverConfig.from_env(machine_name=name)
    if node:
        config.node = node
    config.debug = config.debug or debug
    return Provisioner(config, vmid=vmid)


def _debug_flag(ctx: typer.Context) -> bool:
    return bool((ctx.obj or {}).get("debug", False))


def _run(description: str, action: Callable[[], None]) -> None:
    try:
        action()
    except ProvisionerError as e:
        console.print(f"[red]❌ {description} failed: {e}[/red]")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]❌ {description} failed: {e}[/red]")
        logger.exception(f"{description} error")
        raise typer.Exit(1)


def _run_lifecycle(ctx: typer.Context, description: str, vmid: int, node: str, operation: str) -> None:
    def action() -> None:
        provisioner = get_provisioner(vmid=vmid, node=node, debug=_debug_flag(ctx))
        getattr(provisioner, operation)()

    _run(description, action)


@app.command("create")
def create_vm(
    ctx: typer.Context,
    name: str = typer.Option("default", "--name", "-n", help="Machine name"),
    node: Optional[str] = typer.Option(None, "--node", help="Target node (skips placement)")
) -> None:
    """Create, start and wait for a VM to come up on the network."""
    console.print(f"🆕 Creating VM {name!r}...")

    def action() -> None:
        provisioner = get_provisioner(node=node, name=name, debug=_debug_flag(ctx))
        ip = provisioner.create()
        table = Table(title="Provisioned VM")
        table.add_column("VMID", style="cyan")
        table.add_column("Node", style="blue")
        table.add_column("Name")
        table.add_column("IP", style="green")
        table.add_row(str(provisioner.vmid), provisioner.node, name, ip)
        console.print(table)

    _run("Create", action)


@app.command("remove")
def remove_vm(
    ctx: typer.Context,
    vmid: int = typer.Option(..., "--vmid", help="VM ID"),
    node: str = typer.Option(..., "--node", help="Node the VM runs on")
) -> None:
    """Force-stop and delete a VM with its disks."""
    _run_lifecycle(ctx, "Remove", vmid, node, "remove")
    console.print(f"🗑️  VM {vmid} removed")


@app.command("start")
def start_vm(
    ctx: typer.Context,
    vmid: int = typer.Option(..., "--vmid", help="VM ID"),
    node: str = typer.Option(..., "--node", help="Node the VM runs on")
) -> None:
    """Start a VM."""
    _run_lifecycle(ctx, "Start", vmid, node, "start")
    console.print(f"▶️  VM {vmid} started")


@app.command("stop")
def stop_vm(
    ctx: typer.Context,
    vmid: int = typer.Option(..., "--vmid", help="VM ID"),
    node: str = typer.Option(..., "--node", help="Node the VM runs on")
) -> None:
    """Gracefully shut down a VM."""
    _run_lifecycle(ctx, "Stop", vmid, node, "stop")
    console.print(f"⏹️  VM {vmid} stopped")


@app.command("restart")
def restart_vm(
    ctx: typer.Context,
    vmid: int = typer.Option(..., "--vmid", help="VM ID"),
    node: str = typer.Option(..., "--node", help="Node the VM runs on")
) -> None:
    """Reboot a VM."""
    _run_lifecycle(ctx, "Restart", vmid, node, "restart")
    console.print(f"🔄 VM {vmid} restarted")


@app.command("kill")
def kill_vm(
    ctx: typer.Context,
    vmid: int = typer.Option(..., "--vmid", help="VM ID"),
    node: str = typer.Option(..., "--node", help="Node the VM runs on")
) -> None:
    """Force-stop a VM."""
    _run_lifecycle(ctx, "Kill", vmid, node, "kill")
    console.print(f"⏹️  VM {vmid} killed")


@app.command("state")
def vm_state(
    ctx: typer.Context,
    vmid: int = typer.Option(..., "--vmid", help="VM ID"),
    node: str = typer.Option(..., "--node", help="Node the VM runs on")
) -> None:
    """Show the state of a VM."""
    result = {}

    def action() -> None:
        provisioner = get_provisioner(vmid=vmid, node=node, debug=_debug_flag(ctx))
        result["state"] = provisioner.get_state()

    _run("State", action)
    state = result["state"]
    style = {VMState.RUNNING: "green", VMState.STOPPED: "yellow"}.get(state, "red")
    console.print(f"VM {vmid}: [{style}]{state.value}[/{style}]")
    if state == VMState.ERROR:
        raise typer.Exit(1)


@app.command("select-node")
def select_node(
    ctx: typer.Context,
    group: Optional[str] = typer.Option(None, "--group", "-g", help="HA group to place into")
) -> None:
    """Show which node a new VM would be placed on."""
    result = {}

    def action() -> None:
        provisioner = get_provisioner(debug=_debug_flag(ctx))
        if group:
            provisioner.config.group = group
        result["node"] = provisioner.select_node()

    _run("Placement", action)
    console.print(f"📍 {result['node']}")


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging")
) -> None:
    """
    Proxmox VE machine provisioning driver.

    Creates VMs with automatic node placement and rollback on failure.
    """
    ctx.obj = {"debug": debug}
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)


if __name__ == "__main__":
    app()
