"""Tests for cli module."""

from unittest import mock

import pytest
from typer.testing import CliRunner

from pvedriver.cli import app
from pvedriver.exceptions import ConfigurationError, NoAvailableNode, ProvisioningFailed, TaskFailed
from pvedriver.models import VMState

runner = CliRunner()


@pytest.fixture
def mock_provisioner():
    with mock.patch("pvedriver.cli.Provisioner") as provisioner_class, mock.patch("pvedriver.config.load_dotenv"):
        provisioner = provisioner_class.return_value
        provisioner.vmid = 123
        provisioner.node = "pve1"
        yield provisioner_class, provisioner


def test_create(mock_provisioner):
    provisioner_class, provisioner = mock_provisioner
    provisioner.create.return_value = "10.0.0.1"

    result = runner.invoke(app, ["create", "--name", "web-1", "--node", "pve1"])

    assert result.exit_code == 0
    assert "10.0.0.1" in result.output
    config = provisioner_class.call_args.args[0]
    assert config.machine_name == "web-1"
    assert config.node == "pve1"


def test_create_failure_exits_nonzero(mock_provisioner):
    _, provisioner = mock_provisioner
    provisioner.create.side_effect = ProvisioningFailed(TaskFailed("UPID:start", "ERROR"))

    result = runner.invoke(app, ["create"])

    assert result.exit_code == 1
    assert "Create failed" in result.output


def test_remove(mock_provisioner):
    provisioner_class, provisioner = mock_provisioner

    result = runner.invoke(app, ["remove", "--vmid", "123", "--node", "pve1"])

    assert result.exit_code == 0
    provisioner.remove.assert_called_once()
    assert provisioner_class.call_args.kwargs["vmid"] == 123


@pytest.mark.parametrize("command, method", [("start", "start"), ("stop", "stop"), ("restart", "restart"), ("kill", "kill")])
def test_power_commands(mock_provisioner, command, method):
    _, provisioner = mock_provisioner

    result = runner.invoke(app, [command, "--vmid", "123", "--node", "pve1"])

    assert result.exit_code == 0
    getattr(provisioner, method).assert_called_once()


def test_state(mock_provisioner):
    _, provisioner = mock_provisioner
    provisioner.get_state.return_value = VMState.RUNNING

    result = runner.invoke(app, ["state", "--vmid", "123", "--node", "pve1"])

    assert result.exit_code == 0
    assert "Running" in result.output


def test_state_error_exits_nonzero(mock_provisioner):
    _, provisioner = mock_provisioner
    provisioner.get_state.return_value = VMState.ERROR

    result = runner.invoke(app, ["state", "--vmid", "123", "--node", "pve1"])

    assert result.exit_code == 1


def test_select_node(mock_provisioner):
    _, provisioner = mock_provisioner
    provisioner.select_node.return_value = "pve2"

    result = runner.invoke(app, ["select-node", "--group", "prod"])

    assert result.exit_code == 0
    assert "pve2" in result.output
    assert provisioner.config.group == "prod"


def test_select_node_failure(mock_provisioner):
    _, provisioner = mock_provisioner
    provisioner.select_node.side_effect = NoAvailableNode("prod")

    result = runner.invoke(app, ["select-node", "--group", "prod"])

    assert result.exit_code == 1


def test_bad_environment_reports_configuration_error(mock_provisioner, monkeypatch):
    """A malformed PROXMOXVE_* value is a clean failure, not a traceback."""
    provisioner_class, _ = mock_provisioner
    monkeypatch.setenv("PROXMOXVE_VM_CORES", "two")

    result = runner.invoke(app, ["start", "--vmid", "1", "--node", "pve1"])

    assert result.exit_code == 1
    assert "PROXMOXVE_VM_CORES" in result.output
    assert not isinstance(result.exception, ConfigurationError)
    provisioner_class.assert_not_called()


def test_bad_environment_on_create(mock_provisioner, monkeypatch):
    monkeypatch.setenv("PROXMOXVE_VM_MEMORY", "8G")

    result = runner.invoke(app, ["create", "--name", "web-1"])

    assert result.exit_code == 1
    assert "Create failed" in result.output


def test_debug_flag_reaches_config(mock_provisioner, monkeypatch):
    provisioner_class, _ = mock_provisioner
    monkeypatch.delenv("PROXMOXVE_DEBUG_DRIVER", raising=False)

    result = runner.invoke(app, ["--debug", "start", "--vmid", "123", "--node", "pve1"])

    assert result.exit_code == 0
    assert provisioner_class.call_args.args[0].debug is True


def test_debug_off_by_default(mock_provisioner, monkeypatch):
    provisioner_class, _ = mock_provisioner
    monkeypatch.delenv("PROXMOXVE_DEBUG_DRIVER", raising=False)

    result = runner.invoke(app, ["start", "--vmid", "123", "--node", "pve1"])

    assert result.exit_code == 0
    assert provisioner_class.call_args.args[0].debug is False
