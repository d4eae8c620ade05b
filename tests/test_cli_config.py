import pytest
import yaml
from click.testing import CliRunner
from deplorch.cli import main
from deplorch.config import DeplorchConfig

@pytest.fixture
def runner():
    return CliRunner()

def test_init_command_creates_files(runner, tmp_path, monkeypatch):
    home = tmp_path / "custom_home"
    monkeypatch.setenv("DEPLORCH_HOME", str(home))

    result = runner.invoke(main, ["init"])
    assert result.exit_code == 0
    assert "Initialized deplorch config" in result.output

    assert (home / "config.yaml").exists()
    assert (home / ".env").exists()

    cfg = yaml.safe_load((home / "config.yaml").read_text())
    assert cfg["manifest_path"] == "deployedContracts.json"
    assert cfg["run_store_root"] == str(home / "runs")
    DeplorchConfig.from_dict(cfg)

def test_init_does_not_overwrite_without_force(runner, tmp_path, monkeypatch):
    home = tmp_path / "custom_home"
    monkeypatch.setenv("DEPLORCH_HOME", str(home))
    home.mkdir(parents=True)

    (home / "config.yaml").write_text("existing: true")

    result = runner.invoke(main, ["init"])
    assert result.exit_code == 1
    assert "Config already exists" in result.output

    assert (home / "config.yaml").read_text() == "existing: true"

def test_init_force_overwrites(runner, tmp_path, monkeypatch):
    home = tmp_path / "custom_home"
    monkeypatch.setenv("DEPLORCH_HOME", str(home))
    home.mkdir(parents=True)

    (home / "config.yaml").write_text("existing: true")

    result = runner.invoke(main, ["init", "--force"])
    assert result.exit_code == 0

    cfg = yaml.safe_load((home / "config.yaml").read_text())
    assert "topology_path" in cfg

def test_init_keeps_existing_env(runner, tmp_path, monkeypatch):
    home = tmp_path / "custom_home"
    monkeypatch.setenv("DEPLORCH_HOME", str(home))
    home.mkdir(parents=True)
    (home / ".env").write_text("DEPLORCH_RPC_URL=http://mine\n")

    result = runner.invoke(main, ["init"])
    assert result.exit_code == 0
    assert (home / ".env").read_text() == "DEPLORCH_RPC_URL=http://mine\n"

def test_command_without_config_fails(runner, tmp_path, monkeypatch):
    monkeypatch.setenv("DEPLORCH_HOME", str(tmp_path / "missing"))

    result = runner.invoke(main, ["plan"])
    assert result.exit_code == 1
    assert "Config not loaded" in result.output
    assert "deplorch init" in result.output

def test_init_then_plan_uses_bundled_topology(runner, tmp_path, monkeypatch):
    home = tmp_path / "custom_home"
    monkeypatch.setenv("DEPLORCH_HOME", str(home))

    result = runner.invoke(main, ["init"])
    assert result.exit_code == 0
    assert "Copied bundled topology 'mosh'" in result.output
    cfg = yaml.safe_load((home / "config.yaml").read_text())
    assert cfg["topology_path"] == str(home / "topology.yaml")

    result = runner.invoke(main, ["plan"])
    assert result.exit_code == 0, result.output
    assert "Topology: mosh" in result.output
    assert "1. Ticket <- EventManager (placeholder)" in result.output

def test_init_keeps_edited_topology(runner, tmp_path, monkeypatch):
    home = tmp_path / "custom_home"
    monkeypatch.setenv("DEPLORCH_HOME", str(home))
    home.mkdir(parents=True)
    (home / "topology.yaml").write_text("topology: mine\n")

    result = runner.invoke(main, ["init"])
    assert result.exit_code == 0
    assert (home / "topology.yaml").read_text() == "topology: mine\n"

def test_init_unknown_topology(runner, tmp_path, monkeypatch):
    monkeypatch.setenv("DEPLORCH_HOME", str(tmp_path / "custom_home"))

    result = runner.invoke(main, ["init", "--topology", "nope"])
    assert result.exit_code == 1
    assert "No bundled topology 'nope'" in result.output
    assert not (tmp_path / "custom_home").exists()
