"""
Configuration management for deplorch.

Loads $DEPLORCH_HOME/config.yaml (default ~/.config/deplorch/config.yaml),
optionally loading an env file first so secrets stay out of the YAML.
"""

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from deplorch.errors import ConfigError


DEFAULT_HOME = "~/.config/deplorch"
RPC_URL_ENV = "DEPLORCH_RPC_URL"

LOG_FORMATS = ("pretty", "structured")


@dataclass
class DeplorchConfig:
    """
    Resolved deplorch configuration.

    Paths are stored as given and expanded on access via the *_dir/_file
    properties, so the YAML round-trips unchanged.
    """
    topology_path: str
    artifacts_root: str
    manifest_path: str
    rpc_url: str = "http://127.0.0.1:8545"
    interfaces_dir: Optional[str] = None
    run_store_root: str = "~/.local/share/deplorch/runs"
    confirmations: int = 1
    confirmation_timeout_s: float = 120.0
    poll_interval_s: float = 1.0
    request_timeout_s: float = 30.0
    max_attempts: int = 1
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    def __post_init__(self):
        if self.confirmations < 1:
            raise ConfigError("confirmations must be >= 1")
        if self.confirmation_timeout_s <= 0:
            raise ConfigError("confirmation_timeout_s must be > 0")
        if self.poll_interval_s < 0:
            raise ConfigError("poll_interval_s must be >= 0")
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be >= 1")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(
                f"log_format must be one of {LOG_FORMATS}, got '{self.log_format}'"
            )

    @property
    def topology_file(self) -> Path:
        return Path(self.topology_path).expanduser()

    @property
    def artifacts_dir(self) -> Path:
        return Path(self.artifacts_root).expanduser()

    @property
    def manifest_file(self) -> Path:
        return Path(self.manifest_path).expanduser()

    @property
    def interfaces_path(self) -> Optional[Path]:
        if not self.interfaces_dir:
            return None
        return Path(self.interfaces_dir).expanduser()

    @property
    def run_store_dir(self) -> Path:
        return Path(self.run_store_root).expanduser()

    @property
    def log_path(self) -> Optional[Path]:
        if not self.log_file:
            return None
        return Path(self.log_file).expanduser()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeplorchConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {unknown}")
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(f"Invalid config: {e}") from e


def get_deplorch_home() -> Path:
    """Return the deplorch home directory ($DEPLORCH_HOME or ~/.config/deplorch)."""
    home = os.environ.get("DEPLORCH_HOME")
    if home:
        return Path(home)
    return Path(DEFAULT_HOME).expanduser()


def default_config_dict(home: Path) -> dict[str, Any]:
    """Default config written by `deplorch init`."""
    return {
        "topology_path": str(home / "topology.yaml"),
        "artifacts_root": "artifacts",
        "manifest_path": "deployedContracts.json",
        "interfaces_dir": "frontend/src/abis",
        "rpc_url": "http://127.0.0.1:8545",
        "run_store_root": str(home / "runs"),
        "confirmations": 1,
        "confirmation_timeout_s": 120.0,
        "poll_interval_s": 1.0,
        "log_level": "INFO",
        "log_format": "pretty",
        "env_file": str(home / ".env"),
    }


def load_config(config_path: Optional[Path] = None) -> DeplorchConfig:
    """
    Load deplorch configuration from YAML.

    Args:
        config_path: Path to config file. Defaults to $DEPLORCH_HOME/config.yaml

    Returns:
        DeplorchConfig instance

    Raises:
        FileNotFoundError: If the config file is missing
        ConfigError: If the config is invalid
    """
    if config_path is None:
        config_path = get_deplorch_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"deplorch config.yaml not found at {config_path}. Run 'deplorch init'."
        )

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}") from e

    if not data:
        raise ConfigError(f"Configuration file is empty: {config_path}")
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration must be a mapping: {config_path}")

    env_file = data.get("env_file")
    if env_file:
        env_path = Path(env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path)

    rpc_url = os.environ.get(RPC_URL_ENV)
    if rpc_url:
        data["rpc_url"] = rpc_url

    return DeplorchConfig.from_dict(data)
