"""
Configuration Loader for VaultPilot

YAML config + .env secrets, with ${VAR} placeholders resolved before parsing.
Structural settings are validated at load time so a broken deployment dies on
start-up instead of mid-cycle.

Automation credentials (vault, asset, signer) are NOT validated at load time:
the snapshot tracker must keep running without them. Each automation cycle
reads them through get_vault_address & friends and skips when one is missing.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, PrivateAttr

DEFAULT_CONFIG_PATH = "config/config.yaml"

# ${VAR}, ${VAR:-} or ${VAR:-fallback}
_PLACEHOLDER = re.compile(r'\$\{(\w+)(:-([^}]*))?\}')

_MISSING = object()


class ConfigurationError(ValueError):
    """Missing or invalid configuration required to run an automation cycle"""


class Config(BaseModel):
    """
    VaultPilot configuration tree

    Sections are kept as plain dicts and read with dot paths:
        config.get('automation.settlement.timeout_seconds')  # 60
        config.get('pools')                                   # list of pool dicts
    """

    model_config = ConfigDict(extra="allow")

    _tree: Dict[str, Any] = PrivateAttr(default_factory=dict)

    def __init__(self, **data):
        super().__init__(**data)
        self._tree = data

    def get(self, key_path: str, default: Any = None) -> Any:
        node: Any = self._tree
        for part in key_path.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def get_required(self, key_path: str) -> Any:
        """
        Raises:
            ValueError: If the key is absent or null
        """
        value = self.get(key_path)
        if value is None:
            raise ValueError(f"Required config key not found: {key_path}")
        return value


def _interpolate_env_vars(config_str: str) -> str:
    """
    Resolve ${VAR} placeholders against the environment

    ${VAR} must be set; ${VAR:-} and ${VAR:-fallback} are optional.

    Raises:
        ValueError: If a required variable is not set
    """
    def resolve(match: re.Match) -> str:
        name, optional, fallback = match.group(1), match.group(2), match.group(3)
        value = os.getenv(name)
        if value is not None:
            return value
        if optional is None:
            raise ValueError(
                f"Environment variable '{name}' is required but not set. "
                f"Check your .env file or environment."
            )
        return fallback or ""

    return _PLACEHOLDER.sub(resolve, config_str)


# =============================================================================
# AUTOMATION CREDENTIALS
# =============================================================================

def _require_env(var_name: str, description: str) -> str:
    value = os.getenv(var_name)
    if not value:
        raise ConfigurationError(
            f"{var_name} environment variable not set. Add the {description} to .env"
        )
    return value


def get_vault_address() -> str:
    """
    Managed vault contract address (lower-case)

    Raises:
        ConfigurationError: If VAULT_ADDRESS not set
    """
    return _require_env('VAULT_ADDRESS', 'vault contract address').lower()


def get_asset_address() -> str:
    """
    Vault's underlying asset token address (lower-case)

    Raises:
        ConfigurationError: If ASSET_TOKEN not set
    """
    return _require_env('ASSET_TOKEN', 'vault asset token address').lower()


def get_signer_private_key() -> str:
    """
    Vault owner's private key. Sensitive: never log it.

    Raises:
        ConfigurationError: If PRIVATE_KEY not set
    """
    return _require_env('PRIVATE_KEY', 'vault owner private key')


# =============================================================================
# LOADING
# =============================================================================

_cached_config: Optional[Config] = None


def _read_config_file(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            f"Expected location: {config_path.absolute()}"
        )

    raw = config_path.read_text()

    try:
        raw = _interpolate_env_vars(raw)
    except ValueError as e:
        raise ValueError(f"Failed to interpolate environment variables in {config_path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Failed to parse YAML config {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(
            f"Config file {config_path} must contain a YAML dictionary, got {type(data).__name__}"
        )
    return data


def load_config(config_path: str | Path = DEFAULT_CONFIG_PATH) -> Config:
    """
    Load VaultPilot configuration (cached after the first call)

    .env is loaded first when present, so placeholders can refer to it.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config is invalid or a required env var is missing
        yaml.YAMLError: If YAML parsing fails
    """
    global _cached_config

    if _cached_config is not None:
        return _cached_config

    if Path(".env").exists():
        load_dotenv(".env")

    config = Config(**_read_config_file(Path(config_path)))
    _validate_config(config)

    _cached_config = config
    return config


def _positive(config: Config, key_path: str) -> None:
    value = config.get(key_path)
    if not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"{key_path} must be > 0, got {value}")


def _validate_config(config: Config) -> None:
    """
    Fast-fail checks on structural settings

    Raises:
        ValueError: On the first invalid setting
    """
    if not config.get('database.url'):
        parts = [config.get(f'database.{k}') for k in ('host', 'port', 'database')]
        if not all(parts):
            raise ValueError(
                "Database configuration incomplete. Required: url, or host, port, database"
            )

    pools = config.get('pools')
    if not isinstance(pools, list) or not pools:
        raise ValueError("pools must be a non-empty list at root level")
    for i, pool in enumerate(pools):
        if not isinstance(pool, dict) or not pool.get('address') or not pool.get('chain'):
            raise ValueError(f"pools[{i}] must define at least 'address' and 'chain'")

    _positive(config, 'scheduler.interval_minutes')
    _positive(config, 'scoring.asset_size')

    timeout = config.get('automation.settlement.timeout_seconds')
    poll = config.get('automation.settlement.poll_interval_seconds')
    if timeout is None or poll is None or poll <= 0 or timeout < poll:
        raise ValueError(
            "automation.settlement requires timeout_seconds >= poll_interval_seconds > 0, "
            f"got timeout={timeout}, poll={poll}"
        )
