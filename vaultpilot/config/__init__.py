"""
Configuration module for VaultPilot

Provides unified configuration loading from:
1. config/config.yaml (master configuration)
2. .env file (sensitive credentials)
3. Environment variables (override)
"""

from .loader import (
    Config,
    ConfigurationError,
    get_asset_address,
    get_signer_private_key,
    get_vault_address,
    load_config,
)

__all__ = [
    "Config",
    "ConfigurationError",
    "get_asset_address",
    "get_signer_private_key",
    "get_vault_address",
    "load_config",
]
