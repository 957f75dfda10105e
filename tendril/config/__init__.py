"""
Config Module - Black Box Interface

Purpose: Load the agent identity and settings once at process entry
Interface: EnvConfigProvider.get_identity(), EnvConfigProvider.get_settings()
Hidden: Environment variable names, parsing and validation

Can be replaced with different config systems (mounted files, Vault).
"""

from .provider import AgentIdentity, AgentSettings, ConfigProvider, EnvConfigProvider

__all__ = ["AgentIdentity", "AgentSettings", "ConfigProvider", "EnvConfigProvider"]
