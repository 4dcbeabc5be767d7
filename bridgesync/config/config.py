"""
Configuration management for bridgesync.
"""

import os
import yaml
import re
from datetime import datetime
from typing import Dict, Optional, Any
from pathlib import Path
from pydantic import BaseModel, Field
from dotenv import load_dotenv


class DatabaseConfig(BaseModel):
    """Database configuration."""
    url: str = Field(default="sqlite:///./bridgesync.db")
    echo: bool = Field(default=False)


GHOST_LOCALPART_PREFIX = "_discord_"


class BridgeConfig(BaseModel):
    """Matrix application service configuration."""
    domain: str
    homeserver_url: str
    as_token: str = Field(default="", description="Token the bridge uses against the homeserver")
    hs_token: str = Field(default="", description="Token the homeserver uses when pushing transactions")
    bot_localpart: str = Field(default="_discord_bot")

    @property
    def bot_user_id(self) -> str:
        return f"@{self.bot_localpart}:{self.domain}"

    def ghost_user_id(self, remote_user_id: str) -> str:
        """Matrix id of the ghost mirroring a Discord user."""
        return f"@{GHOST_LOCALPART_PREFIX}{remote_user_id}:{self.domain}"

    def is_ghost_user_id(self, user_id: Optional[str]) -> bool:
        """Whether user_id is one of our ghosts. The bridge bot shares the namespace but is not a ghost."""
        if not user_id or user_id == self.bot_user_id:
            return False
        return user_id.startswith(f"@{GHOST_LOCALPART_PREFIX}") and user_id.endswith(f":{self.domain}")

    def room_alias(self, remote_room_id: str) -> str:
        """Canonical alias of a bridged room, e.g. #_discord_<guild>_<channel>:domain."""
        return f"#_{remote_room_id}:{self.domain}"

    def is_namespaced_alias(self, alias: str) -> bool:
        return alias.startswith(f"#{GHOST_LOCALPART_PREFIX}") and alias.endswith(f":{self.domain}")


class DiscordConfig(BaseModel):
    """Discord REST configuration."""
    bot_token: str = Field(default="")
    api_base: str = Field(default="https://discord.com/api/v10")


class ChannelDeleteOptions(BaseModel):
    """What to do with a Matrix room when its Discord channel goes away."""
    name_prefix: Optional[str] = None
    topic_prefix: Optional[str] = None
    disable_messaging: bool = Field(default=False)
    unset_room_alias: bool = Field(default=True)
    unlist_from_directory: bool = Field(default=True)
    set_invite_only: bool = Field(default=True)
    ghosts_leave: bool = Field(default=True)


class ChannelConfig(BaseModel):
    """Channel mirroring configuration."""
    name_pattern: str = Field(default="[Discord] :guild :name", description="Room name template, supports :guild and :name")
    delete_options: ChannelDeleteOptions = Field(default_factory=ChannelDeleteOptions)


class LimitsConfig(BaseModel):
    """Timing and quota limits."""
    member_state_delay_ms: int = Field(default=1000, description="Debounce window for m.room.member updates")
    room_count: int = Field(default=-1, description="Maximum number of bridged rooms, -1 for unlimited")


class StoreConfig(BaseModel):
    """Link store configuration."""
    cache_lifetime_seconds: float = Field(default=30.0, description="Lifetime of cached store reads")


class AdminConfig(BaseModel):
    """Admin interface configuration."""
    enabled: bool = Field(default=False)
    username: Optional[str] = None
    password: Optional[str] = None


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")


class Config(BaseModel):
    """Main configuration model."""
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    bridge: BridgeConfig
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def substitute_variables(value: Any, env_config: Optional['EnvironmentConfig'] = None) -> Any:
    """
    Substitute variables in configuration values.

    Variable formats:
    - ${variable_name} - standard variable substitution
    - ${variable_name|default_value} - variable with default fallback

    Priority order:
    1. Environment variables (highest priority)
    2. .env file variables
    3. Built-in variables
    4. Default value (if specified with | syntax)
    5. Empty string if not found

    Args:
        value: Configuration value that may contain variables
        env_config: Environment configuration instance

    Returns:
        Value with variables substituted
    """
    if not isinstance(value, str):
        return value

    variable_pattern = r'\$\{([^}]*)\}'

    def replace_variable(match):
        variable_content = match.group(1)

        if not variable_content.strip():
            return ""

        if '|' in variable_content:
            variable_name, default_value = variable_content.split('|', 1)
            variable_name = variable_name.strip()
            default_value = default_value.strip()
        else:
            variable_name = variable_content
            default_value = None

        env_value = os.getenv(variable_name)
        if env_value is not None:
            return env_value

        if env_config:
            env_value = env_config.get(variable_name)
            if env_value is not None:
                return env_value

        builtin_value = _get_builtin_variable(variable_name)
        if builtin_value is not None:
            return builtin_value

        if default_value is not None:
            return default_value

        return ""

    result = re.sub(variable_pattern, replace_variable, value)

    if result == "None":
        return None

    # Empty results fall back to the pydantic defaults
    if result == "":
        return None

    return result


def _get_builtin_variable(variable_name: str) -> Optional[str]:
    """Get built-in variable value, or None if there is no such variable."""
    builtin_variables = {
        'today': datetime.now().strftime('%Y-%m-%d')
    }

    return builtin_variables.get(variable_name)


def _substitute_config_values(config_data: Any, env_config: Optional['EnvironmentConfig'] = None) -> Any:
    """Recursively substitute variables in configuration data, dropping keys that resolve to None."""
    if isinstance(config_data, dict):
        result = {}
        for key, value in config_data.items():
            substituted_value = _substitute_config_values(value, env_config)
            if substituted_value is not None:
                result[key] = substituted_value
        return result
    elif isinstance(config_data, list):
        return [_substitute_config_values(item, env_config) for item in config_data]
    elif isinstance(config_data, str):
        return substitute_variables(config_data, env_config)
    else:
        return config_data


def load_config(config_path: str, env_config: Optional['EnvironmentConfig'] = None) -> Config:
    """Load configuration from YAML file with variable substitution."""
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file, 'r') as f:
        config_data: Dict[str, Any] = yaml.safe_load(f) or {}

    if env_config is None:
        env_config = get_env_config()

    config_data = _substitute_config_values(config_data, env_config)

    return Config(**config_data)


_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration."""
    global _config
    if _config is None:
        raise RuntimeError("Configuration not initialized. Call load_config first.")
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration."""
    global _config
    _config = config


class EnvironmentConfig:
    """Environment configuration manager with .env fallback support."""

    def __init__(self, env_file_path: Optional[str] = None):
        self.env_file_path = env_file_path or ".env"
        self._load_env_file()

    def _load_env_file(self) -> None:
        """Load environment variables from .env file if it exists."""
        env_path = Path(self.env_file_path)
        if env_path.exists():
            load_dotenv(env_path)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """
        Get environment variable with fallback support.

        The .env file has already been merged into the process environment
        by load_dotenv without overriding variables that were set before.
        """
        value = os.getenv(key)
        if value is not None:
            return value
        return default

    def get_config_path(self) -> str:
        """Get configuration file path with environment support."""
        return self.get("BRIDGESYNC_CONFIG", default="config.yaml")


_env_config: Optional[EnvironmentConfig] = None


def get_env_config() -> EnvironmentConfig:
    """Get the global environment configuration."""
    global _env_config
    if _env_config is None:
        _env_config = EnvironmentConfig()
    return _env_config
