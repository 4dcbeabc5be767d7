"""
Configuration management for bridgesync.
"""

from .config import Config, load_config, get_config, set_config, DatabaseConfig, BridgeConfig, DiscordConfig, ChannelConfig, ChannelDeleteOptions, LimitsConfig, StoreConfig, AdminConfig, LoggingConfig, get_env_config, EnvironmentConfig

__all__ = ["Config", "load_config", "get_config", "set_config", "DatabaseConfig", "BridgeConfig", "DiscordConfig", "ChannelConfig", "ChannelDeleteOptions", "LimitsConfig", "StoreConfig", "AdminConfig", "LoggingConfig", "get_env_config", "EnvironmentConfig"]
