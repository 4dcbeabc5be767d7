"""
Tests for configuration management.
"""

import pytest
import tempfile
import yaml
import os
from pathlib import Path

from pydantic import ValidationError

from bridgesync.config import Config, load_config, DatabaseConfig, BridgeConfig, ChannelDeleteOptions, EnvironmentConfig
from bridgesync.config.config import substitute_variables, _get_builtin_variable, _substitute_config_values


def write_config(data) -> str:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(data, f)
        return f.name


def test_database_config_defaults():
    """Test database config defaults."""
    config = DatabaseConfig()
    assert config.url == "sqlite:///./bridgesync.db"
    assert config.echo is False


def test_delete_options_defaults():
    options = ChannelDeleteOptions()
    assert options.name_prefix is None
    assert options.topic_prefix is None
    assert options.disable_messaging is False
    assert options.unset_room_alias is True
    assert options.unlist_from_directory is True
    assert options.set_invite_only is True
    assert options.ghosts_leave is True


def test_bridge_identifiers():
    bridge = BridgeConfig(domain="example.org", homeserver_url="http://localhost:8008")

    assert bridge.bot_user_id == "@_discord_bot:example.org"
    assert bridge.ghost_user_id("123") == "@_discord_123:example.org"
    assert bridge.room_alias("discord_1_2") == "#_discord_1_2:example.org"
    assert bridge.is_namespaced_alias("#_discord_1_2:example.org") is True
    assert bridge.is_namespaced_alias("#general:example.org") is False
    assert bridge.is_namespaced_alias("#_discord_1_2:other.org") is False


def test_ghost_user_ids_round_trip():
    bridge = BridgeConfig(domain="example.org", homeserver_url="http://localhost:8008")

    assert bridge.is_ghost_user_id(bridge.ghost_user_id("123")) is True
    assert bridge.is_ghost_user_id("@_discord_123:other.org") is False
    assert bridge.is_ghost_user_id("@alice:example.org") is False
    assert bridge.is_ghost_user_id(bridge.bot_user_id) is False
    assert bridge.is_ghost_user_id(None) is False


def test_config_defaults():
    config = Config(bridge=BridgeConfig(domain="example.org", homeserver_url="http://localhost:8008"))

    assert config.channel.name_pattern == "[Discord] :guild :name"
    assert config.limits.member_state_delay_ms == 1000
    assert config.limits.room_count == -1
    assert config.store.cache_lifetime_seconds == 30.0
    assert config.admin.enabled is False
    assert config.logging.level == "INFO"


def test_load_config_from_file():
    """Test loading config from YAML file."""
    config_path = write_config({
        "database": {"url": "sqlite:///test.db"},
        "bridge": {
            "domain": "example.org",
            "homeserver_url": "http://localhost:8008",
            "as_token": "as",
            "hs_token": "hs",
        },
        "channel": {
            "name_pattern": ":name (:guild)",
            "delete_options": {"name_prefix": "[Deleted] ", "disable_messaging": True},
        },
        "limits": {"member_state_delay_ms": 250, "room_count": 10},
    })

    try:
        config = load_config(config_path)
        assert config.database.url == "sqlite:///test.db"
        assert config.bridge.domain == "example.org"
        assert config.bridge.hs_token == "hs"
        assert config.channel.name_pattern == ":name (:guild)"
        assert config.channel.delete_options.name_prefix == "[Deleted] "
        assert config.channel.delete_options.disable_messaging is True
        assert config.channel.delete_options.ghosts_leave is True
        assert config.limits.member_state_delay_ms == 250
        assert config.limits.room_count == 10
    finally:
        os.unlink(config_path)


def test_load_config_file_not_found():
    """Test loading non-existent config file."""
    with pytest.raises(FileNotFoundError):
        load_config("nonexistent.yaml")


def test_config_validation():
    """A bridge section is mandatory."""
    config_path = write_config({"database": {"url": "sqlite:///test.db"}})
    try:
        with pytest.raises(ValidationError):
            load_config(config_path)
    finally:
        os.unlink(config_path)


def test_builtin_variables():
    """Test built-in variable functionality."""
    today_value = _get_builtin_variable('today')
    assert today_value is not None
    assert len(today_value) == 10
    assert today_value.count('-') == 2

    assert _get_builtin_variable('nonexistent') is None


def test_substitute_variables_environment():
    """Test variable substitution with environment variables."""
    os.environ['BRIDGESYNC_TEST_VAR'] = 'test_value'
    try:
        assert substitute_variables("Value is ${BRIDGESYNC_TEST_VAR}") == "Value is test_value"
    finally:
        del os.environ['BRIDGESYNC_TEST_VAR']


def test_substitute_variables_with_default_values():
    """Test the ${VAR|default} syntax."""
    os.environ.pop('BRIDGESYNC_MISSING_VAR', None)

    assert substitute_variables("${BRIDGESYNC_MISSING_VAR|fallback}") == "fallback"
    assert substitute_variables("${BRIDGESYNC_MISSING_VAR}") is None
    assert substitute_variables(42) == 42


def test_substitute_config_values_drops_empty_values():
    """Keys resolving to nothing fall back to model defaults."""
    os.environ.pop('BRIDGESYNC_MISSING_VAR', None)

    result = _substitute_config_values({
        "admin": {"enabled": True, "username": "${BRIDGESYNC_MISSING_VAR}"},
        "list": ["a", "${BRIDGESYNC_MISSING_VAR|b}"],
    })

    assert result == {"admin": {"enabled": True}, "list": ["a", "b"]}


def test_load_config_with_variables():
    """Tokens are read from the environment."""
    os.environ['BRIDGESYNC_TEST_HS_TOKEN'] = 'secret-hs'
    config_path = write_config({
        "bridge": {
            "domain": "${BRIDGESYNC_TEST_DOMAIN|example.org}",
            "homeserver_url": "http://localhost:8008",
            "hs_token": "${BRIDGESYNC_TEST_HS_TOKEN}",
        },
    })

    try:
        config = load_config(config_path)
        assert config.bridge.domain == "example.org"
        assert config.bridge.hs_token == "secret-hs"
    finally:
        os.unlink(config_path)
        del os.environ['BRIDGESYNC_TEST_HS_TOKEN']


def test_environment_config_reads_dotenv(tmp_path: Path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("BRIDGESYNC_CONFIG=/etc/bridgesync/config.yaml\n")
    monkeypatch.delenv("BRIDGESYNC_CONFIG", raising=False)

    try:
        env_config = EnvironmentConfig(str(env_file))
        assert env_config.get_config_path() == "/etc/bridgesync/config.yaml"
    finally:
        os.environ.pop("BRIDGESYNC_CONFIG", None)


def test_environment_config_default_path(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("BRIDGESYNC_CONFIG", raising=False)

    env_config = EnvironmentConfig(str(tmp_path / "missing.env"))

    assert env_config.get_config_path() == "config.yaml"
