"""
Pytest configuration and fixtures.
"""

import pytest
import os
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient

from bridgesync.database import create_engine, create_session_factory, init_database
from bridgesync.models.base import Base
from bridgesync.config import Config, DatabaseConfig, BridgeConfig, ChannelConfig, LimitsConfig, AdminConfig
from bridgesync.services.room_service import RoomService
from bridgesync.services.discord import RemotePlatform
from bridgesync.services.media import DownloadedFile
from bridgesync.services.room_store import RoomStore
from bridgesync.services.user_store import UserStore
from bridgesync.services.bridge import Bridge
from bridgesync.api.main import create_app

from factories import UPLOADED_MXC

# Set fast test timeouts for all tests
os.environ.setdefault("DATABASE_INIT_MAX_ATTEMPTS", "1")
os.environ.setdefault("DATABASE_INIT_RETRY_DELAY", "1")
os.environ.setdefault("DATABASE_CONNECTION_TIMEOUT", "5")
os.environ.setdefault("DATABASE_POOL_TIMEOUT", "5")


@pytest.fixture
def test_config():
    """Test configuration."""
    return Config(
        database=DatabaseConfig(url="sqlite:///:memory:"),
        bridge=BridgeConfig(
            domain="localhost",
            homeserver_url="http://localhost:8008",
            as_token="as-token",
            hs_token="hs-token"
        ),
        channel=ChannelConfig(name_pattern="[Bridge] :guild :name"),
        limits=LimitsConfig(member_state_delay_ms=0),
        admin=AdminConfig(enabled=True, username="admin", password="admin123"),
    )


@pytest.fixture
def test_engine(test_config):
    """In-memory SQLite engine with all tables created."""
    engine = create_engine(test_config.database)
    init_database(engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest.fixture
def room_store(session_factory):
    return RoomStore(session_factory, cache_lifetime=30)


@pytest.fixture
def user_store(session_factory):
    return UserStore(session_factory, cache_lifetime=30)


@pytest.fixture
def room_service():
    """Room service recording every command issued to Matrix."""
    service = AsyncMock(spec=RoomService)
    service.upload_content.return_value = UPLOADED_MXC
    service.get_state_event.return_value = {}
    return service


@pytest.fixture
def remote():
    """Discord platform returning nothing unless a test says otherwise."""
    platform = AsyncMock(spec=RemotePlatform)
    platform.get_guilds.return_value = []
    platform.get_guild.return_value = None
    platform.get_channel.return_value = None
    platform.fetch_member.return_value = None
    return platform


@pytest.fixture(autouse=True)
def mock_download():
    """Never hit the network when media is re-hosted."""
    with patch("bridgesync.services.media.download_file") as download:
        download.return_value = DownloadedFile(b"image-bytes", "image/png")
        yield download


@pytest.fixture
def bridge(test_config, room_service, remote, room_store, user_store):
    return Bridge(test_config, room_service, remote, room_store, user_store)


@pytest.fixture
def test_app(test_config, bridge):
    """Test FastAPI application."""
    return create_app(test_config, bridge)


@pytest.fixture
def test_client(test_app):
    """Test client."""
    return TestClient(test_app)
