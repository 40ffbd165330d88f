# tests/conftest.py
"""
Fixtures and test setup for the Pytest suite.
"""

import os
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment variables BEFORE any application code is imported.
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["NEXUS_API_KEY"] = "test-nexus-key"
os.environ["DISCORD_BOT_TOKEN"] = "fake_token"
os.environ["API_KEY"] = "test_api_key"
os.environ["ENV"] = "test"

from sqlalchemy.orm import sessionmaker

from nexustrack.domain.entities import SubscribedItemType
from nexustrack.infrastructure.db.base import build_engine
from nexustrack.infrastructure.db.repository import SubscriptionRepository
from nexustrack.infrastructure.db.uow import create_tables, make_session_scope

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """A throwaway SQLite database per test, foreign keys on."""
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_scope(db_engine):
    """A `session_scope` bound to the test database."""
    factory = sessionmaker(bind=db_engine, autoflush=False, autocommit=False, expire_on_commit=False)
    return make_session_scope(factory)


@pytest.fixture
def make_channel(session_scope):
    def _make(guild_id="100", channel_id="200", webhook_id="300", webhook_token="tok", nsfw=False):
        with session_scope() as session:
            return SubscriptionRepository(session).create_channel(
                guild_id, channel_id, webhook_id, webhook_token, nsfw=nsfw
            )
    return _make


@pytest.fixture
def make_item(session_scope):
    def _make(channel_pk, item_type=SubscribedItemType.GAME, entityid="skyrimspecialedition",
              title="Skyrim Special Edition", last_update=T0, last_status=None, **options):
        with session_scope() as session:
            return SubscriptionRepository(session).create_item(
                channel_pk, item_type, entityid, title,
                last_update=last_update, last_status=last_status, **options,
            )
    return _make


@pytest.fixture
def load_channel(session_scope):
    """Re-reads a channel and its items from the database."""
    def _load(channel_pk):
        with session_scope() as session:
            return SubscriptionRepository(session).get_channel_by_id(channel_pk)
    return _load


@pytest.fixture
def make_mod():
    """Builds a mod node shaped like the GraphQL `mods` answer."""
    def _make(mod_id, created=T0, updated=None, adult=False, domain="skyrimspecialedition", game_id=1704, **extra):
        mod = {
            "uid": str(7318349000000 + mod_id),
            "modId": mod_id,
            "name": f"Mod {mod_id}",
            "summary": f"Summary of mod {mod_id}",
            "status": "published",
            "author": "Author",
            "uploader": {"name": "Uploader", "avatar": None, "memberId": 51},
            "pictureUrl": None,
            "modCategory": {"name": "Gameplay"},
            "adult": adult,
            "version": "1.0",
            "createdAt": created.isoformat(),
            "updatedAt": (updated or created).isoformat(),
            "game": {"id": game_id, "domainName": domain, "name": "Skyrim Special Edition"},
        }
        mod.update(extra)
        return mod
    return _make


@pytest.fixture
def mock_notifier() -> MagicMock:
    """Discord notifier whose webhook posts succeed and return message objects."""
    notifier = MagicMock()
    counter = iter(range(1, 10_000))
    notifier.resolve_webhook = AsyncMock(return_value={"id": "300", "name": "Nexus Mods Updates"})
    notifier.post = AsyncMock(side_effect=lambda *a, **kw: {"id": str(next(counter))})
    notifier.crosspost = AsyncMock(return_value=None)
    notifier.create_webhook = AsyncMock(return_value={"id": "301", "token": "new-token"})
    notifier.channel_info = AsyncMock(return_value={"id": "200", "nsfw": False})
    notifier.send_channel_message = AsyncMock(return_value={"id": "999"})
    return notifier


@pytest.fixture
def mock_client() -> MagicMock:
    """Nexus Mods client answering every question with 'nothing new'."""
    client = MagicMock()
    client.new_mods_for_game = AsyncMock(return_value=[])
    client.updated_mods_for_game = AsyncMock(return_value=[])
    client.mods_by_uploader = AsyncMock(return_value=[])
    client.mod = AsyncMock(return_value=None)
    client.mod_by_domain = AsyncMock(return_value=None)
    client.mod_files = AsyncMock(return_value=[])
    client.collection = AsyncMock(return_value=None)
    client.collection_revisions = AsyncMock(return_value=[])
    client.find_user = AsyncMock(return_value=None)
    client.game_info = AsyncMock(return_value=None)
    return client
