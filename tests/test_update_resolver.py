# tests/test_update_resolver.py
from datetime import timedelta

import pytest
from unittest.mock import AsyncMock

from nexustrack.application.services.update_resolver import MAX_MOD_FILES, UpdateResolver, adult_filter
from nexustrack.domain.entities import (
    CollectionItem,
    GameItem,
    ModItem,
    SubscribedChannel,
    UpdateCategory,
    UserItem,
)
from nexustrack.domain.errors import UpstreamStructuralError, UpstreamTransientError
from nexustrack.infrastructure.cache import SubscriptionCache

from conftest import T0


@pytest.fixture
def channel() -> SubscribedChannel:
    return SubscribedChannel(id=1, guild_id="100", channel_id="200", webhook_id="300", webhook_token="tok")


@pytest.fixture
def resolver(mock_client) -> UpdateResolver:
    return UpdateResolver(mock_client)


def _game(**kw) -> GameItem:
    return GameItem(id=1, parent=1, entityid="skyrimspecialedition", title="Skyrim SE", last_update=T0, **kw)


def _file(file_id, when, category="MAIN"):
    return {
        "fileId": file_id,
        "name": f"File {file_id}",
        "version": f"1.{file_id}",
        "category": category,
        "date": int(when.timestamp()),
        "changelogText": [f"Change {file_id}"],
    }


def test_adult_filter():
    assert adult_filter(True, True) is None
    assert adult_filter(True, False) is True
    assert adult_filter(False, True) is False


# --- Games ---

@pytest.mark.asyncio
async def test_game_posts_only_mods_strictly_after_watermark(resolver, mock_client, channel, make_mod):
    mock_client.new_mods_for_game = AsyncMock(return_value=[
        make_mod(1, created=T0 - timedelta(minutes=5)),
        make_mod(2, created=T0),
        make_mod(3, created=T0 + timedelta(minutes=7)),
        make_mod(4, created=T0 + timedelta(minutes=1)),
    ])
    item = _game(show_updates=False)

    resolution = await resolver.resolve(item, channel, SubscriptionCache(mock_client))

    assert resolution.complete
    assert [u.entity["modId"] for u in resolution.updates] == [4, 3]
    assert [u.occurred_at for u in resolution.updates] == [T0 + timedelta(minutes=1), T0 + timedelta(minutes=7)]
    assert all(u.sub_id == item.id for u in resolution.updates)
    mock_client.new_mods_for_game.assert_awaited_once_with("skyrimspecialedition", T0, adult=False)


@pytest.mark.asyncio
async def test_game_content_policy(resolver, mock_client, channel, make_mod):
    mods = [make_mod(1, created=T0 + timedelta(minutes=1), adult=True), make_mod(2, created=T0 + timedelta(minutes=2))]
    mock_client.new_mods_for_game = AsyncMock(return_value=mods)

    sfw_only = await resolver.resolve(_game(show_updates=False), channel, SubscriptionCache(mock_client))
    with_adult = await resolver.resolve(_game(show_updates=False, nsfw=True), channel, SubscriptionCache(mock_client))
    adult_only = await resolver.resolve(_game(show_updates=False, nsfw=True, sfw=False), channel, SubscriptionCache(mock_client))

    assert [u.entity["modId"] for u in sfw_only.updates] == [2]
    assert [u.entity["modId"] for u in with_adult.updates] == [1, 2]
    assert [u.entity["modId"] for u in adult_only.updates] == [1]


@pytest.mark.asyncio
async def test_game_cache_hit_matches_direct_query(resolver, mock_client, channel, make_mod):
    mods = [
        make_mod(1, created=T0 - timedelta(minutes=8)),
        make_mod(2, created=T0 + timedelta(minutes=3)),
        make_mod(3, created=T0 + timedelta(minutes=4), adult=True),
    ]
    item = _game(show_updates=False)

    cache = SubscriptionCache(mock_client)
    cache.add(UpdateCategory.NEW_MODS, "skyrimspecialedition", mods, T0 - timedelta(minutes=10))
    from_cache = await resolver.game_mods(item, channel, UpdateCategory.NEW_MODS, cache)
    mock_client.new_mods_for_game.assert_not_awaited()

    mock_client.new_mods_for_game = AsyncMock(return_value=[m for m in mods if not m["adult"]])
    direct = await resolver.game_mods(item, channel, UpdateCategory.NEW_MODS, SubscriptionCache(mock_client))

    assert from_cache == direct
    assert [m["modId"] for _, m in direct] == [2]


@pytest.mark.asyncio
async def test_game_cache_entry_from_later_floor_is_not_used(resolver, mock_client, channel, make_mod):
    item = _game(show_updates=False)
    cache = SubscriptionCache(mock_client)
    cache.add(UpdateCategory.NEW_MODS, "skyrimspecialedition", [], T0 + timedelta(minutes=10))
    mock_client.new_mods_for_game = AsyncMock(return_value=[make_mod(1, created=T0 + timedelta(minutes=5))])

    resolution = await resolver.resolve(item, channel, cache)

    assert len(resolution.updates) == 1
    mock_client.new_mods_for_game.assert_awaited_once()


@pytest.mark.asyncio
async def test_updated_mods_carry_files_without_touching_the_cache(resolver, mock_client, channel, make_mod):
    mod = make_mod(1, created=T0 - timedelta(days=30), updated=T0 + timedelta(minutes=2))
    cache = SubscriptionCache(mock_client)
    cache.add(UpdateCategory.UPDATED_MODS, "skyrimspecialedition", [mod], T0)
    mock_client.mod_files = AsyncMock(return_value=[_file(9, T0 + timedelta(minutes=2))])

    resolution = await resolver.resolve(_game(show_new=False), channel, cache)

    assert len(resolution.updates) == 1
    update = resolution.updates[0]
    assert update.entity["files"][0]["fileId"] == 9
    assert "files" not in mod
    assert update.embed["author"]["name"].startswith("Mod Updated")
    mock_client.mod_files.assert_awaited_once_with(1704, 1)


@pytest.mark.asyncio
async def test_one_failing_category_does_not_hide_the_other(resolver, mock_client, channel, make_mod):
    mock_client.new_mods_for_game = AsyncMock(side_effect=UpstreamTransientError("mods: HTTP 503", "mods"))
    mock_client.updated_mods_for_game = AsyncMock(
        return_value=[make_mod(1, created=T0 - timedelta(days=1), updated=T0 + timedelta(minutes=1))]
    )

    resolution = await resolver.resolve(_game(), channel, SubscriptionCache(mock_client))

    assert not resolution.complete
    assert isinstance(resolution.errors[0], UpstreamTransientError)
    assert len(resolution.updates) == 1


@pytest.mark.asyncio
async def test_missing_timestamp_is_a_structural_error(resolver, mock_client, channel, make_mod):
    broken = make_mod(1)
    broken["createdAt"] = None
    mock_client.new_mods_for_game = AsyncMock(return_value=[broken])

    resolution = await resolver.resolve(_game(show_updates=False), channel, SubscriptionCache(mock_client))

    assert isinstance(resolution.errors[0], UpstreamStructuralError)
    assert resolution.updates == []


# --- Mods ---

def _mod_item(**kw) -> ModItem:
    return ModItem(id=2, parent=1, entityid="7318349000001", title="Mod 1", last_update=T0, **kw)


@pytest.mark.asyncio
async def test_mod_posts_newest_files_in_ascending_order(resolver, mock_client, channel, make_mod):
    mock_client.mod = AsyncMock(return_value=make_mod(1))
    files = [_file(i, T0 + timedelta(minutes=i)) for i in range(1, 8)]
    files.append(_file(50, T0 + timedelta(minutes=30), category="ARCHIVED"))
    files.append(_file(51, T0 - timedelta(minutes=1)))
    mock_client.mod_files = AsyncMock(return_value=files)

    resolution = await resolver.resolve(_mod_item(), channel, SubscriptionCache(mock_client))

    assert resolution.complete
    assert resolution.status == "published"
    assert len(resolution.updates) == MAX_MOD_FILES
    assert [u.entity["files"][0]["fileId"] for u in resolution.updates] == [3, 4, 5, 6, 7]


@pytest.mark.asyncio
async def test_mod_temporarily_unavailable_notice_once(resolver, mock_client, channel, make_mod):
    mock_client.mod = AsyncMock(return_value=make_mod(1, status="hidden"))

    first = await resolver.resolve(_mod_item(), channel, SubscriptionCache(mock_client))
    again = await resolver.resolve(_mod_item(last_status="hidden"), channel, SubscriptionCache(mock_client))

    assert len(first.updates) == 1
    notice = first.updates[0]
    assert notice.occurred_at == T0
    assert notice.status == "hidden"
    assert notice.retire is False
    assert again.updates == []
    assert again.status == "hidden"
    mock_client.mod_files.assert_not_awaited()


@pytest.mark.asyncio
async def test_mod_permanently_unavailable_is_retired(resolver, mock_client, channel, make_mod):
    mock_client.mod = AsyncMock(return_value=make_mod(1, status="deleted"))

    resolution = await resolver.resolve(_mod_item(), channel, SubscriptionCache(mock_client))

    assert resolution.retire is True
    assert len(resolution.updates) == 1
    assert resolution.updates[0].retire is True
    assert "no longer be tracked" in resolution.updates[0].embed["description"]


@pytest.mark.asyncio
async def test_mod_not_found_is_recorded(resolver, mock_client, channel):
    resolution = await resolver.resolve(_mod_item(), channel, SubscriptionCache(mock_client))
    assert isinstance(resolution.errors[0], UpstreamStructuralError)
    assert resolution.updates == []


# --- Collections ---

def _collection(status="listed", latest=None, adult=False):
    return {
        "slug": "qdurkx",
        "name": "Gate to Sovngarde",
        "collectionStatus": status,
        "adultContent": adult,
        "latestPublishedRevision": {"updatedAt": (latest or T0).isoformat()},
        "game": {"id": 1704, "domainName": "skyrimspecialedition", "name": "Skyrim Special Edition"},
        "user": {"name": "Curator", "memberId": 77, "avatar": None},
        "tileImage": None,
    }


def _revision(number, when):
    return {"revisionNumber": number, "updatedAt": when.isoformat(), "collectionChangelog": {"description": f"Rev {number}"}}


def _collection_item(**kw) -> CollectionItem:
    return CollectionItem(id=3, parent=1, entityid="skyrimspecialedition:qdurkx", title="Gate", last_update=T0, **kw)


@pytest.mark.asyncio
async def test_collection_posts_new_revisions(resolver, mock_client, channel):
    mock_client.collection = AsyncMock(return_value=_collection(latest=T0 + timedelta(hours=2)))
    mock_client.collection_revisions = AsyncMock(return_value=[
        _revision(12, T0 + timedelta(hours=2)),
        _revision(11, T0 + timedelta(hours=1)),
        _revision(10, T0 - timedelta(hours=1)),
    ])

    resolution = await resolver.resolve(_collection_item(), channel, SubscriptionCache(mock_client))

    assert [u.entity["revisions"][0]["revisionNumber"] for u in resolution.updates] == [11, 12]
    assert resolution.status == "listed"
    mock_client.collection.assert_awaited_once_with("skyrimspecialedition", "qdurkx", adult=True)


@pytest.mark.asyncio
async def test_collection_without_new_revision_skips_revision_query(resolver, mock_client, channel):
    mock_client.collection = AsyncMock(return_value=_collection(latest=T0))

    resolution = await resolver.resolve(_collection_item(), channel, SubscriptionCache(mock_client))

    assert resolution.updates == []
    mock_client.collection_revisions.assert_not_awaited()


@pytest.mark.asyncio
async def test_collection_moderation_and_discard(resolver, mock_client, channel):
    mock_client.collection = AsyncMock(return_value=_collection(status="under_moderation"))
    moderated = await resolver.resolve(_collection_item(last_status="listed"), channel, SubscriptionCache(mock_client))
    assert len(moderated.updates) == 1 and not moderated.retire

    mock_client.collection = AsyncMock(return_value=_collection(status="discarded"))
    discarded = await resolver.resolve(_collection_item(last_status="listed"), channel, SubscriptionCache(mock_client))
    assert discarded.retire is True
    assert discarded.updates[0].retire is True


@pytest.mark.asyncio
async def test_adult_collection_hidden_from_sfw_channel(resolver, mock_client, channel):
    mock_client.collection = AsyncMock(return_value=_collection(latest=T0 + timedelta(hours=1), adult=True))

    resolution = await resolver.resolve(_collection_item(), channel, SubscriptionCache(mock_client))

    assert resolution.updates == []
    mock_client.collection_revisions.assert_not_awaited()


# --- Users ---

def _user(name="Dark0ne", **kw):
    return dict({"memberId": 51, "name": name, "avatar": None, "banned": False, "deleted": False}, **kw)


def _user_item(**kw) -> UserItem:
    return UserItem(id=4, parent=1, entityid="51", title="Dark0ne", last_update=T0, **kw)


@pytest.mark.asyncio
async def test_user_new_and_updated_mods(resolver, mock_client, channel, make_mod):
    mock_client.find_user = AsyncMock(return_value=_user())

    async def by_uploader(member_id, since, updated=False, adult=None):
        if updated:
            return [make_mod(2, created=T0 - timedelta(days=9), updated=T0 + timedelta(minutes=9))]
        return [make_mod(1, created=T0 + timedelta(minutes=1))]

    mock_client.mods_by_uploader = AsyncMock(side_effect=by_uploader)

    resolution = await resolver.resolve(_user_item(), channel, SubscriptionCache(mock_client))

    assert resolution.complete
    assert [u.entity["mod"]["modId"] for u in resolution.updates] == [1, 2]
    assert resolution.updates[0].embed["author"]["name"] == "Dark0ne uploaded a new mod"
    assert mock_client.mods_by_uploader.await_count == 2


@pytest.mark.asyncio
async def test_user_rename_is_announced(resolver, mock_client, channel):
    mock_client.find_user = AsyncMock(return_value=_user(name="Dark1ne"))

    resolution = await resolver.resolve(_user_item(), channel, SubscriptionCache(mock_client))

    assert resolution.title == "Dark1ne"
    assert resolution.updates[0].occurred_at == T0
    assert "changed their username to Dark1ne" in resolution.updates[0].embed["description"]


@pytest.mark.asyncio
async def test_banned_user_is_retired(resolver, mock_client, channel):
    mock_client.find_user = AsyncMock(return_value=_user(banned=True))

    resolution = await resolver.resolve(_user_item(), channel, SubscriptionCache(mock_client))

    assert resolution.retire is True
    assert resolution.status == "banned"
    assert len(resolution.updates) == 1
    mock_client.mods_by_uploader.assert_not_awaited()
