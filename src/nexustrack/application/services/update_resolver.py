# --- src/nexustrack/application/services/update_resolver.py ---
"""
UpdateResolver - turns one subscribed item into the postable updates it is owed.

- Dispatches on the item variant (game, mod, collection, user) with `match`.
- Batched game questions are answered from the cycle cache when it holds an
  entry fetched from a floor at or below the item's watermark; otherwise the
  resolver asks upstream directly. Both paths apply the same strict
  `occurred_at > watermark` filter and content policy.
- Every upstream question is isolated: a failed category is recorded on the
  Resolution and the others still resolve.
- Never writes anything. Persisting watermarks, statuses and renames is the
  caller's job once delivery succeeded.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from typing import assert_never

from nexustrack.domain.entities import (
    CollectionItem,
    CollectionStatus,
    GameItem,
    ModItem,
    ModStatus,
    PostableUpdate,
    Resolution,
    SubscribedChannel,
    SubscribedItem,
    UpdateCategory,
    UserItem,
)
from nexustrack.domain.errors import UpstreamStructuralError, UpstreamTransientError
from nexustrack.infrastructure.cache import SubscriptionCache
from nexustrack.infrastructure.nexus.client import HIDDEN_FILE_CATEGORIES, parse_timestamp
from nexustrack.interfaces.discord import embeds

log = logging.getLogger(__name__)

MAX_MOD_FILES = 5
MAX_REVISIONS = 5

_TIMESTAMP_FIELD = {
    UpdateCategory.NEW_MODS: "createdAt",
    UpdateCategory.UPDATED_MODS: "updatedAt",
    UpdateCategory.USER_NEW_MODS: "createdAt",
    UpdateCategory.USER_UPDATED_MODS: "updatedAt",
}
_UPDATED_CATEGORIES = (UpdateCategory.UPDATED_MODS, UpdateCategory.USER_UPDATED_MODS)


def required_timestamp(entity: Dict[str, Any], field: str, context: str) -> datetime:
    value = parse_timestamp(entity.get(field))
    if value is None:
        raise UpstreamStructuralError(f"{context}: '{field}' missing on {entity.get('uid') or entity.get('id')}", context)
    return value


def adult_filter(show_adult: bool, show_non_adult: bool) -> Optional[bool]:
    """Upstream `adultContent` filter for a content policy; None means both sides."""
    if show_adult and not show_non_adult:
        return True
    if show_non_adult and not show_adult:
        return False
    return None


class UpdateResolver:
    def __init__(self, client):
        self.client = client

    async def resolve(self, item: SubscribedItem, channel: SubscribedChannel, cache: SubscriptionCache) -> Resolution:
        resolution = Resolution()
        match item:
            case GameItem():
                await self._resolve_game(item, channel, cache, resolution)
            case ModItem():
                await self._guarded(item, UpdateCategory.MOD_FILES, resolution,
                                    self._resolve_mod(item, channel, cache, resolution))
            case CollectionItem():
                await self._guarded(item, UpdateCategory.COLLECTION_REVISIONS, resolution,
                                    self._resolve_collection(item, channel, cache, resolution))
            case UserItem():
                await self._resolve_user(item, channel, cache, resolution)
            case _:
                assert_never(item)
        # Stable: equal timestamps keep the order they were produced in.
        resolution.updates.sort(key=lambda u: u.occurred_at)
        return resolution

    # --- Helpers ---

    async def _guarded(self, item: SubscribedItem, category: UpdateCategory, resolution: Resolution, coro) -> bool:
        """Awaits one category; a failure is logged and recorded, never raised."""
        try:
            await coro
            return True
        except UpstreamTransientError as e:
            log.warning(f"Transient upstream failure for item {item.id} ({item.type.value}:{item.entityid}) "
                        f"[{category.value}]: {e}")
            resolution.errors.append(e)
        except Exception as e:
            log.error(f"Failed to resolve item {item.id} ({item.type.value}:{item.entityid}) "
                      f"[{category.value}] in channel {item.parent}: {e}", exc_info=True)
            resolution.errors.append(e)
        return False

    @staticmethod
    def _postable(
        item: SubscribedItem,
        occurred_at: datetime,
        entity: Dict[str, Any],
        embed: Dict[str, Any],
        status: Optional[str] = None,
        retire: bool = False,
    ) -> PostableUpdate:
        return PostableUpdate(
            type=item.type,
            occurred_at=occurred_at,
            entity=entity,
            embed=embed,
            text=embeds.embed_to_text(embed),
            sub_id=item.id,
            message=item.message,
            crosspost=item.crosspost,
            status=status,
            retire=retire,
        )

    def _select_mods(
        self,
        item: SubscribedItem,
        channel: SubscribedChannel,
        mods: Sequence[Dict[str, Any]],
        category: UpdateCategory,
    ) -> List[tuple]:
        """(occurred_at, mod) pairs strictly after the watermark that the content policy allows."""
        field = _TIMESTAMP_FIELD[category]
        selected = []
        for mod in mods:
            occurred_at = required_timestamp(mod, field, category.value)
            if occurred_at <= item.last_update:
                continue
            if not item.allows(bool(mod.get("adult")), channel.nsfw):
                continue
            selected.append((occurred_at, mod))
        return selected

    async def _with_files(self, mod: Dict[str, Any], cache: SubscriptionCache) -> Dict[str, Any]:
        """A copy of `mod` carrying its file list; cached dicts are shared between items."""
        game_id = (mod.get("game") or {}).get("id")
        try:
            files = await cache.get_or_fetch_detail(
                "mod_files", mod["uid"], lambda: self.client.mod_files(game_id, mod["modId"])
            )
        except Exception as e:
            log.warning(f"Could not load files for mod {mod.get('uid')}: {e}")
            files = []
        return dict(mod, files=files)

    # --- Games ---

    async def game_mods(self, item: GameItem, channel: SubscribedChannel, category: UpdateCategory, cache: SubscriptionCache) -> List[tuple]:
        show_adult = item.show_adult(channel.nsfw)
        show_non_adult = item.show_non_adult()
        if not show_adult and not show_non_adult:
            return []
        mods = cache.lookup(category, item.domain, since=item.last_update)
        if mods is None:
            log.debug(f"Cache miss for {category.value}:{item.domain}; querying for item {item.id}")
            fetch = (self.client.new_mods_for_game if category is UpdateCategory.NEW_MODS
                     else self.client.updated_mods_for_game)
            mods = await fetch(item.domain, item.last_update, adult=adult_filter(show_adult, show_non_adult))
        return self._select_mods(item, channel, mods, category)

    async def _resolve_game(self, item: GameItem, channel: SubscribedChannel, cache: SubscriptionCache, resolution: Resolution):
        for category in item.categories():
            async def collect(category=category):
                updated = category is UpdateCategory.UPDATED_MODS
                for occurred_at, mod in await self.game_mods(item, channel, category, cache):
                    if updated:
                        mod = await self._with_files(mod, cache)
                    embed = embeds.mod_embed(mod, item.compact, occurred_at, updated=updated)
                    resolution.updates.append(self._postable(item, occurred_at, mod, embed))
            await self._guarded(item, category, resolution, collect())

    # --- Mods ---

    async def _resolve_mod(self, item: ModItem, channel: SubscribedChannel, cache: SubscriptionCache, resolution: Resolution):
        mod = await cache.get_or_fetch_detail("mod", item.uid, lambda: self.client.mod(item.uid))
        if not mod:
            raise UpstreamStructuralError(f"Mod not found for {item.uid}", "modsByUid")
        status = mod.get("status")
        resolution.status = status
        url = embeds.tracking_url(embeds.mod_url(mod), "subscribedMod")

        if status in ModStatus.PERMANENTLY_UNAVAILABLE:
            log.info(f"Mod {item.uid} is permanently unavailable: {status}")
            resolution.retire = True
            if item.last_status not in ModStatus.PERMANENTLY_UNAVAILABLE:
                embed = embeds.unavailable_embed("mod", mod.get("name") or item.title, status, url, permanent=True)
                resolution.updates.append(self._postable(item, item.last_update, mod, embed, status=status, retire=True))
            return
        if status in ModStatus.TEMPORARILY_UNAVAILABLE:
            log.info(f"Mod {item.uid} is temporarily unavailable: {status}")
            if item.last_status in (None, ModStatus.PUBLISHED):
                embed = embeds.unavailable_embed("mod", mod.get("name") or item.title, status, url, permanent=False)
                resolution.updates.append(self._postable(item, item.last_update, mod, embed, status=status))
            return
        if not item.allows(bool(mod.get("adult")), channel.nsfw):
            return

        game_id = (mod.get("game") or {}).get("id")
        files = await cache.get_or_fetch_detail(
            "mod_files", item.uid, lambda: self.client.mod_files(game_id, mod["modId"])
        )
        fresh = []
        for f in files:
            if f.get("category") in HIDDEN_FILE_CATEGORIES:
                continue
            occurred_at = required_timestamp(f, "date", "modFiles")
            if occurred_at > item.last_update:
                fresh.append((occurred_at, f))
        # Newest first, keep the newest few
        fresh.sort(key=lambda pair: pair[0], reverse=True)
        for occurred_at, f in fresh[:MAX_MOD_FILES]:
            entity = dict(mod, files=[f])
            embed = embeds.mod_file_embed(mod, f, item.compact, occurred_at)
            resolution.updates.append(self._postable(item, occurred_at, entity, embed, status=status))

    # --- Collections ---

    async def _resolve_collection(self, item: CollectionItem, channel: SubscribedChannel, cache: SubscriptionCache, resolution: Resolution):
        collection = await cache.get_or_fetch_detail(
            "collection", item.entityid, lambda: self.client.collection(item.domain, item.slug, adult=True)
        )
        if not collection:
            raise UpstreamStructuralError(f"Collection not found for {item.entityid}", "collection")
        status = collection.get("collectionStatus")
        resolution.status = status
        url = embeds.tracking_url(embeds.collection_url(item.domain, item.slug), "subscribedCollection")
        name = collection.get("name") or item.title

        if status == CollectionStatus.DISCARDED:
            log.info(f"Collection {item.entityid} has been discarded")
            resolution.retire = True
            if item.last_status != CollectionStatus.DISCARDED:
                embed = embeds.unavailable_embed("collection", name, status, url, permanent=True)
                resolution.updates.append(self._postable(item, item.last_update, collection, embed, status=status, retire=True))
            return
        if status == CollectionStatus.UNDER_MODERATION:
            log.info(f"Collection {item.entityid} is under moderation")
            if item.last_status is None or item.last_status in CollectionStatus.VISIBLE:
                embed = embeds.unavailable_embed("collection", name, status, url, permanent=False)
                resolution.updates.append(self._postable(item, item.last_update, collection, embed, status=status))
            return
        if not item.allows(bool(collection.get("adultContent")), channel.nsfw):
            return

        latest = parse_timestamp((collection.get("latestPublishedRevision") or {}).get("updatedAt"))
        if latest is None or latest <= item.last_update:
            return
        revisions = await cache.get_or_fetch_detail(
            "collection_revisions", item.entityid, lambda: self.client.collection_revisions(item.domain, item.slug)
        )
        fresh = []
        for rev in revisions:
            occurred_at = required_timestamp(rev, "updatedAt", "collectionRevisions")
            if occurred_at > item.last_update:
                fresh.append((occurred_at, rev))
        fresh.sort(key=lambda pair: pair[1].get("revisionNumber") or 0)
        for occurred_at, rev in fresh[:MAX_REVISIONS]:
            entity = dict(collection, revisions=[rev])
            embed = embeds.collection_revision_embed(collection, rev, item.compact, occurred_at)
            resolution.updates.append(self._postable(item, occurred_at, entity, embed, status=status))

    # --- Users ---

    async def _resolve_user(self, item: UserItem, channel: SubscribedChannel, cache: SubscriptionCache, resolution: Resolution):
        user: Dict[str, Any] = {}

        async def lookup():
            found = await cache.get_or_fetch_detail("user", item.entityid, lambda: self.client.find_user(item.member_id))
            if not found:
                raise UpstreamStructuralError(f"User not found for {item.member_id}", "user")
            user.update(found)

        if not await self._guarded(item, UpdateCategory.USER_NEW_MODS, resolution, lookup()):
            return

        if user.get("banned") or user.get("deleted"):
            status = "banned" if user.get("banned") else "deleted"
            log.info(f"{user.get('name')} has been {status} on Nexus Mods")
            resolution.status = status
            resolution.retire = True
            embed = embeds.unavailable_embed(
                "user", user.get("name") or item.title, status,
                embeds.user_url(item.member_id), permanent=True,
            )
            resolution.updates.append(self._postable(item, item.last_update, user, embed, status=status, retire=True))
            return

        if user.get("name") and user["name"] != item.title:
            log.info(f"{item.title} changed their username to {user['name']}")
            resolution.title = user["name"]
            embed = embeds.username_changed_embed(item.title, user["name"])
            resolution.updates.append(self._postable(item, item.last_update, user, embed))

        adult = adult_filter(item.show_adult(channel.nsfw), item.show_non_adult())
        for category in item.categories():
            async def collect(category=category):
                if not item.show_adult(channel.nsfw) and not item.show_non_adult():
                    return
                updated = category in _UPDATED_CATEGORIES
                mods = await self.client.mods_by_uploader(item.member_id, item.last_update, updated=updated, adult=adult)
                for occurred_at, mod in self._select_mods(item, channel, mods, category):
                    if updated:
                        mod = await self._with_files(mod, cache)
                    embed = embeds.user_mod_embed(user, mod, item.compact, occurred_at, updated=updated)
                    resolution.updates.append(self._postable(item, occurred_at, dict(user, mod=mod), embed))
            await self._guarded(item, category, resolution, collect())
