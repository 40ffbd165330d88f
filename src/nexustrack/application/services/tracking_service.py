# src/nexustrack/application/services/tracking_service.py
"""
TrackingService - the administrative surface: track, list, untrack, trigger update.

Every failure a user can act on is raised as `TrackingError` with a message
meant to be shown as-is.
"""

import logging
import re
from datetime import date as date_cls, datetime, time as time_cls, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from nexustrack.domain.entities import (
    SubscribedItem,
    SubscribedItemType,
    utcnow,
)
from nexustrack.domain.errors import (
    ConfigurationError,
    DestinationError,
    DestinationUnreachableError,
    TrackingError,
    UpstreamError,
)
from nexustrack.infrastructure.db.repository import SubscriptionRepository
from nexustrack.infrastructure.db.uow import SessionScope, session_scope as default_session_scope

log = logging.getLogger(__name__)

_MOD_URL = re.compile(r"nexusmods\.com/(?:games/)?([\w-]+)/mods/(\d+)")
_COLLECTION_URL = re.compile(r"nexusmods\.com/(?:games/)?([\w-]+)/collections/([\w-]+)")
_DOMAIN_AND_ID = re.compile(r"^([\w-]+)[:/](\d+)$")
_OFFSET = re.compile(r"^([+-])(\d{1,2}):?(\d{2})$")


def parse_offset(value: Optional[str]) -> timezone:
    """`+HH:MM`, `-HHMM`, `Z` or `UTC`; missing means UTC."""
    if not value or value.strip().upper() in ("Z", "UTC", "GMT"):
        return timezone.utc
    match = _OFFSET.match(value.strip())
    if not match:
        raise TrackingError(f"Invalid timezone '{value}'. Use an offset like +00:00.")
    sign, hours, minutes = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    if delta >= timedelta(hours=24):
        raise TrackingError(f"Invalid timezone '{value}'. Use an offset like +00:00.")
    return timezone(-delta if sign == "-" else delta)


def parse_instant(
    date: Optional[str] = None,
    time: Optional[str] = None,
    tz: Optional[str] = None,
    now: Optional[datetime] = None,
) -> datetime:
    """
    Turns `YYYY-MM-DD`, `HH:MM` and an offset into a UTC instant.
    Nothing given means now; a date alone means its midnight; a time alone
    means today at that time.
    """
    now = now or utcnow()
    tzinfo = parse_offset(tz)
    if not date and not time:
        return now
    try:
        day = date_cls.fromisoformat(date) if date else now.astimezone(tzinfo).date()
        at = time_cls.fromisoformat(time) if time else time_cls(0, 0)
    except ValueError as e:
        raise TrackingError(f"Invalid date or time: {e}. Use YYYY-MM-DD and HH:MM.") from e
    instant = datetime.combine(day, at.replace(tzinfo=None), tzinfo).astimezone(timezone.utc)
    if instant > now:
        raise TrackingError("The update date cannot be in the future.")
    return instant


class TrackingService:
    def __init__(self, client, notifier, manager=None, session_scope: SessionScope = default_session_scope):
        self.client = client
        self.notifier = notifier
        self.manager = manager
        self.session_scope = session_scope

    # --- Entity validation ---

    async def resolve_entity(self, item_type: SubscribedItemType, entity: str) -> Tuple[str, str, Optional[str]]:
        """Looks `entity` up upstream; returns (entity id, title, availability status)."""
        entity = (entity or "").strip()
        if not entity:
            raise TrackingError("Nothing to track: the entity is empty.")
        try:
            if item_type is SubscribedItemType.GAME:
                game = await self.client.game_info(entity.lower())
                if not game:
                    raise TrackingError(f"Game '{entity}' was not found on Nexus Mods.")
                return game.get("domain_name") or entity.lower(), game.get("name") or entity, None

            if item_type is SubscribedItemType.MOD:
                mod = await self._find_mod(entity)
                if not mod:
                    raise TrackingError(f"Mod '{entity}' was not found on Nexus Mods.")
                return str(mod["uid"]), mod.get("name") or entity, mod.get("status")

            if item_type is SubscribedItemType.COLLECTION:
                domain, slug = self._collection_ids(entity)
                collection = await self.client.collection(domain, slug, adult=True)
                if not collection:
                    raise TrackingError(f"Collection '{entity}' was not found on Nexus Mods.")
                domain = (collection.get("game") or {}).get("domainName") or domain
                return f"{domain}:{collection.get('slug') or slug}", collection.get("name") or slug, collection.get("collectionStatus")

            if item_type is SubscribedItemType.USER:
                user = await self.client.find_user(entity)
                if not user:
                    raise TrackingError(f"User '{entity}' was not found on Nexus Mods.")
                if user.get("banned") or user.get("deleted"):
                    raise TrackingError(f"User '{user.get('name', entity)}' is banned or deleted and cannot be tracked.")
                return str(user["memberId"]), user.get("name") or entity, None
        except UpstreamError as e:
            log.warning(f"Upstream lookup for {item_type.value} '{entity}' failed: {e}")
            raise TrackingError(f"Could not look up {item_type.value} '{entity}' on Nexus Mods right now. Please try again later.") from e
        raise TrackingError(f"Unsupported item type: {item_type}")

    async def _find_mod(self, entity: str) -> Optional[Dict[str, Any]]:
        match = _MOD_URL.search(entity) or _DOMAIN_AND_ID.match(entity)
        if match:
            domain, mod_id = match.groups()
            return await self.client.mod_by_domain(domain, int(mod_id))
        if entity.isdigit():
            return await self.client.mod(entity)
        raise TrackingError("Mods are tracked by link, `domain:mod id` or mod UID.")

    @staticmethod
    def _collection_ids(entity: str) -> Tuple[str, str]:
        match = _COLLECTION_URL.search(entity)
        if match:
            return match.group(1), match.group(2)
        if ":" in entity:
            domain, slug = entity.split(":", 1)
            if domain and slug:
                return domain, slug
        raise TrackingError("Collections are tracked by link or `domain:slug`.")

    # --- Destination ---

    async def _create_webhook(self, channel_id: str) -> Dict[str, Any]:
        try:
            webhook = await self.notifier.create_webhook(channel_id)
        except DestinationUnreachableError as e:
            log.warning(f"Could not create webhook in channel {channel_id}: {e}")
            raise TrackingError("failed to create delivery credential: insufficient permissions") from e
        except ConfigurationError as e:
            raise TrackingError("failed to create delivery credential: the bot token is not configured") from e
        except DestinationError as e:
            raise TrackingError(f"failed to create delivery credential: {e}") from e
        if not webhook or not webhook.get("id") or not webhook.get("token"):
            raise TrackingError("failed to create delivery credential: Discord returned no webhook token")
        return webhook

    async def _channel_nsfw(self, channel_id: str) -> bool:
        try:
            info = await self.notifier.channel_info(channel_id)
        except (DestinationError, ConfigurationError) as e:
            log.debug(f"Could not read channel {channel_id} info, assuming SFW: {e}")
            return False
        return bool((info or {}).get("nsfw"))

    # --- Operations ---

    async def track(
        self,
        guild_id: str,
        channel_id: str,
        item_type: SubscribedItemType | str,
        entity: str,
        owner: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> SubscribedItem:
        """
        Subscribes a channel to an entity. Creates the channel (and its webhook)
        on first use, re-links it when it was flagged unreachable, and updates
        the existing item when the entity is already tracked there.
        """
        try:
            item_type = SubscribedItemType(item_type)
        except ValueError as e:
            raise TrackingError(f"Unknown item type '{item_type}'.") from e
        options = {k: v for k, v in (options or {}).items() if k not in ("title", "owner")}
        entityid, title, status = await self.resolve_entity(item_type, entity)

        with self.session_scope() as session:
            existing = SubscriptionRepository(session).get_channel(guild_id, channel_id)

        webhook = None
        nsfw = None
        if existing is None or existing.unreachable:
            webhook = await self._create_webhook(channel_id)
            nsfw = await self._channel_nsfw(channel_id)

        with self.session_scope() as session:
            repo = SubscriptionRepository(session)
            if existing is None:
                channel = repo.create_channel(guild_id, channel_id, webhook["id"], webhook["token"], nsfw=bool(nsfw))
            else:
                channel = existing
                if webhook is not None:
                    repo.relink_channel(channel.id, webhook["id"], webhook["token"], nsfw=nsfw)

            current = repo.find_item(channel.id, item_type, entityid)
            if current is not None:
                item = repo.update_item(current.id, title=title, owner=owner or current.owner, **options)
                log.info(f"Updated {item_type.value} '{entityid}' tracking in channel {channel_id}")
            else:
                item = repo.create_item(
                    channel.id, item_type, entityid, title,
                    last_status=status, owner=owner, **options,
                )
                log.info(f"Now tracking {item_type.value} '{entityid}' in channel {channel_id} (guild {guild_id})")
        return item

    def list_items(self, guild_id: str, channel_id: str) -> List[SubscribedItem]:
        with self.session_scope() as session:
            repo = SubscriptionRepository(session)
            channel = repo.get_channel(guild_id, channel_id)
            return repo.list_items(channel.id) if channel else []

    def untrack(self, guild_id: str, channel_id: str, item_ids: List[int]) -> Dict[str, Any]:
        """Deletes the selected items; the channel goes with its last item."""
        with self.session_scope() as session:
            repo = SubscriptionRepository(session)
            channel = repo.get_channel(guild_id, channel_id)
            if channel is None:
                raise TrackingError("This channel has no tracked items.")
            deleted = repo.delete_items(channel.id, item_ids)
            if not deleted:
                raise TrackingError("None of the selected items are tracked in this channel.")
            channel_deleted = False
            if repo.count_items(channel.id) == 0:
                channel_deleted = repo.delete_channel(channel.id)
        log.info(f"Untracked {len(deleted)} item(s) in channel {channel_id}; channel removed: {channel_deleted}")
        return {"deleted": deleted, "channel_deleted": channel_deleted}

    async def trigger_update(
        self,
        guild_id: str,
        channel_id: str,
        date: Optional[str] = None,
        time: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Moves every item in the channel to the given instant and runs a cycle
        straight away. Reports how many items were refreshed and the first error.
        """
        if self.manager is None:
            raise TrackingError("Update checks are not running on this instance.")
        since = parse_instant(date, time, timezone)
        with self.session_scope() as session:
            if SubscriptionRepository(session).get_channel(guild_id, channel_id) is None:
                raise TrackingError("This channel has no tracked items.")
        report = await self.manager.force_cycle(guild_id, channel_id, since)
        return {
            "since": since,
            "refreshed": report.refreshed,
            "delivered": report.delivered,
            "first_error": report.first_error,
        }
