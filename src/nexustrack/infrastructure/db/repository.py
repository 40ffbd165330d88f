# File: src/nexustrack/infrastructure/db/repository.py
# Subscription persistence. All reads are converted to domain entities before
# leaving this module; callers never see ORM rows.

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, selectinload

from nexustrack.domain.entities import (
    SubscribedChannel as ChannelEntity,
    SubscribedItem as ItemEntity,
    SubscribedItemType,
    build_item,
    ensure_utc,
    utcnow,
)

from .models import SubscribedChannel, SubscribedItem

logger = logging.getLogger(__name__)

# Columns a caller may change on an existing item through `update_item`.
_ITEM_OPTION_FIELDS = (
    "title", "owner", "crosspost", "compact", "message",
    "nsfw", "sfw", "show_new", "show_updates",
)


class SubscriptionRepository:
    """Repository for subscribed channels and their items."""

    def __init__(self, session: Session):
        self.session = session

    # --- Conversion ---

    @staticmethod
    def _item_to_entity(row: SubscribedItem) -> ItemEntity:
        return build_item(
            SubscribedItemType(row.type),
            id=row.id,
            parent=row.parent,
            entityid=row.entityid,
            title=row.title,
            last_update=row.last_update,
            owner=row.owner,
            crosspost=bool(row.crosspost),
            compact=bool(row.compact),
            message=row.message,
            nsfw=row.nsfw,
            sfw=row.sfw,
            error_count=row.error_count or 0,
            last_status=row.last_status,
            created=row.created or utcnow(),
            show_new=row.show_new,
            show_updates=row.show_updates,
        )

    @classmethod
    def _channel_to_entity(cls, row: SubscribedChannel, with_items: bool = True) -> ChannelEntity:
        return ChannelEntity(
            id=row.id,
            guild_id=row.guild_id,
            channel_id=row.channel_id,
            webhook_id=row.webhook_id,
            webhook_token=row.webhook_token,
            nsfw=bool(row.nsfw),
            unreachable=bool(row.unreachable),
            unreachable_since=row.unreachable_since,
            last_update=row.last_update,
            created=row.created or utcnow(),
            items=[cls._item_to_entity(i) for i in row.items] if with_items else [],
        )

    # --- Channels ---

    def list_channels(self) -> List[ChannelEntity]:
        """Every channel with its items loaded, in creation order."""
        rows = (
            self.session.query(SubscribedChannel)
            .options(selectinload(SubscribedChannel.items))
            .order_by(SubscribedChannel.id)
            .all()
        )
        return [self._channel_to_entity(r) for r in rows]

    def _find_channel_row(self, guild_id: str, channel_id: str) -> Optional[SubscribedChannel]:
        return (
            self.session.query(SubscribedChannel)
            .filter(SubscribedChannel.guild_id == str(guild_id), SubscribedChannel.channel_id == str(channel_id))
            .first()
        )

    def get_channel(self, guild_id: str, channel_id: str) -> Optional[ChannelEntity]:
        row = self._find_channel_row(guild_id, channel_id)
        return self._channel_to_entity(row) if row else None

    def get_channel_by_id(self, channel_pk: int) -> Optional[ChannelEntity]:
        row = self.session.get(SubscribedChannel, channel_pk)
        return self._channel_to_entity(row) if row else None

    def create_channel(
        self,
        guild_id: str,
        channel_id: str,
        webhook_id: str,
        webhook_token: str,
        nsfw: bool = False,
    ) -> ChannelEntity:
        now = utcnow()
        row = SubscribedChannel(
            guild_id=str(guild_id),
            channel_id=str(channel_id),
            webhook_id=str(webhook_id),
            webhook_token=webhook_token,
            nsfw=nsfw,
            unreachable=False,
            last_update=now,
            created=now,
        )
        self.session.add(row)
        self.session.flush()
        logger.info(f"Created subscribed channel {row.id} for guild={guild_id} channel={channel_id}")
        return self._channel_to_entity(row)

    def relink_channel(self, channel_pk: int, webhook_id: str, webhook_token: str, nsfw: Optional[bool] = None) -> None:
        """Stores a fresh delivery credential and clears the unreachable flag."""
        row = self.session.get(SubscribedChannel, channel_pk)
        if not row:
            return
        row.webhook_id = str(webhook_id)
        row.webhook_token = webhook_token
        row.unreachable = False
        row.unreachable_since = None
        if nsfw is not None:
            row.nsfw = nsfw
        self.session.flush()
        logger.info(f"Re-linked channel {channel_pk} to webhook {webhook_id}")

    def mark_unreachable(self, channel_pk: int, when: Optional[datetime] = None) -> None:
        row = self.session.get(SubscribedChannel, channel_pk)
        if not row or row.unreachable:
            return
        row.unreachable = True
        row.unreachable_since = ensure_utc(when) or utcnow()
        self.session.flush()

    def touch_channel(self, channel_pk: int, when: datetime) -> None:
        self.session.execute(
            update(SubscribedChannel)
            .where(SubscribedChannel.id == channel_pk)
            .values(last_update=ensure_utc(when))
            .execution_options(synchronize_session=False)
        )

    def delete_channel(self, channel_pk: int) -> bool:
        row = self.session.get(SubscribedChannel, channel_pk)
        if not row:
            return False
        self.session.delete(row)
        self.session.flush()
        logger.info(f"Deleted subscribed channel {channel_pk} (guild={row.guild_id} channel={row.channel_id})")
        return True

    def purge_unreachable(self, cutoff: datetime) -> List[ChannelEntity]:
        """Deletes channels flagged unreachable before `cutoff`; returns what was removed."""
        rows = (
            self.session.query(SubscribedChannel)
            .options(selectinload(SubscribedChannel.items))
            .filter(
                SubscribedChannel.unreachable.is_(True),
                SubscribedChannel.unreachable_since < ensure_utc(cutoff),
            )
            .all()
        )
        removed = [self._channel_to_entity(r) for r in rows]
        for row in rows:
            self.session.delete(row)
        self.session.flush()
        return removed

    # --- Items ---

    def list_items(self, channel_pk: int) -> List[ItemEntity]:
        rows = (
            self.session.query(SubscribedItem)
            .filter(SubscribedItem.parent == channel_pk)
            .order_by(SubscribedItem.id)
            .all()
        )
        return [self._item_to_entity(r) for r in rows]

    def get_item(self, item_id: int) -> Optional[ItemEntity]:
        row = self.session.get(SubscribedItem, item_id)
        return self._item_to_entity(row) if row else None

    def find_item(self, channel_pk: int, item_type: SubscribedItemType, entityid: str) -> Optional[ItemEntity]:
        row = (
            self.session.query(SubscribedItem)
            .filter(
                SubscribedItem.parent == channel_pk,
                SubscribedItem.type == item_type.value,
                SubscribedItem.entityid == str(entityid),
            )
            .first()
        )
        return self._item_to_entity(row) if row else None

    def create_item(
        self,
        channel_pk: int,
        item_type: SubscribedItemType,
        entityid: str,
        title: str,
        last_update: Optional[datetime] = None,
        last_status: Optional[str] = None,
        **options: Any,
    ) -> ItemEntity:
        now = utcnow()
        values = {k: v for k, v in options.items() if k in _ITEM_OPTION_FIELDS and k != "title"}
        if item_type is SubscribedItemType.GAME:
            values.setdefault("show_new", True)
            values.setdefault("show_updates", True)
        else:
            values.pop("show_new", None)
            values.pop("show_updates", None)
        row = SubscribedItem(
            parent=channel_pk,
            type=item_type.value,
            entityid=str(entityid),
            title=title,
            last_update=ensure_utc(last_update) or now,
            last_status=last_status,
            error_count=0,
            created=now,
            **values,
        )
        row.crosspost = bool(values.get("crosspost", False))
        row.compact = bool(values.get("compact", False))
        self.session.add(row)
        self.session.flush()
        logger.info(f"Created {item_type.value} item {row.id} ({entityid}) in channel {channel_pk}")
        return self._item_to_entity(row)

    def update_item(self, item_id: int, **options: Any) -> Optional[ItemEntity]:
        row = self.session.get(SubscribedItem, item_id)
        if not row:
            return None
        for name, value in options.items():
            if name not in _ITEM_OPTION_FIELDS:
                continue
            if name in ("show_new", "show_updates") and row.type != SubscribedItemType.GAME.value:
                continue
            if name in ("crosspost", "compact"):
                value = bool(value)
            setattr(row, name, value)
        self.session.flush()
        return self._item_to_entity(row)

    def delete_item(self, item_id: int) -> bool:
        row = self.session.get(SubscribedItem, item_id)
        if not row:
            return False
        self.session.delete(row)
        self.session.flush()
        return True

    def delete_items(self, channel_pk: int, item_ids: Iterable[int]) -> List[int]:
        """Deletes the given items of one channel; ids from other channels are ignored."""
        ids = [int(i) for i in item_ids]
        if not ids:
            return []
        rows = (
            self.session.query(SubscribedItem)
            .filter(SubscribedItem.parent == channel_pk, SubscribedItem.id.in_(ids))
            .all()
        )
        deleted = [r.id for r in rows]
        for row in rows:
            self.session.delete(row)
        self.session.flush()
        return deleted

    def count_items(self, channel_pk: int) -> int:
        return self.session.query(SubscribedItem).filter(SubscribedItem.parent == channel_pk).count()

    # --- Polling engine writes ---

    def save_watermark(self, item_id: int, when: datetime, last_status: Optional[str] = None) -> bool:
        """
        Advances an item's watermark. The write only lands if it moves the
        watermark forward, so a stale writer can never regress it.
        Returns True when the row was changed.
        """
        when = ensure_utc(when)
        result = self.session.execute(
            update(SubscribedItem)
            .where(SubscribedItem.id == item_id, SubscribedItem.last_update < when)
            .values(last_update=when)
            .execution_options(synchronize_session=False)
        )
        if last_status is not None:
            self.save_status(item_id, last_status)
        return result.rowcount > 0

    def save_status(self, item_id: int, last_status: str) -> None:
        self.session.execute(
            update(SubscribedItem)
            .where(SubscribedItem.id == item_id)
            .values(last_status=last_status)
            .execution_options(synchronize_session=False)
        )

    def set_watermark_for_channel(self, channel_pk: int, when: datetime) -> int:
        """Administrative override: moves every item of a channel to `when`, backwards included."""
        result = self.session.execute(
            update(SubscribedItem)
            .where(SubscribedItem.parent == channel_pk)
            .values(last_update=ensure_utc(when))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def increment_error_count(self, item_id: int) -> int:
        row = self.session.get(SubscribedItem, item_id)
        if not row:
            return 0
        row.error_count = (row.error_count or 0) + 1
        self.session.flush()
        return row.error_count

    def reset_error_count(self, item_id: int) -> None:
        self.session.execute(
            update(SubscribedItem)
            .where(SubscribedItem.id == item_id, SubscribedItem.error_count != 0)
            .values(error_count=0)
            .execution_options(synchronize_session=False)
        )

