# src/nexustrack/application/services/delivery_service.py
"""
DeliveryPipeline: posts an item's updates to its channel webhook in batches
and moves the item's watermark to the last update that actually went out.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from nexustrack.domain.entities import PostableUpdate, SubscribedChannel, SubscribedItem
from nexustrack.domain.errors import DestinationError, NexusTrackError, PayloadRejectedError
from nexustrack.infrastructure.db.repository import SubscriptionRepository
from nexustrack.infrastructure.db.uow import SessionScope, session_scope as default_session_scope
from nexustrack.infrastructure.notify.discord import CROSSPOST_FAILED_NOTICE
from nexustrack.interfaces.discord.embeds import join_texts

log = logging.getLogger(__name__)

# Discord accepts at most 10 embeds per message.
BATCH_SIZE = 10


def batches(updates: Sequence[PostableUpdate], size: int = BATCH_SIZE) -> List[List[PostableUpdate]]:
    return [list(updates[i:i + size]) for i in range(0, len(updates), size)]


class DeliveryPipeline:
    def __init__(self, notifier, session_scope: SessionScope = default_session_scope):
        self.notifier = notifier
        self.session_scope = session_scope

    async def deliver(
        self,
        channel: SubscribedChannel,
        item: SubscribedItem,
        updates: Sequence[PostableUpdate],
    ) -> int:
        """
        Delivers `updates` (ascending by occurrence) and returns how many were
        posted. On a failed batch, the watermark is persisted up to the last
        batch that went out and the error is re-raised.
        """
        if not updates:
            return 0

        delivered = 0
        watermark: Optional[datetime] = None
        status: Optional[str] = None
        retire = False
        try:
            for index, batch in enumerate(batches(updates)):
                content = item.message if index == 0 else None
                message = await self._post_batch(channel, batch, content)
                delivered += len(batch)
                watermark = batch[-1].occurred_at
                for update in batch:
                    if update.status is not None:
                        status = update.status
                    retire = retire or update.retire
                if batch[0].crosspost and message:
                    await self._crosspost(channel, message)
        finally:
            if delivered:
                self._persist(item, watermark, status, retire)

        log.info(f"Delivered {delivered} update(s) for item {item.id} to channel {channel.channel_id}")
        return delivered

    async def _post_batch(
        self,
        channel: SubscribedChannel,
        batch: List[PostableUpdate],
        content: Optional[str],
    ) -> Optional[Dict[str, Any]]:
        try:
            return await self.notifier.post(
                channel.webhook_id,
                channel.webhook_token,
                content=content,
                embeds=[u.embed for u in batch],
            )
        except PayloadRejectedError as e:
            log.warning(f"Rich payload rejected for channel {channel.channel_id} ({e}); retrying as plain text")
            return await self.notifier.post(
                channel.webhook_id,
                channel.webhook_token,
                content=join_texts([u.text for u in batch], content),
            )

    async def _crosspost(self, channel: SubscribedChannel, message: Dict[str, Any]):
        message_id = message.get("id")
        try:
            await self.notifier.crosspost(channel.channel_id, message_id)
            log.info(f"Crossposted message {message_id} in channel {channel.channel_id}")
        except NexusTrackError as e:
            log.warning(f"Failed to crosspost message {message_id} in channel {channel.channel_id}: {e}")
            try:
                await self.notifier.post(channel.webhook_id, channel.webhook_token, content=CROSSPOST_FAILED_NOTICE)
            except DestinationError as notice_error:
                log.warning(f"Could not post crosspost notice to channel {channel.channel_id}: {notice_error}")

    def _persist(self, item: SubscribedItem, watermark: Optional[datetime], status: Optional[str], retire: bool):
        with self.session_scope() as session:
            repo = SubscriptionRepository(session)
            if retire:
                repo.delete_item(item.id)
                log.info(f"Item {item.id} ({item.type.value}:{item.entityid}) retired after final notice")
                return
            if watermark is not None:
                if repo.save_watermark(item.id, watermark):
                    item.last_update = watermark
            if status is not None:
                repo.save_status(item.id, status)
                item.last_status = status
