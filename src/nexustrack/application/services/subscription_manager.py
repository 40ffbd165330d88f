# --- src/nexustrack/application/services/subscription_manager.py ---
"""
SubscriptionManager - owns the poll timer and runs the poll/resolve/deliver cycle.

One instance per process, built in `boot.build_services()` and handed to
whoever needs it (FastAPI state, the tracking service).

Cycle:
  1. purge channels that have been unreachable longer than the retention window
  2. reload channels with their items
  3. build a fresh SubscriptionCache and prepare it (the only fan-out)
  4. channels in order, items in order: resolve -> deliver -> account errors
  5. drop the cache

Only one cycle runs at a time (`asyncio.Lock`); forced cycles wait for an
in-flight one instead of cancelling it.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from nexustrack.config import settings
from nexustrack.domain.entities import (
    CycleReport,
    Resolution,
    SubscribedChannel,
    SubscribedItem,
    utcnow,
)
from nexustrack.domain.errors import (
    ConfigurationError,
    DestinationError,
    DestinationUnreachableError,
    NexusTrackError,
    UpstreamTransientError,
)
from nexustrack.infrastructure.cache import SubscriptionCache
from nexustrack.infrastructure.db.repository import SubscriptionRepository
from nexustrack.infrastructure.db.uow import SessionScope, session_scope as default_session_scope
from nexustrack.infrastructure.notify.discord import WEBHOOK_LOST_NOTICE

from .delivery_service import DeliveryPipeline
from .update_resolver import UpdateResolver

log = logging.getLogger(__name__)


class SubscriptionManager:
    def __init__(
        self,
        client,
        notifier,
        resolver: Optional[UpdateResolver] = None,
        delivery: Optional[DeliveryPipeline] = None,
        session_scope: SessionScope = default_session_scope,
        api_key: Optional[str] = None,
        poll_interval: Optional[float] = None,
        first_delay: Optional[float] = None,
        max_item_errors: Optional[int] = None,
        retention_days: Optional[int] = None,
    ):
        api_key = api_key if api_key is not None else settings.NEXUS_API_KEY
        if not api_key:
            raise ConfigurationError("NEXUS_API_KEY is not set; subscriptions cannot be polled.")

        self.client = client
        self.notifier = notifier
        self.session_scope = session_scope
        self.resolver = resolver or UpdateResolver(client)
        self.delivery = delivery or DeliveryPipeline(notifier, session_scope)

        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL_SECONDS
        self.first_delay = first_delay if first_delay is not None else settings.FIRST_POLL_DELAY_SECONDS
        self.max_item_errors = max_item_errors or settings.MAX_ITEM_ERRORS
        self.retention = timedelta(
            days=retention_days if retention_days is not None else settings.UNREACHABLE_RETENTION_DAYS
        )

        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._started = False
        self.paused = False
        self.next_run_at: Optional[datetime] = None
        self.last_report: Optional[CycleReport] = None

    # --- Timer ---

    def start(self, poll_interval: Optional[float] = None, first_delay: Optional[float] = None):
        """Schedules the first tick on the running loop. Idempotent."""
        if poll_interval is not None:
            self.poll_interval = poll_interval
        if self._started:
            return
        self._loop = asyncio.get_running_loop()
        self._started = True
        self.paused = False
        delay = first_delay if first_delay is not None else self.first_delay
        self._schedule(delay)
        log.info(f"✅ SubscriptionManager started: first cycle in {delay}s, then every {self.poll_interval}s")

    def _schedule(self, delay: float):
        if not self._started or self.paused:
            return
        self._cancel_timer()
        self.next_run_at = utcnow() + timedelta(seconds=delay)
        self._handle = self._loop.call_later(delay, self._on_tick)

    def _cancel_timer(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.next_run_at = None

    def _on_tick(self):
        self._handle = None
        self._task = self._loop.create_task(self._tick())

    async def _tick(self):
        try:
            await self._locked_cycle()
        except Exception as e:
            log.error(f"Subscription cycle failed: {e}", exc_info=True)
        finally:
            self._schedule(self.poll_interval)

    async def _locked_cycle(self) -> CycleReport:
        async with self._lock:
            return await self.run_cycle()

    async def stop(self):
        """Cancels the pending tick and waits for an in-flight cycle to finish."""
        self._started = False
        self._cancel_timer()
        if self._task is not None and not self._task.done():
            log.info("Waiting for the running subscription cycle to finish...")
            await self._task
        # Forced cycles hold the lock without a task of ours.
        async with self._lock:
            pass
        log.info("SubscriptionManager stopped.")

    def pause(self):
        self.paused = True
        self._cancel_timer()
        log.info("SubscriptionManager paused.")

    def resume(self):
        if not self.paused:
            return
        self.paused = False
        self._schedule(self.poll_interval)
        log.info("SubscriptionManager resumed.")

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def status(self) -> Dict[str, Any]:
        report = self.last_report
        return {
            "started": self._started,
            "paused": self.paused,
            "running": self.running,
            "poll_interval": self.poll_interval,
            "next_run_at": self.next_run_at,
            "last_cycle": None if report is None else {
                "started_at": report.started_at,
                "finished_at": report.finished_at,
                "channels": report.channels,
                "items": report.items,
                "delivered": report.delivered,
                "errors": len(report.errors),
                "first_error": report.first_error,
            },
        }

    # --- Forced cycles ---

    async def force_cycle(
        self,
        guild_id: Optional[str] = None,
        channel_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> CycleReport:
        """
        Runs a cycle now. With a channel and `since`, every item in that
        channel is first moved to `since` (backwards included). The regular
        timer restarts from now once the cycle ends.
        """
        self._cancel_timer()
        try:
            async with self._lock:
                refreshed = 0
                if since is not None and guild_id is not None and channel_id is not None:
                    refreshed = self._set_channel_watermark(guild_id, channel_id, since)
                report = await self.run_cycle()
                report.refreshed = refreshed
                return report
        finally:
            self._schedule(self.poll_interval)

    def _set_channel_watermark(self, guild_id: str, channel_id: str, since: datetime) -> int:
        with self.session_scope() as session:
            repo = SubscriptionRepository(session)
            channel = repo.get_channel(guild_id, channel_id)
            if channel is None:
                log.warning(f"Forced cycle for unknown channel guild={guild_id} channel={channel_id}")
                return 0
            count = repo.set_watermark_for_channel(channel.id, since)
        log.info(f"Set watermark of {count} item(s) in channel {channel_id} to {since.isoformat()}")
        return count

    # --- Cycle ---

    async def run_cycle(self) -> CycleReport:
        report = CycleReport()
        self._purge_unreachable()
        channels = self._load_channels()
        report.channels = len(channels)

        cache = SubscriptionCache(self.client)
        await cache.prepare([item for c in channels if not c.unreachable for item in c.items])

        for channel in channels:
            try:
                report.delivered += await self._process_channel(channel, cache, report)
            except Exception as e:
                log.error(f"Unexpected failure processing channel {channel.id} "
                          f"(guild={channel.guild_id} channel={channel.channel_id}): {e}", exc_info=True)
                report.errors.append(f"channel {channel.channel_id}: {e}")

        report.finished_at = utcnow()
        self.last_report = report
        log.info(
            f"Cycle finished: {report.channels} channel(s), {report.items} item(s), "
            f"{report.delivered} update(s) delivered, {len(report.errors)} error(s), "
            f"{cache.queries_issued} cache queries"
        )
        return report

    def _load_channels(self) -> List[SubscribedChannel]:
        with self.session_scope() as session:
            return SubscriptionRepository(session).list_channels()

    def _purge_unreachable(self):
        cutoff = utcnow() - self.retention
        with self.session_scope() as session:
            removed = SubscriptionRepository(session).purge_unreachable(cutoff)
        for channel in removed:
            log.warning(
                f"Deleted channel {channel.id} (guild={channel.guild_id} channel={channel.channel_id}) "
                f"with {len(channel.items)} item(s): unreachable since {channel.unreachable_since}"
            )

    async def _process_channel(self, channel: SubscribedChannel, cache: SubscriptionCache, report: CycleReport) -> int:
        if channel.unreachable:
            log.debug(f"Skipping unreachable channel {channel.channel_id}")
            return 0
        if not channel.items:
            with self.session_scope() as session:
                SubscriptionRepository(session).delete_channel(channel.id)
            return 0

        try:
            await self.notifier.resolve_webhook(channel.webhook_id, channel.webhook_token)
        except DestinationUnreachableError as e:
            await self._mark_unreachable(channel, e)
            report.errors.append(f"channel {channel.channel_id}: {e}")
            return 0
        except DestinationError as e:
            log.warning(f"Webhook for channel {channel.channel_id} could not be resolved: {e}")
            report.errors.append(f"channel {channel.channel_id}: {e}")
            return 0

        delivered = 0
        for item in channel.items:
            report.items += 1
            try:
                resolution = await self.resolver.resolve(item, channel, cache)
            except Exception as e:
                log.error(f"Resolver crashed for item {item.id}: {e}", exc_info=True)
                resolution = Resolution(errors=[e])
            for error in resolution.errors:
                report.errors.append(f"item {item.id} ({item.type.value}:{item.entityid}): {error}")

            try:
                delivered += await self.delivery.deliver(channel, item, resolution.updates)
            except DestinationUnreachableError as e:
                await self._mark_unreachable(channel, e)
                report.errors.append(f"channel {channel.channel_id}: {e}")
                return delivered
            except DestinationError as e:
                log.warning(f"Delivery for item {item.id} in channel {channel.channel_id} failed: {e}")
                report.errors.append(f"item {item.id}: {e}")
                continue

            self._account(item, resolution)

        with self.session_scope() as session:
            SubscriptionRepository(session).touch_channel(channel.id, utcnow())
        return delivered

    def _account(self, item: SubscribedItem, resolution: Resolution):
        """Persists what the cycle learned about an item after its delivery succeeded."""
        with self.session_scope() as session:
            repo = SubscriptionRepository(session)
            if resolution.retire:
                if repo.delete_item(item.id):
                    log.info(f"Item {item.id} ({item.type.value}:{item.entityid}) is gone upstream; removed")
                return
            # Kept even when another category failed.
            if resolution.status is not None and resolution.status != item.last_status:
                repo.save_status(item.id, resolution.status)
                item.last_status = resolution.status
            if resolution.title and resolution.title != item.title:
                repo.update_item(item.id, title=resolution.title)
                item.title = resolution.title

            if resolution.errors:
                if all(isinstance(e, UpstreamTransientError) for e in resolution.errors):
                    return
                count = repo.increment_error_count(item.id)
                if count >= self.max_item_errors:
                    repo.delete_item(item.id)
                    log.warning(
                        f"Deleted item {item.id} ({item.type.value}:{item.entityid}) in channel {item.parent} "
                        f"after {count} consecutive failures"
                    )
                return
            if item.error_count:
                repo.reset_error_count(item.id)

    async def _mark_unreachable(self, channel: SubscribedChannel, error: Exception):
        log.warning(f"Channel {channel.channel_id} in guild {channel.guild_id} is unreachable: {error}")
        with self.session_scope() as session:
            SubscriptionRepository(session).mark_unreachable(channel.id)
        channel.unreachable = True
        try:
            await self.notifier.send_channel_message(channel.channel_id, WEBHOOK_LOST_NOTICE)
        except NexusTrackError as e:
            log.debug(f"Could not tell channel {channel.channel_id} about the lost webhook: {e}")
