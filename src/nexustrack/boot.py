# File: src/nexustrack/boot.py
# Builds the service container once per process. The subscription manager is
# owned here and passed explicitly to whatever needs it.

import logging
from typing import Any, Dict

from nexustrack.application.services import SubscriptionManager, TrackingService
from nexustrack.domain.errors import ConfigurationError
from nexustrack.infrastructure.nexus.client import NexusModsClient
from nexustrack.infrastructure.notify.discord import DiscordWebhookNotifier

log = logging.getLogger(__name__)


def build_services() -> Dict[str, Any]:
    """Build and wire all application services and dependencies."""
    log.info("Building application services...")
    services: Dict[str, Any] = {}

    try:
        notifier = DiscordWebhookNotifier()
        services["notifier"] = notifier

        # Without an upstream key neither polling nor tracking can work;
        # the web surface still comes up and reports it.
        try:
            client = NexusModsClient()
            manager = SubscriptionManager(client=client, notifier=notifier)
        except ConfigurationError as e:
            log.critical(f"❌ Subscription polling disabled: {e}")
            client = None
            manager = None

        services["nexus_client"] = client
        services["subscription_manager"] = manager
        services["tracking_service"] = (
            TrackingService(client=client, notifier=notifier, manager=manager) if client else None
        )

        log.info("✅ All services built and wired successfully.")
        return services

    except Exception as e:
        log.critical(f"❌ Service building failed: {e}", exc_info=True)
        raise


async def close_services(services: Dict[str, Any]) -> None:
    """Stops the manager and closes the HTTP clients."""
    manager = services.get("subscription_manager")
    if manager:
        await manager.stop()
    for name in ("nexus_client", "notifier"):
        client = services.get(name)
        if client:
            await client.aclose()
