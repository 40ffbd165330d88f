# File: src/nexustrack/application/services/__init__.py

from .update_resolver import UpdateResolver
from .delivery_service import DeliveryPipeline
from .subscription_manager import SubscriptionManager
from .tracking_service import TrackingService

__all__ = [
    "UpdateResolver",
    "DeliveryPipeline",
    "SubscriptionManager",
    "TrackingService",
]
