# src/nexustrack/interfaces/api/deps.py

from fastapi import Header, HTTPException, Request

from nexustrack.config import settings
from nexustrack.application.services.subscription_manager import SubscriptionManager
from nexustrack.application.services.tracking_service import TrackingService


# --- Service Dependencies ---

def get_tracking_service(request: Request) -> TrackingService:
    """Dependency to get the TrackingService instance from the app state."""
    services = request.app.state.services or {}
    service = services.get("tracking_service")
    if not service:
        raise HTTPException(status_code=503, detail="Tracking service is currently unavailable.")
    return service


def get_subscription_manager(request: Request) -> SubscriptionManager:
    """Dependency to get the SubscriptionManager instance from the app state."""
    services = request.app.state.services or {}
    manager = services.get("subscription_manager")
    if not manager:
        raise HTTPException(status_code=503, detail="Subscription polling is not configured.")
    return manager


# --- API Key Dependency ---

def require_api_key(x_api_key: str | None = Header(default=None)):
    if settings.API_KEY and x_api_key != settings.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return True
