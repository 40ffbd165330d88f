# --- START OF FILE: src/nexustrack/interfaces/api/main.py ---
import logging

from fastapi import FastAPI

from nexustrack import __version__
from nexustrack.boot import build_services, close_services
from nexustrack.infrastructure.db.uow import create_tables
from nexustrack.interfaces.api.routers import subscriptions as subscriptions_router
from nexustrack.logging_conf import setup_logging

setup_logging()
log = logging.getLogger(__name__)

# --- FastAPI App ---
app = FastAPI(title="NexusTrack API", version=__version__)
app.state.services = None


@app.on_event("startup")
async def on_startup():
    log.info("🚀 Application startup sequence initiated...")
    create_tables()
    app.state.services = build_services()

    manager = app.state.services.get("subscription_manager")
    if manager:
        manager.start()
    else:
        log.warning("Subscription manager unavailable; no updates will be posted.")
    log.info("🚀 Application startup complete.")


@app.on_event("shutdown")
async def on_shutdown():
    if app.state.services:
        await close_services(app.state.services)
    log.info("Application shut down.")


@app.get("/")
def root(): return {"message": "NexusTrack API Running"}


@app.get("/health")
def health_check(): return {"status": "ok"}


app.include_router(subscriptions_router.router)
# --- END OF FILE ---
