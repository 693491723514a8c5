"""FastAPI application factory for the contact bridge HTTP API."""

from typing import Optional

from fastapi import FastAPI

from contact_bridge import __version__
from contact_bridge.config.settings import BridgeSettings
from contact_bridge.storage.db import ContactStore
from contact_bridge.sync.engine import SyncOrchestrator
from contact_bridge.web.routes import router


def create_app(
    settings: BridgeSettings,
    store: Optional[ContactStore] = None,
    orchestrator: Optional[SyncOrchestrator] = None,
) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        settings: Runtime settings
        store: Initialized contact store (default: SQLite at
            settings.database_path)
        orchestrator: Sync orchestrator (default: built from settings)

    Returns:
        FastAPI application with the contact routes mounted
    """
    if store is None:
        settings.database_path.parent.mkdir(parents=True, exist_ok=True)
        store = ContactStore(str(settings.database_path)).initialize()

    app = FastAPI(title="Contact Bridge API", version=__version__)
    app.state.settings = settings
    app.state.store = store
    app.state.orchestrator = orchestrator or settings.build_orchestrator()
    app.include_router(router)
    return app
