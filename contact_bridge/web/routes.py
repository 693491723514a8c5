"""
HTTP routes for contact import, CardDAV fetch and CardDAV sync.

Handlers read the contact store and orchestrator from app.state, which
create_app populates.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from contact_bridge.api.carddav_client import (
    AuthError,
    CardDAVCredentials,
    DirectoryError,
)
from contact_bridge.storage.db import ContactStoreError
from contact_bridge.sync.reconciler import BatchSyncError

router = APIRouter(tags=["contacts"])

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _credentials(payload: dict[str, Any]) -> Optional[CardDAVCredentials]:
    email = payload.get("email")
    password = payload.get("appSpecificPassword")
    if not isinstance(email, str) or not isinstance(password, str):
        return None
    if not email or not password:
        return None
    return CardDAVCredentials(email=email, app_specific_password=password)


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/fetch-icloud-contacts")
def fetch_icloud_contacts(request: Request, payload: dict):
    credentials = _credentials(payload)
    if credentials is None:
        return _error(400, "Email and App-Specific Password are required.")

    orchestrator = request.app.state.orchestrator
    try:
        contacts = orchestrator.fetch_contacts(credentials)
    except AuthError as e:
        logger.error(f"Error fetching CardDAV contacts: {e}")
        return _error(
            401, "Failed to fetch contacts. Please check your credentials."
        )
    except DirectoryError as e:
        logger.error(f"Error fetching CardDAV contacts: {e}")
        return _error(500, "Failed to fetch contacts.")

    return {"contacts": [contact.to_dict() for contact in contacts]}


@router.post("/sync-to-icloud")
def sync_to_icloud(request: Request, payload: dict):
    credentials = _credentials(payload)
    contact_ids = payload.get("contactIds")
    if credentials is None or not isinstance(contact_ids, list):
        return _error(
            400, "Email, App-Specific Password, and contactIds array are required."
        )

    store = request.app.state.store
    orchestrator = request.app.state.orchestrator
    try:
        records = store.fetch_by_ids([str(i) for i in contact_ids])
        report = orchestrator.run_sync(records, credentials)
    except AuthError as e:
        logger.error(f"Error syncing to CardDAV: {e}")
        return _error(
            401, "Failed to sync contacts. Please check your iCloud credentials."
        )
    except (BatchSyncError, DirectoryError, ContactStoreError) as e:
        logger.error(f"Error syncing to CardDAV: {e}")
        return _error(500, "Failed to sync contacts to iCloud.")

    return {
        "message": report.message,
        "created": report.created,
        "updated": report.updated,
        "failed": report.failed,
    }


@router.post("/import-contacts")
def import_contacts(request: Request, payload: dict):
    contacts = payload.get("contacts")
    if not isinstance(contacts, list) or not all(
        isinstance(c, dict) for c in contacts
    ):
        return _error(400, "Contacts array is required.")

    store = request.app.state.store
    try:
        count = store.batch_insert(contacts)
    except ContactStoreError as e:
        logger.error(f"Error importing contacts: {e}")
        return _error(500, "Failed to import contacts.")

    return {"message": "Contacts imported successfully.", "count": count}
