"""
contact_bridge.storage - Local contact store

SQLite-backed source of the contact records pushed to CardDAV.
"""

from contact_bridge.storage.db import ContactStore, ContactStoreError

__all__ = ["ContactStore", "ContactStoreError"]
