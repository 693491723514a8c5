"""
contact_bridge.api - Remote directory access

CardDAV client used to list, create and update address book entries.
"""

from contact_bridge.api.carddav_client import (
    AddressBook,
    AuthError,
    CardDAVClient,
    CardDAVCredentials,
    DirectoryError,
    NoAddressBookError,
    RemoteEntry,
    WriteConflictError,
)

__all__ = [
    "AddressBook",
    "AuthError",
    "CardDAVClient",
    "CardDAVCredentials",
    "DirectoryError",
    "NoAddressBookError",
    "RemoteEntry",
    "WriteConflictError",
]
