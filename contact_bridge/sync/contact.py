"""
Contact data model for vCard synchronization.

Contacts are transient: they are built per sync request from a contact
store record, encoded to vCard, and discarded once the run completes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

# Display name used when a contact has no name, phone or email
UNKNOWN_CONTACT_NAME = "Unknown Contact"


@dataclass
class Contact:
    """
    Canonical contact record.

    Attributes:
        first_name: Given name (may be empty)
        last_name: Family name (may be empty)
        phone: Primary phone number
        email: Primary email address
        external_id: Identifier in the originating contact store, written to
            the remote entry so repeated syncs update instead of duplicate

    Usage:
        contact = Contact(first_name="Jane", last_name="Doe", phone="555-1234")
        contact.display_name()  # "Jane Doe"
    """

    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None
    external_id: Optional[str] = None

    def display_name(self) -> str:
        """
        Derive the display name for this contact.

        Falls back to phone, then email, then a fixed placeholder when both
        name fields are empty.
        """
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        if name:
            return name
        if self.phone:
            return self.phone
        if self.email:
            return self.email
        return UNKNOWN_CONTACT_NAME

    def has_name(self) -> bool:
        """Check whether either name field is populated."""
        return bool(self.first_name or self.last_name)

    def to_dict(self) -> dict[str, Any]:
        """Render the contact in the camelCase JSON shape used by the HTTP API."""
        data: dict[str, Any] = {
            "firstName": self.first_name,
            "lastName": self.last_name,
        }
        if self.phone:
            data["phone"] = self.phone
        if self.email:
            data["email"] = self.email
        if self.external_id:
            data["externalId"] = self.external_id
        return data

    def __repr__(self) -> str:
        return (
            f"Contact(display_name={self.display_name()!r}, "
            f"external_id={self.external_id!r})"
        )
