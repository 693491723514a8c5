"""
Contact group maintenance for CardDAV address books.

Apple address books represent a contact group as a vCard with
X-ADDRESSBOOKSERVER-KIND:group and one X-ADDRESSBOOKSERVER-MEMBER line per
member UID. The bridge keeps one such group (KMYC by default) holding the
contacts uploaded by the latest sync run.

Membership is replaced, not merged: each run writes exactly the UIDs it
uploaded, so members added by earlier runs (or by hand) that were not part
of this run are dropped from the group. The contacts themselves are kept.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from contact_bridge.api.carddav_client import CardDAVClient, DirectoryError, RemoteEntry
from contact_bridge.sync.vcard import (
    CRLF,
    GROUP_KIND,
    GROUP_KIND_FIELD,
    GROUP_MEMBER_FIELD,
    MEMBER_URN_PREFIX,
    PRODUCT_ID,
    ParseError,
    VCardFields,
    escape_text,
    generate_uid,
    parse_vcard,
    revision_timestamp,
)

# Default group that uploaded contacts are collected in
DEFAULT_GROUP_NAME = "KMYC"

logger = logging.getLogger(__name__)


class GroupSyncWarning(Exception):
    """Raised when the contact group could not be created or updated."""

    pass


def encode_group(
    name: str,
    uid: str,
    member_uids: list[str],
    now: Optional[datetime] = None,
) -> str:
    """
    Encode an Apple contact group vCard.

    Args:
        name: Group display name
        uid: UID of the group card
        member_uids: Contact UIDs to list as members, in order
        now: Revision time (default: current time)

    Returns:
        vCard text with CRLF line endings
    """
    escaped = escape_text(name)
    lines = [
        "BEGIN:VCARD",
        "VERSION:3.0",
        f"PRODID:{PRODUCT_ID}",
        f"N:{escaped};;;;",
        f"FN:{escaped}",
    ]
    for member in member_uids:
        lines.append(f"{GROUP_MEMBER_FIELD}:{MEMBER_URN_PREFIX}{member}")
    lines.extend(
        [
            f"{GROUP_KIND_FIELD}:{GROUP_KIND}",
            f"REV:{revision_timestamp(now)}",
            f"UID:{uid}",
            "END:VCARD",
        ]
    )
    return "".join(line + CRLF for line in lines)


class GroupMembershipManager:
    """
    Keeps a named contact group in sync with the UIDs of a sync run.

    Usage:
        manager = GroupMembershipManager(client)
        manager.ensure_group(client.list_entries(), "KMYC", report.uploaded_uids)
    """

    def __init__(self, client: CardDAVClient):
        """
        Initialize the group manager.

        Args:
            client: Logged-in CardDAV client
        """
        self.client = client

    def find_group(
        self, existing: list[RemoteEntry], group_name: str
    ) -> Optional[tuple[RemoteEntry, VCardFields]]:
        """
        Find the group card with the given display name.

        Args:
            existing: Snapshot of the address book's entries
            group_name: Display name of the group

        Returns:
            (entry, parsed fields) of the first matching group, or None
        """
        for entry in existing:
            try:
                fields = parse_vcard(entry.raw_body)
            except ParseError:
                continue
            if fields.is_group() and fields.formatted_name == group_name:
                return entry, fields
        return None

    def ensure_group(
        self,
        existing: list[RemoteEntry],
        group_name: str,
        member_uids: list[str],
    ) -> RemoteEntry:
        """
        Create or replace the group so it lists exactly member_uids.

        Args:
            existing: Snapshot of the address book's entries
            group_name: Display name of the group
            member_uids: Contact UIDs uploaded by this run

        Returns:
            The written group entry

        Raises:
            GroupSyncWarning: If the group could not be written
        """
        members = list(dict.fromkeys(member_uids))
        found = self.find_group(existing, group_name)

        try:
            if found is not None:
                entry, fields = found
                uid = fields.uid or generate_uid()
                logger.debug(f"Found existing group {group_name!r} with UID {uid}")
                body = encode_group(group_name, uid, members)
                written = self.client.update_entry(entry.location, body, entry.etag)
            else:
                uid = generate_uid()
                logger.debug(f"Creating group {group_name!r} with UID {uid}")
                body = encode_group(group_name, uid, members)
                written = self.client.create_entry(body, f"{uid}.vcf")
        except DirectoryError as e:
            raise GroupSyncWarning(
                f"Failed to update group {group_name!r}: {e}"
            ) from e

        logger.info(f"Group {group_name!r} now lists {len(members)} contacts")
        return written
