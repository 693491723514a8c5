"""
Sync orchestration for pushing contact store records to a CardDAV account.

One run normalizes the records, logs in, takes a single snapshot of the
address book, reconciles the batch against it, and refreshes the contact
group with the UIDs that were uploaded.

Runs share no state. Two concurrent runs against the same account each work
from their own snapshot and can race (both creating the same new contact,
or each replacing the group with its own members); callers needing
exclusivity must serialize runs per account.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from contact_bridge.api.carddav_client import (
    CardDAVClient,
    CardDAVCredentials,
    NoAddressBookError,
)
from contact_bridge.sync.contact import Contact
from contact_bridge.sync.group import (
    DEFAULT_GROUP_NAME,
    GroupMembershipManager,
    GroupSyncWarning,
)
from contact_bridge.sync.normalizer import normalize_many
from contact_bridge.sync.reconciler import (
    DEFAULT_WRITE_DELAY,
    RemoteDirectoryReconciler,
    SyncReport,
)
from contact_bridge.sync.vcard import (
    DEFAULT_ORGANIZATION,
    ParseError,
    contact_from_fields,
    parse_vcard,
)

ClientFactory = Callable[[], CardDAVClient]

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """
    Runs contact uploads and remote contact fetches.

    Every call builds its own client from client_factory, so one
    orchestrator can serve concurrent requests for different accounts.

    Usage:
        orchestrator = SyncOrchestrator(client_factory=CardDAVClient)
        report = orchestrator.run_sync(records, credentials)
        if report.failed:
            ...
    """

    def __init__(
        self,
        client_factory: ClientFactory = CardDAVClient,
        group_name: str = DEFAULT_GROUP_NAME,
        organization: str = DEFAULT_ORGANIZATION,
        write_delay: float = DEFAULT_WRITE_DELAY,
    ):
        """
        Initialize the orchestrator.

        Args:
            client_factory: Callable returning a fresh, not yet logged-in client
            group_name: Contact group that uploaded contacts are collected in
            organization: ORG value written on every uploaded contact
            write_delay: Seconds to wait between consecutive remote writes
        """
        self.client_factory = client_factory
        self.group_name = group_name
        self.organization = organization
        self.write_delay = write_delay

    def run_sync(
        self,
        raw_contacts: Iterable[Mapping[str, Any]],
        credentials: CardDAVCredentials,
    ) -> SyncReport:
        """
        Upload contact store records to the CardDAV account.

        Args:
            raw_contacts: Contact store records (any supported field shape)
            credentials: CardDAV account credentials

        Returns:
            SyncReport for the run. Group failures appear in report.warnings
            and never change the verdict.

        Raises:
            AuthError: If the credentials are rejected (before any write)
            BatchSyncError: If every contact of a non-empty batch failed
            DirectoryError: If login or the initial listing fails
        """
        contacts = normalize_many(raw_contacts)
        logger.info(f"Syncing {len(contacts)} contacts")

        client = self.client_factory()
        try:
            client.login(credentials)
            existing = client.list_entries()
            logger.info(f"Found {len(existing)} existing entries")

            reconciler = RemoteDirectoryReconciler(
                client, organization=self.organization, write_delay=self.write_delay
            )
            report = reconciler.sync(existing, contacts)

            if report.uploaded_uids:
                manager = GroupMembershipManager(client)
                try:
                    manager.ensure_group(
                        existing, self.group_name, report.uploaded_uids
                    )
                except GroupSyncWarning as warning:
                    logger.warning(str(warning))
                    report.warnings.append(warning)
        finally:
            client.close()

        return report

    def fetch_contacts(self, credentials: CardDAVCredentials) -> list[Contact]:
        """
        Read every contact in the CardDAV account.

        Group cards are skipped. Entries that fail to decode are logged and
        skipped; one bad entry never fails the fetch.

        Args:
            credentials: CardDAV account credentials

        Returns:
            Decoded contacts, empty if the account has no address book

        Raises:
            AuthError: If the credentials are rejected
            DirectoryError: If the listing fails
        """
        client = self.client_factory()
        try:
            try:
                client.login(credentials)
            except NoAddressBookError:
                logger.info("Account has no address book")
                return []
            entries = client.list_entries()
        finally:
            client.close()

        contacts: list[Contact] = []
        for entry in entries:
            try:
                fields = parse_vcard(entry.raw_body)
                if fields.is_group():
                    continue
                contacts.append(contact_from_fields(fields))
            except ParseError as e:
                logger.warning(f"Skipping unparseable entry {entry.location}: {e}")

        logger.info(f"Fetched {len(contacts)} contacts from {len(entries)} entries")
        return contacts
