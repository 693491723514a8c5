"""
Reconciliation of local contacts against a remote address book.

Decides per contact whether to create a new remote entry or update the one
previously written for the same contact store record, applies the change,
and aggregates the outcome into a SyncReport.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from contact_bridge.api.carddav_client import CardDAVClient, DirectoryError, RemoteEntry
from contact_bridge.sync.contact import Contact
from contact_bridge.sync.vcard import (
    DEFAULT_ORGANIZATION,
    ParseError,
    VCardFields,
    encode_contact,
    generate_uid,
    parse_vcard,
)

if TYPE_CHECKING:
    from contact_bridge.sync.group import GroupSyncWarning

# Pause between consecutive remote writes to stay under provider rate limits
DEFAULT_WRITE_DELAY = 0.3  # seconds

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """
    Outcome of one sync run.

    A returned report always means the run succeeded overall; partial
    failures are reported through `failed`, so callers must check it rather
    than rely on the absence of an exception.
    """

    total: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0

    # UIDs of every entry created or updated in this run
    uploaded_uids: list[str] = field(default_factory=list)

    # Non-fatal problems (group maintenance failures)
    warnings: list[GroupSyncWarning] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True unless every contact of a non-empty batch failed."""
        return not (self.total > 0 and self.failed == self.total)

    def has_failures(self) -> bool:
        """Check if any contact failed to sync."""
        return self.failed > 0

    @property
    def message(self) -> str:
        """Short outcome message for API responses."""
        if self.failed:
            return (
                f"Synced {self.total - self.failed} of {self.total} contacts; "
                f"{self.failed} failed."
            )
        return "Contacts synced successfully."

    def summary(self) -> str:
        """
        Generate a human-readable summary of the sync run.

        Returns:
            Formatted multi-line summary
        """
        lines = [
            "Sync Summary:",
            f"  Total: {self.total} contacts",
            f"  Created: {self.created}",
            f"  Updated: {self.updated}",
            f"  Failed: {self.failed}",
        ]
        for warning in self.warnings:
            lines.append(f"  Warning: {warning}")
        return "\n".join(lines)


class BatchSyncError(Exception):
    """Raised when every contact in a non-empty batch failed to sync."""

    def __init__(self, message: str, report: SyncReport):
        super().__init__(message)
        self.report = report


@dataclass
class _IndexedEntry:
    entry: RemoteEntry
    fields: VCardFields


class RemoteDirectoryReconciler:
    """
    Create-or-update reconciler for a CardDAV address book.

    Remote entries written by the bridge carry the contact store id in an
    external id property. A contact whose id matches an existing entry is
    re-encoded under that entry's UID and updated conditionally on its ETag;
    anything else is created under a fresh UID.

    Usage:
        reconciler = RemoteDirectoryReconciler(client)
        report = reconciler.sync(client.list_entries(), contacts)
    """

    def __init__(
        self,
        client: CardDAVClient,
        organization: str = DEFAULT_ORGANIZATION,
        write_delay: float = DEFAULT_WRITE_DELAY,
    ):
        """
        Initialize the reconciler.

        Args:
            client: Logged-in CardDAV client
            organization: ORG value written on every contact
            write_delay: Seconds to wait between consecutive remote writes
        """
        self.client = client
        self.organization = organization
        self.write_delay = write_delay

    def build_index(self, existing: list[RemoteEntry]) -> dict[str, _IndexedEntry]:
        """
        Index existing entries by external id.

        Unparseable entries and entries without an external id are left out.
        When several entries share an id, the first one listed wins.
        """
        index: dict[str, _IndexedEntry] = {}
        for entry in existing:
            try:
                fields = parse_vcard(entry.raw_body)
            except ParseError as e:
                logger.debug(f"Skipping unparseable entry {entry.location}: {e}")
                continue
            if fields.external_id and fields.external_id not in index:
                index[fields.external_id] = _IndexedEntry(entry=entry, fields=fields)
        return index

    def sync(self, existing: list[RemoteEntry], batch: list[Contact]) -> SyncReport:
        """
        Push a batch of contacts to the address book.

        Contacts are processed sequentially in input order. A failed write is
        counted and logged, and processing moves on to the next contact.

        Args:
            existing: Snapshot of the address book's entries
            batch: Contacts to upload

        Returns:
            SyncReport with per-outcome counts and uploaded UIDs

        Raises:
            BatchSyncError: If the batch was non-empty and every contact failed
        """
        report = SyncReport(total=len(batch))
        index = self.build_index(existing)
        writes_issued = 0

        for contact in batch:
            if writes_issued and self.write_delay > 0:
                time.sleep(self.write_delay)
            writes_issued += 1

            indexed: Optional[_IndexedEntry] = None
            if contact.external_id:
                indexed = index.get(contact.external_id)

            try:
                if indexed is not None:
                    uid, written = self._update(contact, indexed)
                    report.updated += 1
                else:
                    uid, written = self._create(contact)
                    report.created += 1
            except DirectoryError as e:
                logger.error(f"Failed to sync contact {contact.display_name()}: {e}")
                report.failed += 1
                continue

            report.uploaded_uids.append(uid)

            # Later duplicates of the same record in this batch update this entry
            if contact.external_id:
                index[contact.external_id] = _IndexedEntry(
                    entry=written,
                    fields=VCardFields(uid=uid, external_id=contact.external_id),
                )

        logger.info(
            f"Sync finished: total={report.total}, created={report.created}, "
            f"updated={report.updated}, failed={report.failed}"
        )

        if not report.success:
            raise BatchSyncError(
                "All contact uploads failed. Check permissions or network "
                "connection.",
                report,
            )

        return report

    def _update(
        self, contact: Contact, indexed: _IndexedEntry
    ) -> tuple[str, RemoteEntry]:
        # Entries without a UID get a fresh one rather than failing
        uid = indexed.fields.uid or generate_uid()
        body = encode_contact(contact, uid, organization=self.organization)

        logger.debug(
            f"Updating {indexed.entry.location} for {contact.display_name()} "
            f"(external id {contact.external_id})"
        )
        written = self.client.update_entry(
            indexed.entry.location, body, indexed.entry.etag
        )
        return uid, written

    def _create(self, contact: Contact) -> tuple[str, RemoteEntry]:
        uid = generate_uid()
        body = encode_contact(contact, uid, organization=self.organization)

        logger.debug(f"Creating {uid}.vcf for {contact.display_name()}")
        written = self.client.create_entry(body, f"{uid}.vcf")
        return uid, written
