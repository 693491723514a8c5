"""
Unit tests for contact group maintenance.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from contact_bridge.api.carddav_client import (
    CardDAVClient,
    DirectoryError,
    RemoteEntry,
    WriteConflictError,
)
from contact_bridge.sync.contact import Contact
from contact_bridge.sync.group import (
    GroupMembershipManager,
    GroupSyncWarning,
    encode_group,
)
from contact_bridge.sync.vcard import encode_contact, parse_vcard

BOOK_URL = "https://contacts.example.com/123/carddavhome/card/"


@pytest.fixture
def client():
    mock = MagicMock(spec=CardDAVClient)
    mock.create_entry.side_effect = lambda body, filename: RemoteEntry(
        f"{BOOK_URL}{filename}", '"new"', body
    )
    mock.update_entry.side_effect = lambda location, body, etag: RemoteEntry(
        location, '"updated"', body
    )
    return mock


@pytest.fixture
def manager(client):
    return GroupMembershipManager(client)


def group_entry(name, uid, members, etag='"group-etag"'):
    return RemoteEntry(f"{BOOK_URL}{uid}.vcf", etag, encode_group(name, uid, members))


class TestEncodeGroup:
    """Tests for encode_group."""

    def test_layout(self):
        now = datetime(2024, 6, 15, 10, 30, tzinfo=timezone.utc)

        body = encode_group("KMYC", "group-1", ["a", "b"], now=now)

        assert body == (
            "BEGIN:VCARD\r\n"
            "VERSION:3.0\r\n"
            "PRODID:-//Apple Inc.//iOS 18.0//EN\r\n"
            "N:KMYC;;;;\r\n"
            "FN:KMYC\r\n"
            "X-ADDRESSBOOKSERVER-MEMBER:urn:uuid:a\r\n"
            "X-ADDRESSBOOKSERVER-MEMBER:urn:uuid:b\r\n"
            "X-ADDRESSBOOKSERVER-KIND:group\r\n"
            "REV:2024-06-15T10:30:00Z\r\n"
            "UID:group-1\r\n"
            "END:VCARD\r\n"
        )

    def test_empty_group(self):
        body = encode_group("KMYC", "group-1", [])
        assert "X-ADDRESSBOOKSERVER-MEMBER" not in body
        assert parse_vcard(body).is_group()


class TestFindGroup:
    """Tests for find_group."""

    def test_finds_group_by_name(self, manager):
        existing = [
            RemoteEntry(f"{BOOK_URL}c.vcf", None, encode_contact(Contact("KMYC"), "c")),
            group_entry("Family", "g-1", []),
            group_entry("KMYC", "g-2", ["x"]),
        ]

        entry, fields = manager.find_group(existing, "KMYC")

        assert entry.location == f"{BOOK_URL}g-2.vcf"
        assert fields.uid == "g-2"
        assert fields.members == ["x"]

    def test_contact_with_same_name_is_not_a_group(self, manager):
        existing = [
            RemoteEntry(f"{BOOK_URL}c.vcf", None, encode_contact(Contact("KMYC"), "c"))
        ]
        assert manager.find_group(existing, "KMYC") is None

    def test_finds_group_with_comma_in_name(self, manager):
        existing = [group_entry("Friends, Family", "g-1", ["a"])]

        entry, fields = manager.find_group(existing, "Friends, Family")

        assert fields.uid == "g-1"
        assert fields.formatted_name == "Friends, Family"

    def test_finds_group_with_backslash_and_semicolon_in_name(self, manager):
        existing = [group_entry("Work\\Home; Misc", "g-1", [])]

        found = manager.find_group(existing, "Work\\Home; Misc")

        assert found is not None
        assert found[1].uid == "g-1"

    def test_unparseable_entries_skipped(self, manager):
        existing = [RemoteEntry(f"{BOOK_URL}bad.vcf", None, "garbage")]
        assert manager.find_group(existing, "KMYC") is None


class TestEnsureGroup:
    """Tests for ensure_group."""

    def test_creates_missing_group(self, manager, client):
        written = manager.ensure_group([], "KMYC", ["a", "b"])

        client.update_entry.assert_not_called()
        body, filename = client.create_entry.call_args.args
        fields = parse_vcard(body)
        assert fields.is_group()
        assert fields.formatted_name == "KMYC"
        assert fields.members == ["a", "b"]
        assert filename == f"{fields.uid}.vcf"
        assert written.location == f"{BOOK_URL}{filename}"

    def test_updates_existing_group_in_place(self, manager, client):
        existing = [group_entry("KMYC", "g-1", ["a"])]

        manager.ensure_group(existing, "KMYC", ["a", "b"])

        client.create_entry.assert_not_called()
        location, body, etag = client.update_entry.call_args.args
        assert location == f"{BOOK_URL}g-1.vcf"
        assert etag == '"group-etag"'
        assert parse_vcard(body).uid == "g-1"

    def test_comma_name_updates_instead_of_duplicating(self, manager, client):
        existing = [group_entry("Friends, Family", "g-1", ["a"])]

        manager.ensure_group(existing, "Friends, Family", ["a", "b"])

        client.create_entry.assert_not_called()
        assert client.update_entry.call_args.args[0] == f"{BOOK_URL}g-1.vcf"

    def test_membership_is_replaced_not_merged(self, manager, client):
        existing = [group_entry("KMYC", "g-1", ["old-1", "old-2"])]

        manager.ensure_group(existing, "KMYC", ["new-1", "new-2"])

        body = client.update_entry.call_args.args[1]
        assert parse_vcard(body).members == ["new-1", "new-2"]

    def test_duplicate_members_written_once(self, manager, client):
        manager.ensure_group([], "KMYC", ["a", "b", "a"])

        body = client.create_entry.call_args.args[0]
        assert parse_vcard(body).members == ["a", "b"]

    def test_custom_group_name(self, manager, client):
        existing = [group_entry("KMYC", "g-1", ["a"])]

        manager.ensure_group(existing, "Members", ["a"])

        client.update_entry.assert_not_called()
        body = client.create_entry.call_args.args[0]
        assert parse_vcard(body).formatted_name == "Members"

    def test_write_failure_becomes_warning(self, manager, client):
        client.create_entry.side_effect = DirectoryError("HTTP 500")

        with pytest.raises(GroupSyncWarning, match="KMYC"):
            manager.ensure_group([], "KMYC", ["a"])

    def test_conflict_becomes_warning(self, manager, client):
        client.update_entry.side_effect = WriteConflictError("precondition failed")
        existing = [group_entry("KMYC", "g-1", ["a"])]

        with pytest.raises(GroupSyncWarning) as exc_info:
            manager.ensure_group(existing, "KMYC", ["a"])

        assert isinstance(exc_info.value.__cause__, WriteConflictError)
