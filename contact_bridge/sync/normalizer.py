"""
Normalization of contact store records into canonical Contacts.

Contact store records come in several shapes: split first/last name fields
under different key conventions, a nested {"first", "last"} name mapping,
or a single combined name string. Phone and email also appear under
several aliases. Each field is resolved from an ordered alias table; the
first present, non-empty value wins.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from contact_bridge.sync.contact import Contact

logger = logging.getLogger(__name__)

# Alias paths per field, in priority order. A tuple path walks nested mappings.
FIRST_NAME_ALIASES: tuple[tuple[str, ...], ...] = (
    ("firstName",),
    ("first_name",),
    ("name", "first"),
)
LAST_NAME_ALIASES: tuple[tuple[str, ...], ...] = (
    ("lastName",),
    ("last_name",),
    ("name", "last"),
)
COMBINED_NAME_KEY = "name"
PHONE_ALIASES: tuple[tuple[str, ...], ...] = (
    ("phone",),
    ("phoneNumber",),
    ("phone_number",),
    ("mobile",),
)
EMAIL_ALIASES: tuple[tuple[str, ...], ...] = (
    ("email",),
    ("emailAddress",),
    ("email_address",),
)
ID_KEY = "id"


def _lookup(record: Mapping[str, Any], path: tuple[str, ...]) -> Optional[str]:
    """Walk a key path through nested mappings, returning a stripped string."""
    value: Any = record
    for key in path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    if value is None or isinstance(value, (Mapping, list)):
        return None
    text = str(value).strip()
    return text or None


def resolve_alias(
    record: Mapping[str, Any], aliases: Iterable[tuple[str, ...]]
) -> Optional[str]:
    """
    Resolve a field from an ordered alias table.

    Args:
        record: Raw contact store record
        aliases: Key paths to try in order

    Returns:
        First present, non-empty value, or None
    """
    for path in aliases:
        value = _lookup(record, path)
        if value:
            return value
    return None


def split_full_name(full_name: str) -> tuple[str, str]:
    """
    Split a combined name on whitespace.

    The first token is the first name; any remaining tokens, joined by a
    single space, form the last name.

    Examples:
        "Jane Mary Doe" -> ("Jane", "Mary Doe")
        "Cher" -> ("Cher", "")
    """
    tokens = full_name.split()
    if not tokens:
        return "", ""
    return tokens[0], " ".join(tokens[1:])


def normalize_contact(record: Mapping[str, Any]) -> Contact:
    """
    Map a raw contact store record onto a Contact.

    Never fails: a record with no recognised fields yields a Contact with
    empty names.

    Args:
        record: Raw record as returned by the contact store

    Returns:
        Canonical Contact carrying the record id as external_id
    """
    first_name = resolve_alias(record, FIRST_NAME_ALIASES) or ""
    last_name = resolve_alias(record, LAST_NAME_ALIASES) or ""

    if not (first_name or last_name):
        combined = record.get(COMBINED_NAME_KEY)
        if isinstance(combined, str):
            first_name, last_name = split_full_name(combined)

    external_id = record.get(ID_KEY)

    contact = Contact(
        first_name=first_name,
        last_name=last_name,
        phone=resolve_alias(record, PHONE_ALIASES),
        email=resolve_alias(record, EMAIL_ALIASES),
        external_id=str(external_id) if external_id is not None else None,
    )
    logger.debug(f"Normalized record {contact.external_id}: {contact!r}")
    return contact


def normalize_many(records: Iterable[Mapping[str, Any]]) -> list[Contact]:
    """Normalize a batch of records, preserving order."""
    return [normalize_contact(record) for record in records]
