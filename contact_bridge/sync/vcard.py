"""
vCard 3.0 codec for contact synchronization.

Provides:
- A structured parser (VCardFields) shared by the decoder, the reconciler's
  remote-entry lookup and the group manager
- encode_contact / decode_contact for the Contact <-> vCard mapping

Encoded bodies follow the line layout Apple's CardDAV server writes itself.
Every line ends with CRLF; the server rejects LF-only bodies.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import vobject
from vobject.base import Component
from vobject.base import ParseError as VObjectParseError

from contact_bridge.sync.contact import Contact

CRLF = "\r\n"

PRODUCT_ID = "-//Apple Inc.//iOS 18.0//EN"

# Organization written on every contact uploaded by the bridge
DEFAULT_ORGANIZATION = "KMYC"

# Custom property carrying the contact store identifier
EXTERNAL_ID_FIELD = "X-EXTERNAL-ID"

# Properties recognised as external id markers, in lookup priority order.
# X-FIREBASE-ID is written by earlier deployments of the bridge.
EXTERNAL_ID_FIELDS = (EXTERNAL_ID_FIELD, "X-FIREBASE-ID")

# Apple group extensions
GROUP_KIND_FIELD = "X-ADDRESSBOOKSERVER-KIND"
GROUP_MEMBER_FIELD = "X-ADDRESSBOOKSERVER-MEMBER"
GROUP_KIND = "group"
MEMBER_URN_PREFIX = "urn:uuid:"


class ParseError(Exception):
    """Raised when a vCard body cannot be parsed."""

    pass


@dataclass
class VCardFields:
    """
    Structured view of a vCard body.

    Attributes:
        uid: Value of the UID property
        kind: Entry kind ("group" for Apple group cards, None for contacts)
        formatted_name: Value of the FN property
        family_name: First component of N
        given_name: Second component of N
        has_name: True if the card carries an N property
        phones: TEL values in document order
        emails: EMAIL values in document order
        external_id: Value of the first recognised external id property
        members: Member UIDs of a group card (urn:uuid: prefix removed)
    """

    uid: Optional[str] = None
    kind: Optional[str] = None
    formatted_name: str = ""
    family_name: str = ""
    given_name: str = ""
    has_name: bool = False
    phones: list[str] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)
    external_id: Optional[str] = None
    members: list[str] = field(default_factory=list)

    def is_group(self) -> bool:
        """Check whether this card is an Apple contact group."""
        return (self.kind or "").lower() == GROUP_KIND


def generate_uid() -> str:
    """Generate a fresh vCard UID."""
    return str(uuid.uuid4())


def revision_timestamp(now: Optional[datetime] = None) -> str:
    """
    Format a REV timestamp in UTC, truncated to whole seconds.

    Args:
        now: Time to format (default: current time)

    Returns:
        Timestamp such as "2024-06-15T10:30:00Z"
    """
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def escape_text(value: str) -> str:
    """Escape a text value (backslashes, commas, semicolons and newlines)."""
    return (
        value.replace("\\", "\\\\")
        .replace(",", "\\,")
        .replace(";", "\\;")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def unescape_text(value: str) -> str:
    """Undo escape_text. Unknown escapes keep the escaped character."""
    chars = []
    escaped = False
    for char in value:
        if escaped:
            chars.append("\n" if char in "nN" else char)
            escaped = False
        elif char == "\\":
            escaped = True
        else:
            chars.append(char)
    if escaped:
        chars.append("\\")
    return "".join(chars)


def split_components(value: str) -> list[str]:
    """Split a structured value on unescaped semicolons and unescape each part."""
    parts = []
    current = []
    escaped = False
    for char in value:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            current.append(char)
            escaped = True
        elif char == ";":
            parts.append(unescape_text("".join(current)))
            current = []
        else:
            current.append(char)
    parts.append(unescape_text("".join(current)))
    return parts


def _values(card: Component, name: str) -> list[str]:
    """Return the unescaped, non-empty values of every property called name."""
    values = []
    for line in card.contents.get(name.lower(), []):
        value = unescape_text(str(line.value or "")).strip()
        if value:
            values.append(value)
    return values


def _first(card: Component, name: str) -> Optional[str]:
    values = _values(card, name)
    return values[0] if values else None


def parse_vcard(text: str) -> VCardFields:
    """
    Parse a vCard body into structured fields.

    Args:
        text: Raw vCard text as stored on the server

    Returns:
        VCardFields populated from the body

    Raises:
        ParseError: If the body is not a parseable VCARD component
    """
    if not text or not text.strip():
        raise ParseError("Empty vCard body")

    # Values stay raw; vobject's text behavior splits TEL and FN on commas
    try:
        card = vobject.readOne(text, transform=False)
    except (VObjectParseError, StopIteration, ValueError) as e:
        raise ParseError(f"Malformed vCard: {e}") from e

    if not isinstance(card, Component) or card.name != "VCARD":
        raise ParseError("Body does not contain a VCARD component")

    fields = VCardFields(
        uid=_first(card, "UID"),
        kind=_first(card, GROUP_KIND_FIELD) or _first(card, "KIND"),
        formatted_name=_first(card, "FN") or "",
        phones=_values(card, "TEL"),
        emails=_values(card, "EMAIL"),
    )

    name_lines = card.contents.get("n", [])
    if name_lines:
        fields.has_name = True
        parts = split_components(str(name_lines[0].value or ""))
        fields.family_name = parts[0].strip()
        fields.given_name = parts[1].strip() if len(parts) > 1 else ""

    for marker in EXTERNAL_ID_FIELDS:
        external_id = _first(card, marker)
        if external_id:
            fields.external_id = external_id
            break

    for member in _values(card, GROUP_MEMBER_FIELD):
        if member.lower().startswith(MEMBER_URN_PREFIX):
            member = member[len(MEMBER_URN_PREFIX) :]
        fields.members.append(member)

    return fields


def encode_contact(
    contact: Contact,
    uid: str,
    organization: str = DEFAULT_ORGANIZATION,
    now: Optional[datetime] = None,
) -> str:
    """
    Encode a contact as a vCard 3.0 body.

    Args:
        contact: Contact to encode
        uid: UID to embed (reused across updates of the same entry)
        organization: Value written to the ORG property
        now: Revision time (default: current time)

    Returns:
        vCard text with CRLF line endings
    """
    first_name = contact.first_name or ""
    last_name = contact.last_name or ""
    display_name = contact.display_name()

    # N: family;given;additional;prefix;suffix
    if not contact.has_name() and (contact.phone or contact.email):
        structured_name = f";{escape_text(display_name)};;;"
    else:
        structured_name = f"{escape_text(last_name)};{escape_text(first_name)};;;"

    lines = [
        "BEGIN:VCARD",
        "VERSION:3.0",
        f"PRODID:{PRODUCT_ID}",
        f"N:{structured_name}",
        f"FN:{escape_text(display_name)}",
        f"ORG:{organization};",
    ]

    if contact.phone:
        lines.append(f"TEL;type=CELL;type=VOICE;type=pref:{contact.phone}")
    if contact.email:
        lines.append(f"EMAIL;type=INTERNET;type=pref:{contact.email}")
    if contact.external_id:
        lines.append(f"{EXTERNAL_ID_FIELD}:{contact.external_id}")

    lines.extend(
        [
            f"REV:{revision_timestamp(now)}",
            f"UID:{uid}",
            "END:VCARD",
        ]
    )

    return "".join(line + CRLF for line in lines)


def decode_contact(text: str) -> Contact:
    """
    Decode a vCard body into a Contact.

    The first TEL and first EMAIL win. The external id is not decoded.
    A card whose N holds only the display-name placeholder that
    encode_contact writes for name-less contacts decodes with empty names.

    Args:
        text: Raw vCard text

    Returns:
        Decoded Contact

    Raises:
        ParseError: If the body is malformed or has no N property
    """
    return contact_from_fields(parse_vcard(text))


def contact_from_fields(fields: VCardFields) -> Contact:
    """
    Build a Contact from parsed vCard fields.

    Raises:
        ParseError: If the card has no N property
    """
    if not fields.has_name:
        raise ParseError("vCard has no structured name (N) field")

    phone = fields.phones[0] if fields.phones else None
    email = fields.emails[0] if fields.emails else None

    first_name = fields.given_name
    last_name = fields.family_name
    if not last_name and first_name and first_name in (phone, email):
        first_name = ""

    return Contact(
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        email=email,
    )
