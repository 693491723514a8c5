"""
CardDAV directory client for contact synchronization.

Provides a high-level interface to a CardDAV server (iCloud by default) for:
- Logging in and discovering the account's address book
- Listing every entry in the address book with its ETag and vCard body
- Creating and conditionally updating entries
- Exponential backoff retry logic for rate limits and server errors
"""

from __future__ import annotations

import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urljoin

import requests

# Default CardDAV endpoint
ICLOUD_CARDDAV_URL = "https://contacts.icloud.com"

# Retry configuration defaults
DEFAULT_TIMEOUT = 30.0  # seconds
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 30.0  # seconds

NS = {"d": "DAV:", "c": "urn:ietf:params:xml:ns:carddav"}

PRINCIPAL_QUERY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:">'
    "<d:prop><d:current-user-principal/></d:prop>"
    "</d:propfind>"
)

HOME_SET_QUERY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:carddav">'
    "<d:prop><c:addressbook-home-set/></d:prop>"
    "</d:propfind>"
)

ADDRESS_BOOKS_QUERY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:">'
    "<d:prop><d:resourcetype/><d:displayname/></d:prop>"
    "</d:propfind>"
)

ENTRIES_QUERY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<c:addressbook-query xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:carddav">'
    "<d:prop><d:getetag/><c:address-data/></d:prop>"
    "</c:addressbook-query>"
)

XML_HEADERS = {"Content-Type": "application/xml; charset=utf-8"}
VCARD_CONTENT_TYPE = "text/vcard; charset=utf-8"

logger = logging.getLogger(__name__)


class DirectoryError(Exception):
    """Raised when a CardDAV directory operation fails."""

    pass


class AuthError(DirectoryError):
    """Raised when the server rejects the directory credentials."""

    pass


class WriteConflictError(DirectoryError):
    """Raised when a conditional write fails its ETag precondition."""

    pass


class NoAddressBookError(DirectoryError):
    """Raised when the account has no address book collection."""

    pass


@dataclass(frozen=True)
class CardDAVCredentials:
    """Account email and app-specific password for Basic auth."""

    email: str
    app_specific_password: str

    def __repr__(self) -> str:
        return f"CardDAVCredentials(email={self.email!r}, app_specific_password='***')"


@dataclass
class AddressBook:
    """An address book collection discovered on the server."""

    url: str
    display_name: str = ""


@dataclass
class RemoteEntry:
    """
    A vCard resource stored on the server.

    Attributes:
        location: Absolute URL of the resource
        etag: Concurrency token for conditional updates
        raw_body: vCard text as last fetched or written
    """

    location: str
    etag: Optional[str]
    raw_body: str


def _quote_etag(etag: str) -> str:
    """Return the ETag in its quoted header form."""
    if etag.startswith('"') or etag.startswith("W/"):
        return etag
    return f'"{etag}"'


def _parse_multistatus(text: str, operation_name: str) -> ET.Element:
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        raise DirectoryError(f"{operation_name} returned invalid XML: {e}") from e


def _href(element: Optional[ET.Element]) -> Optional[str]:
    if element is None:
        return None
    href = element.find("d:href", NS)
    if href is None or not href.text:
        return None
    return href.text.strip()


class CardDAVClient:
    """
    CardDAV client for address book entry operations.

    Attributes:
        server_url: Base URL of the CardDAV service
        session: requests Session carrying Basic auth
        address_book: Address book selected by login()

    Usage:
        client = CardDAVClient()
        client.login(CardDAVCredentials("user@icloud.com", "abcd-efgh-ijkl-mnop"))

        entries = client.list_entries()
        created = client.create_entry(vcard_text, "uid.vcf")
        updated = client.update_entry(created.location, new_text, created.etag)
    """

    def __init__(
        self,
        server_url: str = ICLOUD_CARDDAV_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the CardDAV client.

        Args:
            server_url: CardDAV service URL (default iCloud)
            timeout: Per-request timeout in seconds
            max_retries: Maximum attempts for retryable failures
            initial_retry_delay: Initial backoff delay in seconds
            max_retry_delay: Maximum backoff delay in seconds
            session: Optional pre-built requests Session
        """
        self.server_url = server_url if server_url.endswith("/") else server_url + "/"
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self.session = session or requests.Session()
        self.address_book: Optional[AddressBook] = None

    def _request(
        self, method: str, url: str, operation_name: str, **kwargs: Any
    ) -> requests.Response:
        """
        Issue an HTTP request with exponential backoff retry.

        Rate limits (429), server errors (5xx) and connection failures are
        retried. Other failures are mapped onto the directory error types.

        Raises:
            AuthError: On 401/403
            WriteConflictError: On 412
            DirectoryError: For other failures or exhausted retries
        """
        delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                response = self.session.request(
                    method, url, timeout=self.timeout, **kwargs
                )
            except requests.RequestException as e:
                if not last_attempt:
                    logger.warning(
                        f"{operation_name} connection error, retrying in "
                        f"{delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue
                raise DirectoryError(f"{operation_name} failed: {e}") from e

            status_code = response.status_code

            if status_code in (401, 403):
                raise AuthError(
                    f"{operation_name} rejected credentials (HTTP {status_code})"
                )

            if status_code == 412:
                raise WriteConflictError(
                    f"{operation_name} precondition failed for {url}"
                )

            if status_code == 429 or status_code >= 500:
                if not last_attempt:
                    logger.warning(
                        f"{operation_name} got HTTP {status_code}, retrying in "
                        f"{delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue
                raise DirectoryError(
                    f"{operation_name} failed with HTTP {status_code} "
                    f"after {self.max_retries} attempts"
                )

            if status_code >= 400:
                logger.error(f"{operation_name} failed with status {status_code}")
                raise DirectoryError(
                    f"{operation_name} failed with HTTP {status_code}"
                )

            return response

        raise DirectoryError(f"{operation_name} failed after all retries")

    def _propfind(
        self, url: str, body: str, depth: str, operation_name: str
    ) -> ET.Element:
        response = self._request(
            "PROPFIND",
            url,
            operation_name,
            data=body.encode("utf-8"),
            headers={**XML_HEADERS, "Depth": depth},
        )
        return _parse_multistatus(response.text, operation_name)

    def _require_address_book(self) -> AddressBook:
        if self.address_book is None:
            raise DirectoryError("CardDAV client is not logged in")
        return self.address_book

    # =========================================================================
    # Discovery
    # =========================================================================

    def _discover_principal(self) -> str:
        root = self._propfind(self.server_url, PRINCIPAL_QUERY, "0", "Principal lookup")
        href = _href(root.find(".//d:current-user-principal", NS))
        if not href:
            logger.debug("No current-user-principal, using server URL")
            return self.server_url
        return urljoin(self.server_url, href)

    def _discover_home(self, principal_url: str) -> str:
        root = self._propfind(principal_url, HOME_SET_QUERY, "0", "Home set lookup")
        href = _href(root.find(".//c:addressbook-home-set", NS))
        if not href:
            logger.debug("No addressbook-home-set, using principal URL")
            return principal_url
        home = urljoin(principal_url, href)
        return home if home.endswith("/") else home + "/"

    def fetch_address_books(self, home_url: str) -> list[AddressBook]:
        """
        List the address book collections under a home set.

        Args:
            home_url: URL of the addressbook-home-set collection

        Returns:
            Address books in server order
        """
        root = self._propfind(home_url, ADDRESS_BOOKS_QUERY, "1", "Address book lookup")

        books: list[AddressBook] = []
        for response in root.findall("d:response", NS):
            resource_type = response.find(".//d:resourcetype", NS)
            if resource_type is None or resource_type.find("c:addressbook", NS) is None:
                continue
            href = _href(response)
            if not href:
                continue
            url = urljoin(home_url, href)
            if not url.endswith("/"):
                url += "/"
            name_node = response.find(".//d:displayname", NS)
            display_name = (
                name_node.text.strip()
                if name_node is not None and name_node.text
                else ""
            )
            books.append(AddressBook(url=url, display_name=display_name))

        return books

    @staticmethod
    def select_address_book(books: list[AddressBook]) -> AddressBook:
        """
        Pick the main contacts book.

        Prefers a book named "contacts" or whose URL ends in /card/, and falls
        back to the first book.
        """
        for book in books:
            if book.display_name.lower() == "contacts" or book.url.lower().endswith(
                "/card/"
            ):
                return book
        return books[0]

    def login(self, credentials: CardDAVCredentials) -> AddressBook:
        """
        Authenticate and select the account's address book.

        Args:
            credentials: Account email and app-specific password

        Returns:
            The selected AddressBook

        Raises:
            AuthError: If the server rejects the credentials
            NoAddressBookError: If the account has no address book
            DirectoryError: If discovery fails
        """
        self.session.auth = (credentials.email, credentials.app_specific_password)
        self.address_book = None

        principal_url = self._discover_principal()
        home_url = self._discover_home(principal_url)
        books = self.fetch_address_books(home_url)

        if not books:
            raise NoAddressBookError("No address book found in the CardDAV account")

        logger.debug(
            f"Found address books: {[(b.display_name, b.url) for b in books]}"
        )
        self.address_book = self.select_address_book(books)
        logger.info(
            f"Selected address book: {self.address_book.display_name or '(unnamed)'} "
            f"{self.address_book.url}"
        )
        return self.address_book

    # =========================================================================
    # Entry Operations
    # =========================================================================

    def list_entries(self) -> list[RemoteEntry]:
        """
        List every vCard entry in the selected address book.

        Returns:
            RemoteEntry objects (collection and data-less responses skipped)

        Raises:
            DirectoryError: If the listing fails or the client is not logged in
        """
        book = self._require_address_book()
        response = self._request(
            "REPORT",
            book.url,
            "List entries",
            data=ENTRIES_QUERY.encode("utf-8"),
            headers={**XML_HEADERS, "Depth": "1"},
        )
        root = _parse_multistatus(response.text, "List entries")

        entries: list[RemoteEntry] = []
        for node in root.findall("d:response", NS):
            href = _href(node)
            if not href or href.endswith("/"):
                continue
            data_node = node.find(".//c:address-data", NS)
            if data_node is None or not data_node.text or not data_node.text.strip():
                continue
            etag_node = node.find(".//d:getetag", NS)
            etag = (
                etag_node.text.strip()
                if etag_node is not None and etag_node.text
                else None
            )
            entries.append(
                RemoteEntry(
                    location=urljoin(book.url, href),
                    etag=etag,
                    raw_body=data_node.text,
                )
            )

        logger.debug(f"Listed {len(entries)} entries from {book.url}")
        return entries

    def create_entry(self, body: str, filename: str) -> RemoteEntry:
        """
        Create a new vCard entry.

        Args:
            body: vCard text
            filename: Resource name inside the address book (e.g. "<uid>.vcf")

        Returns:
            The created RemoteEntry

        Raises:
            WriteConflictError: If a resource already exists at that name
            DirectoryError: If the write fails
        """
        book = self._require_address_book()
        location = urljoin(book.url, filename)
        response = self._request(
            "PUT",
            location,
            "Create entry",
            data=body.encode("utf-8"),
            headers={"Content-Type": VCARD_CONTENT_TYPE, "If-None-Match": "*"},
        )
        logger.debug(f"Created entry {location}")
        return RemoteEntry(
            location=location, etag=response.headers.get("ETag"), raw_body=body
        )

    def update_entry(
        self, location: str, body: str, etag: Optional[str]
    ) -> RemoteEntry:
        """
        Replace an existing vCard entry.

        Args:
            location: URL of the entry
            body: New vCard text
            etag: ETag from the last fetch; sent as If-Match when present

        Returns:
            The updated RemoteEntry

        Raises:
            WriteConflictError: If the entry changed since it was fetched
            DirectoryError: If the write fails
        """
        self._require_address_book()
        headers = {"Content-Type": VCARD_CONTENT_TYPE}
        if etag:
            headers["If-Match"] = _quote_etag(etag)
        response = self._request(
            "PUT", location, "Update entry", data=body.encode("utf-8"), headers=headers
        )
        logger.debug(f"Updated entry {location}")
        return RemoteEntry(
            location=location, etag=response.headers.get("ETag"), raw_body=body
        )

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()

    def __enter__(self) -> CardDAVClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        book = self.address_book.url if self.address_book else None
        return f"CardDAVClient(server_url={self.server_url!r}, address_book={book!r})"
