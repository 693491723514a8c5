"""
Unit tests for the CardDAV client.

Tests discovery, entry listing and writes against a mocked requests
Session, plus the retry and error mapping in _request.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from contact_bridge.api.carddav_client import (
    AddressBook,
    AuthError,
    CardDAVClient,
    CardDAVCredentials,
    DirectoryError,
    NoAddressBookError,
    WriteConflictError,
)

SERVER = "https://contacts.example.com"
HOME_URL = "https://p01-contacts.example.com/123/carddavhome/"
BOOK_URL = HOME_URL + "card/"
CREDENTIALS = CardDAVCredentials("jane@icloud.com", "abcd-efgh-ijkl-mnop")

PRINCIPAL_XML = """<?xml version="1.0" encoding="utf-8"?>
<d:multistatus xmlns:d="DAV:">
  <d:response>
    <d:href>/</d:href>
    <d:propstat><d:prop>
      <d:current-user-principal>
        <d:href>/123/principal/</d:href>
      </d:current-user-principal>
    </d:prop></d:propstat>
  </d:response>
</d:multistatus>"""

HOME_XML = f"""<?xml version="1.0" encoding="utf-8"?>
<d:multistatus xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:carddav">
  <d:response>
    <d:href>/123/principal/</d:href>
    <d:propstat><d:prop>
      <c:addressbook-home-set><d:href>{HOME_URL}</d:href></c:addressbook-home-set>
    </d:prop></d:propstat>
  </d:response>
</d:multistatus>"""

BOOKS_XML = """<?xml version="1.0" encoding="utf-8"?>
<d:multistatus xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:carddav">
  <d:response>
    <d:href>/123/carddavhome/</d:href>
    <d:propstat><d:prop>
      <d:resourcetype><d:collection/></d:resourcetype>
    </d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/123/carddavhome/card/</d:href>
    <d:propstat><d:prop>
      <d:resourcetype><d:collection/><c:addressbook/></d:resourcetype>
      <d:displayname>card</d:displayname>
    </d:prop></d:propstat>
  </d:response>
</d:multistatus>"""

EMPTY_MULTISTATUS = '<d:multistatus xmlns:d="DAV:"/>'

ENTRIES_XML = """<?xml version="1.0" encoding="utf-8"?>
<d:multistatus xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:carddav">
  <d:response>
    <d:href>/123/carddavhome/card/</d:href>
    <d:propstat><d:prop><d:getetag>"ctag"</d:getetag></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/123/carddavhome/card/uid-1.vcf</d:href>
    <d:propstat><d:prop>
      <d:getetag>"etag-1"</d:getetag>
      <c:address-data>BEGIN:VCARD
VERSION:3.0
N:Doe;Jane;;;
FN:Jane Doe
UID:uid-1
END:VCARD
</c:address-data>
    </d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/123/carddavhome/card/empty.vcf</d:href>
    <d:propstat><d:prop><d:getetag>"etag-2"</d:getetag></d:prop></d:propstat>
  </d:response>
</d:multistatus>"""


# ==============================================================================
# Fixtures
# ==============================================================================


def make_response(status_code=207, text="", headers=None):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session):
    return CardDAVClient(server_url=SERVER, session=session, max_retries=3)


@pytest.fixture
def logged_in(client):
    client.address_book = AddressBook(url=BOOK_URL, display_name="card")
    return client


def discovery_responses():
    return [
        make_response(text=PRINCIPAL_XML),
        make_response(text=HOME_XML),
        make_response(text=BOOKS_XML),
    ]


# ==============================================================================
# Login / discovery
# ==============================================================================


class TestLogin:
    """Tests for login and address book discovery."""

    def test_login_discovers_address_book(self, client, session):
        session.request.side_effect = discovery_responses()

        book = client.login(CREDENTIALS)

        assert book == AddressBook(url=BOOK_URL, display_name="card")
        assert client.address_book == book
        assert session.auth == ("jane@icloud.com", "abcd-efgh-ijkl-mnop")

        methods_and_urls = [c.args[:2] for c in session.request.call_args_list]
        assert methods_and_urls == [
            ("PROPFIND", SERVER + "/"),
            ("PROPFIND", SERVER + "/123/principal/"),
            ("PROPFIND", HOME_URL),
        ]
        depths = [c.kwargs["headers"]["Depth"] for c in session.request.call_args_list]
        assert depths == ["0", "0", "1"]

    def test_login_without_principal_falls_back_to_server_url(self, client, session):
        session.request.side_effect = [
            make_response(text=EMPTY_MULTISTATUS),
            make_response(text=HOME_XML),
            make_response(text=BOOKS_XML),
        ]

        client.login(CREDENTIALS)

        assert session.request.call_args_list[1].args[1] == SERVER + "/"

    def test_login_rejected_credentials(self, client, session):
        session.request.return_value = make_response(status_code=401)

        with pytest.raises(AuthError):
            client.login(CREDENTIALS)
        assert client.address_book is None

    def test_login_without_address_books(self, client, session):
        session.request.side_effect = [
            make_response(text=PRINCIPAL_XML),
            make_response(text=HOME_XML),
            make_response(text=EMPTY_MULTISTATUS),
        ]

        with pytest.raises(NoAddressBookError):
            client.login(CREDENTIALS)

    def test_invalid_xml_raises_directory_error(self, client, session):
        session.request.return_value = make_response(text="<not xml")

        with pytest.raises(DirectoryError, match="invalid XML"):
            client.login(CREDENTIALS)


class TestSelectAddressBook:
    """Tests for select_address_book."""

    def test_prefers_contacts_display_name(self):
        books = [
            AddressBook("https://x/other/", "Other"),
            AddressBook("https://x/main/", "Contacts"),
        ]
        assert CardDAVClient.select_address_book(books).url == "https://x/main/"

    def test_prefers_card_url(self):
        books = [
            AddressBook("https://x/other/", ""),
            AddressBook("https://x/card/", ""),
        ]
        assert CardDAVClient.select_address_book(books).url == "https://x/card/"

    def test_falls_back_to_first(self):
        books = [AddressBook("https://x/a/", "A"), AddressBook("https://x/b/", "B")]
        assert CardDAVClient.select_address_book(books).url == "https://x/a/"


# ==============================================================================
# Entry operations
# ==============================================================================


class TestEntryOperations:
    """Tests for list_entries, create_entry and update_entry."""

    def test_requires_login(self, client):
        with pytest.raises(DirectoryError, match="not logged in"):
            client.list_entries()
        with pytest.raises(DirectoryError, match="not logged in"):
            client.create_entry("BEGIN:VCARD\r\nEND:VCARD\r\n", "x.vcf")

    def test_list_entries(self, logged_in, session):
        session.request.return_value = make_response(text=ENTRIES_XML)

        entries = logged_in.list_entries()

        assert len(entries) == 1
        (entry,) = entries
        assert entry.location == BOOK_URL + "uid-1.vcf"
        assert entry.etag == '"etag-1"'
        assert "UID:uid-1" in entry.raw_body

        method, url = session.request.call_args.args
        assert (method, url) == ("REPORT", BOOK_URL)
        assert session.request.call_args.kwargs["headers"]["Depth"] == "1"

    def test_create_entry(self, logged_in, session):
        session.request.return_value = make_response(
            status_code=201, headers={"ETag": '"created"'}
        )
        body = "BEGIN:VCARD\r\nVERSION:3.0\r\nEND:VCARD\r\n"

        entry = logged_in.create_entry(body, "uid-2.vcf")

        assert entry.location == BOOK_URL + "uid-2.vcf"
        assert entry.etag == '"created"'
        assert entry.raw_body == body
        call = session.request.call_args
        assert call.args == ("PUT", BOOK_URL + "uid-2.vcf")
        assert call.kwargs["headers"]["If-None-Match"] == "*"
        assert call.kwargs["headers"]["Content-Type"].startswith("text/vcard")
        assert call.kwargs["data"] == body.encode("utf-8")

    def test_update_entry_sends_if_match(self, logged_in, session):
        session.request.return_value = make_response(status_code=204)

        entry = logged_in.update_entry(BOOK_URL + "uid-1.vcf", "body", "etag-1")

        assert entry.etag is None
        headers = session.request.call_args.kwargs["headers"]
        assert headers["If-Match"] == '"etag-1"'

    def test_update_entry_keeps_quoted_etag(self, logged_in, session):
        session.request.return_value = make_response(status_code=204)

        logged_in.update_entry(BOOK_URL + "uid-1.vcf", "body", '"etag-1"')

        headers = session.request.call_args.kwargs["headers"]
        assert headers["If-Match"] == '"etag-1"'

    def test_update_entry_without_etag_is_unconditional(self, logged_in, session):
        session.request.return_value = make_response(status_code=204)

        logged_in.update_entry(BOOK_URL + "uid-1.vcf", "body", None)

        assert "If-Match" not in session.request.call_args.kwargs["headers"]

    def test_precondition_failure(self, logged_in, session):
        session.request.return_value = make_response(status_code=412)

        with pytest.raises(WriteConflictError):
            logged_in.update_entry(BOOK_URL + "uid-1.vcf", "body", "stale")


# ==============================================================================
# Retry / error mapping
# ==============================================================================


class TestRequestRetry:
    """Tests for _request backoff and status mapping."""

    @patch("contact_bridge.api.carddav_client.time.sleep")
    def test_server_error_retries(self, mock_sleep, logged_in, session):
        session.request.side_effect = [
            make_response(status_code=503),
            make_response(status_code=201),
        ]

        logged_in.create_entry("body", "a.vcf")

        assert session.request.call_count == 2
        mock_sleep.assert_called_once_with(1.0)

    @patch("contact_bridge.api.carddav_client.time.sleep")
    def test_backoff_doubles_and_is_capped(self, mock_sleep, session):
        client = CardDAVClient(
            server_url=SERVER,
            session=session,
            max_retries=4,
            initial_retry_delay=2.0,
            max_retry_delay=5.0,
        )
        client.address_book = AddressBook(url=BOOK_URL)
        session.request.return_value = make_response(status_code=429)

        with pytest.raises(DirectoryError, match="after 4 attempts"):
            client.create_entry("body", "a.vcf")

        assert [c.args[0] for c in mock_sleep.call_args_list] == [2.0, 4.0, 5.0]

    @patch("contact_bridge.api.carddav_client.time.sleep")
    def test_connection_error_retries(self, mock_sleep, logged_in, session):
        session.request.side_effect = [
            requests.ConnectionError("reset"),
            make_response(status_code=201),
        ]

        logged_in.create_entry("body", "a.vcf")

        assert session.request.call_count == 2

    @patch("contact_bridge.api.carddav_client.time.sleep")
    def test_connection_error_exhausted(self, mock_sleep, logged_in, session):
        session.request.side_effect = requests.ConnectionError("reset")

        with pytest.raises(DirectoryError, match="failed"):
            logged_in.create_entry("body", "a.vcf")
        assert session.request.call_count == 3

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_auth_errors_not_retried(self, status_code, logged_in, session):
        session.request.return_value = make_response(status_code=status_code)

        with pytest.raises(AuthError):
            logged_in.list_entries()
        assert session.request.call_count == 1

    def test_client_error_not_retried(self, logged_in, session):
        session.request.return_value = make_response(status_code=400)

        with pytest.raises(DirectoryError, match="HTTP 400") as exc_info:
            logged_in.create_entry("body", "a.vcf")

        assert not isinstance(exc_info.value, (AuthError, WriteConflictError))
        assert session.request.call_count == 1


class TestClientLifecycle:
    """Tests for close, context manager and repr."""

    def test_context_manager_closes_session(self, client, session):
        with client:
            pass
        session.close.assert_called_once()

    def test_repr_hides_password(self):
        assert "abcd" not in repr(CREDENTIALS)
        assert "jane@icloud.com" in repr(CREDENTIALS)

    def test_server_url_gets_trailing_slash(self, session):
        client = CardDAVClient(server_url=SERVER, session=session)
        assert client.server_url == SERVER + "/"
