"""Unit tests for the Telethon transport's error mapping."""
import asyncio
import struct
import threading
from types import SimpleNamespace

import pytest
from telethon.errors import FloodWaitError, PasswordHashInvalidError, PhoneCodeInvalidError, SessionPasswordNeededError
from telethon.errors.common import InvalidBufferError
from telethon.tl.types import User

from newswall.chat import AuthError, ChatMonitor, ListingError, PasswordRequired, TransportError
from newswall.telegram import TelethonTransport


def dialog(chat_id, message_id, text, name="alice"):
    return SimpleNamespace(name=name, id=chat_id, message=SimpleNamespace(id=message_id, message=text))


class StubClient:
    """Stands in for TelegramClient; each listing pops the next scripted outcome."""

    def __init__(self, listings=(), connected=True, code_error=None, sign_in_error=None, password_error=None):
        self.listings = list(listings)
        self.connected = connected
        self.code_error = code_error
        self.sign_in_error = sign_in_error
        self.password_error = password_error
        self.listing_calls = 0

    def is_connected(self):
        return self.connected

    async def is_user_authorized(self):
        return True

    async def send_code_request(self, phone):
        if self.code_error is not None:
            raise self.code_error

    async def sign_in(self, phone=None, code=None, password=None):
        error = self.password_error if password is not None else self.sign_in_error
        if error is not None:
            raise error
        return User(id=1, first_name="Alice")

    async def __call__(self, request):
        return SimpleNamespace(hint="pet name")

    def iter_dialogs(self):
        self.listing_calls += 1
        outcome = self.listings.pop(0) if self.listings else []
        return self._dialogs(outcome)

    async def _dialogs(self, outcome):
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == "slow":
            await asyncio.sleep(5)
            return
        for item in outcome:
            yield item


@pytest.fixture
def make_transport():
    """Build transports around a stub client, skipping the real connect."""
    transports = []

    def factory(client, timeout=2.0):
        transport = TelethonTransport.__new__(TelethonTransport)
        transport.session = "test"
        transport.timeout = timeout
        transport._phone = ""
        transport._loop = asyncio.new_event_loop()
        transport._driver = threading.Thread(target=transport._run_driver, daemon=True)
        transport._driver.start()
        transport._client = client
        transports.append(transport)
        return transport

    yield factory
    for transport in transports:
        transport.close()
        transport._driver.join(timeout=2)


def http_404_buffer():
    return InvalidBufferError(struct.pack("<i", -404))


class TestLoginMapping:
    """Tests for login errors crossing into the chat error types."""

    def test_successful_sign_in_returns_display_name(self, make_transport):
        transport = make_transport(StubClient())
        transport.request_login_code("+123")

        assert transport.sign_in("12345") == "Alice"

    def test_rejected_code_request_is_an_auth_error(self, make_transport):
        transport = make_transport(StubClient(code_error=FloodWaitError(None, capture=30)))

        with pytest.raises(AuthError):
            transport.request_login_code("+123")

    def test_rejected_code_is_an_auth_error(self, make_transport):
        transport = make_transport(StubClient(sign_in_error=PhoneCodeInvalidError(None)))

        with pytest.raises(AuthError):
            transport.sign_in("00000")

    def test_second_factor_carries_the_password_hint(self, make_transport):
        transport = make_transport(StubClient(sign_in_error=SessionPasswordNeededError(None)))

        with pytest.raises(PasswordRequired) as excinfo:
            transport.sign_in("12345")

        assert excinfo.value.hint == "pet name"

    def test_rejected_password_is_an_auth_error(self, make_transport):
        transport = make_transport(StubClient(password_error=PasswordHashInvalidError(None)))

        with pytest.raises(AuthError):
            transport.check_password("wrong")


class TestListingMapping:
    """Tests for listing errors crossing into the chat error types."""

    def test_dialogs_become_conversations(self, make_transport):
        transport = make_transport(StubClient(listings=[[dialog(42, 7, "hi"), dialog(43, 8, None, name="")]]))

        conversations = transport.list_conversations()

        assert conversations[0].chat_id == 42
        assert conversations[0].last_message.text == "hi"
        assert conversations[1].name is None
        assert conversations[1].last_message.text == ""

    def test_rpc_error_is_a_listing_error(self, make_transport):
        transport = make_transport(StubClient(listings=[FloodWaitError(None, capture=5)]))

        with pytest.raises(ListingError):
            transport.list_conversations()

    def test_invalid_buffer_is_a_listing_error(self, make_transport):
        transport = make_transport(StubClient(listings=[http_404_buffer()]))

        with pytest.raises(ListingError, match="404"):
            transport.list_conversations()

    def test_timeout_is_a_listing_error(self, make_transport):
        transport = make_transport(StubClient(listings=["slow"]), timeout=0.1)

        with pytest.raises(ListingError):
            transport.list_conversations()

    def test_disconnected_client_is_a_transport_error(self, make_transport):
        transport = make_transport(StubClient(connected=False))

        with pytest.raises(TransportError):
            transport.list_conversations()

    def test_lost_connection_is_a_transport_error(self, make_transport):
        transport = make_transport(StubClient(listings=[ConnectionResetError("reset by peer")]))

        with pytest.raises(TransportError):
            transport.list_conversations()

    def test_monitor_keeps_polling_after_a_bad_buffer(self, make_transport):
        client = StubClient(listings=[http_404_buffer(), [dialog(42, 7, "back again")]])
        monitor = ChatMonitor(make_transport(client))
        stop_event = threading.Event()
        received = []
        errors = []

        def sink(message):
            received.append(message)
            stop_event.set()

        monitor.monitor([42], sink, stop_event, poll_seconds=0.01, on_error=errors.append)

        assert client.listing_calls == 2
        assert received[0].text == "back again"
        assert "404" in errors[0]
