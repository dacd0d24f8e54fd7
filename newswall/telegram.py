from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Coroutine
from typing import Any, TypeVar

from telethon import TelegramClient, utils
from telethon.errors import RPCError, SessionPasswordNeededError
from telethon.tl.functions.account import GetPasswordRequest

from newswall.chat import (
    AuthError,
    ChatError,
    Conversation,
    LastMessage,
    ListingError,
    PasswordRequired,
    TransportError,
)

logger = logging.getLogger(__name__)

DEFAULT_SESSION = "newswall"
DEFAULT_CALL_TIMEOUT = 30.0

T = TypeVar("T")


class TelethonTransport:
    def __init__(
        self,
        api_id: int,
        api_hash: str,
        session: str = DEFAULT_SESSION,
        timeout: float = DEFAULT_CALL_TIMEOUT,
    ) -> None:
        self.api_id = api_id
        self.api_hash = api_hash
        self.session = session
        self.timeout = timeout
        self._phone = ""
        self._loop = asyncio.new_event_loop()
        self._driver = threading.Thread(target=self._run_driver, name="telegram-driver", daemon=True)
        self._driver.start()
        self._client: TelegramClient = self._call(self._connect())

    def _run_driver(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def _call(
        self,
        coro: Coroutine[Any, Any, T],
        on_timeout: type[ChatError] = TransportError,
    ) -> T:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise on_timeout(f"Telegram call timed out after {self.timeout:.0f}s") from exc
        except (ConnectionError, OSError) as exc:
            raise TransportError(f"Telegram connection lost ({exc})") from exc

    async def _connect(self) -> TelegramClient:
        client = TelegramClient(self.session, self.api_id, self.api_hash)
        await client.connect()
        logger.info("Connected to Telegram (session: %s)", self.session)
        return client

    def is_authorized(self) -> bool:
        return self._call(self._client.is_user_authorized())

    def request_login_code(self, phone: str) -> None:
        self._phone = phone
        try:
            self._call(self._client.send_code_request(phone))
        except RPCError as exc:
            raise AuthError(f"Login code request rejected ({exc})") from exc

    def sign_in(self, code: str) -> str:
        try:
            user = self._call(self._client.sign_in(phone=self._phone, code=code))
        except SessionPasswordNeededError as exc:
            raise PasswordRequired(self._password_hint()) from exc
        except RPCError as exc:
            raise AuthError(f"Login failed ({exc})") from exc
        return utils.get_display_name(user)

    def check_password(self, password: str) -> str:
        try:
            user = self._call(self._client.sign_in(password=password))
        except RPCError as exc:
            raise AuthError(f"2FA login failed ({exc})") from exc
        return utils.get_display_name(user)

    def _password_hint(self) -> str:
        try:
            settings = self._call(self._client(GetPasswordRequest()))
        except RPCError:
            return ""
        return settings.hint or ""

    async def _fetch_conversations(self) -> list[Conversation]:
        if not self._client.is_connected():
            raise TransportError("Telegram client is disconnected")
        conversations: list[Conversation] = []
        async for dialog in self._client.iter_dialogs():
            message = dialog.message
            last_message = None
            if message is not None:
                last_message = LastMessage(id=message.id, text=message.message or "")
            conversations.append(
                Conversation(name=dialog.name or None, chat_id=dialog.id, last_message=last_message)
            )
        return conversations

    def list_conversations(self) -> list[Conversation]:
        try:
            return self._call(self._fetch_conversations(), on_timeout=ListingError)
        except ChatError:
            raise
        except Exception as exc:
            # RPC errors, bad buffers and the like: the next poll may succeed.
            raise ListingError(f"{type(exc).__name__}: {exc}") from exc

    def close(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
