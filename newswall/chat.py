from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from newswall.models import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_POLL_SECONDS = 2.0
UNKNOWN_SENDER = "Unknown"


class ChatError(Exception):
    pass


class AuthError(ChatError):
    pass


class PasswordRequired(ChatError):
    def __init__(self, hint: str = "") -> None:
        super().__init__("Two-factor password required")
        self.hint = hint


class ListingError(ChatError):
    pass


class TransportError(ChatError):
    pass


@dataclass(frozen=True)
class LastMessage:
    id: int
    text: str


@dataclass(frozen=True)
class Conversation:
    name: str | None
    chat_id: int
    last_message: LastMessage | None = None


class ChatTransport(Protocol):
    def is_authorized(self) -> bool: ...

    def request_login_code(self, phone: str) -> None: ...

    def sign_in(self, code: str) -> str: ...

    def check_password(self, password: str) -> str: ...

    def list_conversations(self) -> list[Conversation]: ...

    def close(self) -> None: ...


class DedupCursor:
    """High-water mark of message ids already surfaced, per conversation."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_seen: dict[int, int] = {}

    def advance(self, chat_id: int, message_id: int) -> bool:
        with self._lock:
            previous = self._last_seen.get(chat_id)
            if previous is not None and message_id <= previous:
                return False
            self._last_seen[chat_id] = message_id
            return True

    def get(self, chat_id: int) -> int | None:
        with self._lock:
            return self._last_seen.get(chat_id)


class AuthStep(Enum):
    AWAITING_CODE = "awaiting_code"
    AWAITING_PASSWORD = "awaiting_password"
    AUTHORIZED = "authorized"


class LoginFlow:
    """Linear login: request code, submit code, then the password if the account has 2FA."""

    def __init__(self, transport: ChatTransport) -> None:
        self.transport = transport
        self.step: AuthStep | None = None
        self.password_hint = ""
        self.display_name = ""

    def start(self, phone: str) -> AuthStep:
        if self.step is not None:
            raise AuthError(f"Login already started (step: {self.step.value})")
        phone = phone.strip()
        if not phone:
            raise AuthError("Phone number is required")
        self.transport.request_login_code(phone)
        self.step = AuthStep.AWAITING_CODE
        return self.step

    def submit_code(self, code: str) -> AuthStep:
        self._expect(AuthStep.AWAITING_CODE)
        try:
            self.display_name = self.transport.sign_in(code.strip())
        except PasswordRequired as exc:
            self.password_hint = exc.hint
            self.step = AuthStep.AWAITING_PASSWORD
            return self.step
        self.step = AuthStep.AUTHORIZED
        return self.step

    def submit_password(self, password: str) -> AuthStep:
        self._expect(AuthStep.AWAITING_PASSWORD)
        self.display_name = self.transport.check_password(password.strip())
        self.step = AuthStep.AUTHORIZED
        return self.step

    def _expect(self, step: AuthStep) -> None:
        if self.step is not step:
            current = self.step.value if self.step else "not started"
            raise AuthError(f"Expected login step {step.value}, currently {current}")


class ChatMonitor:
    def __init__(self, transport: ChatTransport, cursor: DedupCursor | None = None) -> None:
        self.transport = transport
        self.cursor = cursor or DedupCursor()

    def authorize(
        self,
        phone_prompt: Callable[[], str],
        code_prompt: Callable[[], str],
        password_prompt: Callable[[str], str],
    ) -> str:
        if self.transport.is_authorized():
            return ""
        flow = LoginFlow(self.transport)
        flow.start(phone_prompt())
        if flow.submit_code(code_prompt()) is AuthStep.AWAITING_PASSWORD:
            flow.submit_password(password_prompt(flow.password_hint))
        logger.info("Chat session authorized as %s", flow.display_name or UNKNOWN_SENDER)
        return flow.display_name

    def poll_once(self, target_ids: Iterable[int], sink: Callable[[ChatMessage], None]) -> int:
        targets = set(target_ids)
        forwarded = 0
        for conversation in self.transport.list_conversations():
            if conversation.chat_id not in targets:
                continue
            message = conversation.last_message
            if message is None:
                continue
            if not self.cursor.advance(conversation.chat_id, message.id):
                continue
            sink(
                ChatMessage(
                    sender=conversation.name or UNKNOWN_SENDER,
                    text=message.text.replace("\n", " "),
                )
            )
            forwarded += 1
        return forwarded

    def monitor(
        self,
        target_ids: Iterable[int],
        sink: Callable[[ChatMessage], None],
        stop_event: threading.Event,
        poll_seconds: float = DEFAULT_POLL_SECONDS,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        targets = frozenset(target_ids)
        while not stop_event.is_set():
            try:
                self.poll_once(targets, sink)
            except ListingError as exc:
                logger.warning("Conversation listing failed: %s", exc)
                if on_error is not None:
                    on_error(f"Chat listing failed: {exc}")
            stop_event.wait(poll_seconds)
