from __future__ import annotations

from dataclasses import dataclass, field

OFFSET_MODULUS = 2**64


@dataclass(frozen=True)
class FeedItem:
    title: str
    date: str
    description: str


@dataclass(frozen=True)
class FeedBatch:
    feeds: tuple[tuple[FeedItem, ...], ...]
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class ChatMessage:
    sender: str
    text: str


class ChatTable:
    # Keyed by display name: two conversations sharing a name overwrite each other.
    def __init__(self) -> None:
        self._latest: dict[str, str] = {}

    def upsert(self, message: ChatMessage) -> None:
        self._latest[message.sender] = message.text

    def get(self, sender: str) -> str | None:
        return self._latest.get(sender)

    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(
            ChatMessage(sender=sender, text=self._latest[sender])
            for sender in sorted(self._latest)
        )

    def __len__(self) -> int:
        return len(self._latest)


@dataclass(frozen=True)
class DashboardSnapshot:
    feeds: tuple[tuple[FeedItem, ...], ...]
    chat: tuple[ChatMessage, ...]
    offset: int
    notices: tuple[str, ...] = field(default_factory=tuple)
    pending_fetches: int = 0


def wrap_offset(offset: int) -> int:
    return offset % OFFSET_MODULUS
