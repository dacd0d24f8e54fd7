from __future__ import annotations

import argparse
import logging
import os
import queue
import sys
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from dotenv import load_dotenv
from rich.console import Console
from rich.layout import Layout
from rich.live import Live

from newswall.chat import ChatError, ChatMonitor, TransportError
from newswall.feeds import DEFAULT_FETCH_TIMEOUT, FEED_SOURCES, fetch_all
from newswall.keys import QUIT, REFRESH, key_action, key_input_worker
from newswall.layout import DEFAULT_VISIBLE_ITEMS, build_dashboard
from newswall.models import ChatMessage, ChatTable, DashboardSnapshot, FeedBatch, FeedItem, wrap_offset
from newswall.telegram import DEFAULT_SESSION, TelethonTransport

logger = logging.getLogger(__name__)

KEY_POLL_SECONDS = 0.1
DEFAULT_TICK_SECONDS = 15.0
DEFAULT_POLL_SECONDS = 2.0
DEFAULT_FEED_REFRESH_MINUTES = 10
NOTICE_LOG_MAX = 12

Fetcher = Callable[[list[str], float], FeedBatch]


@dataclass
class AppConfig:
    api_id: int | None
    api_hash: str
    chat_ids: tuple[int, ...]
    session: str
    log_file: str
    tick_seconds: float
    poll_seconds: float
    feed_refresh_minutes: int
    items_per_feed: int
    fetch_timeout: int
    chat_enabled: bool
    once: bool


@dataclass
class DashboardState:
    feeds: list[tuple[FeedItem, ...]]
    chat: ChatTable
    offset: int
    last_tick_at: float
    next_fetch_at: float
    pending_fetches: int = 0
    notices: list[str] = field(default_factory=list)


@dataclass
class Channels:
    feeds: queue.Queue[FeedBatch] = field(default_factory=queue.Queue)
    chat: queue.Queue[ChatMessage] = field(default_factory=queue.Queue)
    notices: queue.Queue[str] = field(default_factory=queue.Queue)
    keys: queue.Queue[str] = field(default_factory=queue.Queue)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_chat_ids(raw: str) -> tuple[int, ...]:
    out: list[int] = []
    for part in raw.split(","):
        piece = part.strip()
        if not piece:
            continue
        try:
            out.append(int(piece))
        except ValueError:
            raise ValueError(f"Invalid chat id '{piece}' in TG_CHAT_IDS") from None
    return tuple(out)


def parse_config(argv: list[str], environ: Mapping[str, str]) -> AppConfig:
    parser = argparse.ArgumentParser(
        description="Live terminal wall of RSS headlines and Telegram chat messages."
    )
    parser.add_argument("--tick-seconds", type=float, default=DEFAULT_TICK_SECONDS)
    parser.add_argument("--poll-seconds", type=float, default=DEFAULT_POLL_SECONDS)
    parser.add_argument("--feed-refresh-minutes", type=int, default=DEFAULT_FEED_REFRESH_MINUTES)
    parser.add_argument("--items-per-feed", type=int, default=DEFAULT_VISIBLE_ITEMS)
    parser.add_argument("--fetch-timeout", type=int, default=DEFAULT_FETCH_TIMEOUT)
    parser.add_argument("--session", default=environ.get("TG_SESSION", DEFAULT_SESSION))
    parser.add_argument("--log-file", default=environ.get("NEWSWALL_LOG_FILE", ""))
    parser.add_argument("--no-chat", action="store_true", help="Skip the Telegram monitor.")
    parser.add_argument("--once", action="store_true", help="Fetch feeds, print one frame and exit.")

    args = parser.parse_args(argv)

    if args.tick_seconds < 1:
        raise ValueError("--tick-seconds must be >= 1")
    if args.poll_seconds <= 0:
        raise ValueError("--poll-seconds must be > 0")
    if args.feed_refresh_minutes < 1:
        raise ValueError("--feed-refresh-minutes must be >= 1")
    if args.items_per_feed < 1:
        raise ValueError("--items-per-feed must be >= 1")
    if args.fetch_timeout < 1:
        raise ValueError("--fetch-timeout must be >= 1")

    chat_enabled = not (args.no_chat or args.once)
    api_id: int | None = None
    api_hash = environ.get("TG_API_HASH", "").strip()
    raw_api_id = environ.get("TG_API_ID", "").strip()
    if chat_enabled:
        if not raw_api_id:
            raise ValueError("TG_API_ID is not set")
        try:
            api_id = int(raw_api_id)
        except ValueError:
            raise ValueError(f"TG_API_ID must be an integer, got '{raw_api_id}'") from None
        if not api_hash:
            raise ValueError("TG_API_HASH is not set")

    return AppConfig(
        api_id=api_id,
        api_hash=api_hash,
        chat_ids=parse_chat_ids(environ.get("TG_CHAT_IDS", "")),
        session=args.session,
        log_file=args.log_file,
        tick_seconds=args.tick_seconds,
        poll_seconds=args.poll_seconds,
        feed_refresh_minutes=args.feed_refresh_minutes,
        items_per_feed=args.items_per_feed,
        fetch_timeout=args.fetch_timeout,
        chat_enabled=chat_enabled,
        once=args.once,
    )


def configure_logging(log_file: str) -> None:
    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    else:
        # Anything written to stderr would land on top of the live screen.
        handler = logging.NullHandler()
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.INFO)


def make_initial_state(now: float, categories: int = len(FEED_SOURCES)) -> DashboardState:
    return DashboardState(
        feeds=[() for _ in range(categories)],
        chat=ChatTable(),
        offset=0,
        last_tick_at=now,
        next_fetch_at=now,
    )


def make_snapshot(state: DashboardState) -> DashboardSnapshot:
    return DashboardSnapshot(
        feeds=tuple(state.feeds),
        chat=state.chat.messages(),
        offset=state.offset,
        notices=tuple(state.notices),
        pending_fetches=state.pending_fetches,
    )


def append_notice(state: DashboardState, message: str, max_entries: int = NOTICE_LOG_MAX) -> None:
    timestamp = now_utc().strftime("%H:%M:%S")
    state.notices.append(f"[{timestamp}] {message}")
    if len(state.notices) > max_entries:
        state.notices = state.notices[-max_entries:]


def apply_feed_batch(state: DashboardState, batch: FeedBatch) -> None:
    feeds = list(batch.feeds[: len(state.feeds)])
    feeds.extend(() for _ in range(len(state.feeds) - len(feeds)))
    state.feeds = feeds
    state.offset = 0
    state.pending_fetches = max(0, state.pending_fetches - 1)
    for error in batch.errors:
        append_notice(state, f"Feed unavailable: {error}")


def drain_feed_batches(state: DashboardState, feed_queue: queue.Queue[FeedBatch]) -> int:
    applied = 0
    while True:
        try:
            batch = feed_queue.get_nowait()
        except queue.Empty:
            return applied
        apply_feed_batch(state, batch)
        applied += 1


def drain_chat_messages(state: DashboardState, chat_queue: queue.Queue[ChatMessage]) -> int:
    received = 0
    while True:
        try:
            message = chat_queue.get_nowait()
        except queue.Empty:
            return received
        state.chat.upsert(message)
        received += 1


def drain_notices(state: DashboardState, notice_queue: queue.Queue[str]) -> None:
    while True:
        try:
            message = notice_queue.get_nowait()
        except queue.Empty:
            return
        append_notice(state, message)


def advance_tick(state: DashboardState, now: float, tick_seconds: float) -> bool:
    if now - state.last_tick_at < tick_seconds:
        return False
    state.offset = wrap_offset(state.offset + 1)
    state.last_tick_at = now
    return True


def seconds_to_tick(state: DashboardState, now: float, tick_seconds: float) -> float:
    return max(tick_seconds - (now - state.last_tick_at), 0.0)


def feed_refresh_worker(
    urls: list[str],
    timeout: float,
    feed_queue: queue.Queue[FeedBatch],
    fetcher: Fetcher = fetch_all,
) -> None:
    feed_queue.put(fetcher(urls, timeout))


def start_feed_refresh(
    state: DashboardState,
    config: AppConfig,
    feed_queue: queue.Queue[FeedBatch],
    now: float,
    fetcher: Fetcher = fetch_all,
) -> threading.Thread:
    state.pending_fetches += 1
    state.next_fetch_at = now + config.feed_refresh_minutes * 60
    worker = threading.Thread(
        target=feed_refresh_worker,
        args=([source.url for source in FEED_SOURCES], config.fetch_timeout, feed_queue, fetcher),
        name="feed-refresh",
        daemon=True,
    )
    worker.start()
    return worker


def chat_worker(
    monitor: ChatMonitor,
    config: AppConfig,
    channels: Channels,
    stop_event: threading.Event,
) -> None:
    try:
        monitor.monitor(
            config.chat_ids,
            channels.chat.put,
            stop_event,
            poll_seconds=config.poll_seconds,
            on_error=channels.notices.put,
        )
    except TransportError as exc:
        logger.error("Chat monitor stopped: %s", exc)
        channels.notices.put(f"Chat monitor stopped: {exc}")
    except Exception as exc:
        logger.exception("Chat monitor crashed")
        channels.notices.put(f"Chat monitor crashed: {exc}")


def run_iteration(
    state: DashboardState,
    config: AppConfig,
    channels: Channels,
    clock: Callable[[], float] = time.monotonic,
    fetcher: Fetcher = fetch_all,
    key_timeout: float = KEY_POLL_SECONDS,
) -> bool:
    drain_feed_batches(state, channels.feeds)
    drain_chat_messages(state, channels.chat)
    drain_notices(state, channels.notices)

    try:
        key = channels.keys.get(timeout=key_timeout)
    except queue.Empty:
        key = None
    if key is not None:
        action = key_action(key)
        if action == QUIT:
            return False
        if action == REFRESH:
            append_notice(state, "Refreshing feeds...")
            start_feed_refresh(state, config, channels.feeds, clock(), fetcher)

    now = clock()
    advance_tick(state, now, config.tick_seconds)
    if now >= state.next_fetch_at:
        start_feed_refresh(state, config, channels.feeds, now, fetcher)
    return True


def build_frame(state: DashboardState, config: AppConfig, console: Console, now: float) -> Layout:
    return build_dashboard(
        make_snapshot(state),
        width=console.size.width,
        height=console.size.height,
        seconds_to_tick=seconds_to_tick(state, now, config.tick_seconds),
        items_per_feed=config.items_per_feed,
    )


def login_monitor(config: AppConfig, console: Console) -> ChatMonitor:
    if config.api_id is None:
        raise ValueError("TG_API_ID is required for the Telegram monitor")
    transport = TelethonTransport(config.api_id, config.api_hash, session=config.session)
    monitor = ChatMonitor(transport)

    def ask_password(hint: str) -> str:
        suffix = f" (hint: {hint})" if hint else ""
        return console.input(f"Enter 2FA password{suffix}: ", password=True)

    name = monitor.authorize(
        phone_prompt=lambda: console.input("Enter phone (e.g. +123456789): "),
        code_prompt=lambda: console.input("Enter the code sent to your Telegram: "),
        password_prompt=ask_password,
    )
    if name:
        console.print(f"Signed in as [bold]{name}[/bold]")
    return monitor


def run(config: AppConfig, console: Console) -> int:
    if config.once:
        state = make_initial_state(time.monotonic())
        apply_feed_batch(state, fetch_all([source.url for source in FEED_SOURCES], config.fetch_timeout))
        console.print(build_frame(state, config, console, time.monotonic()))
        return 0

    monitor = login_monitor(config, console) if config.chat_enabled else None

    channels = Channels()
    stop_event = threading.Event()
    state = make_initial_state(time.monotonic())
    start_feed_refresh(state, config, channels.feeds, time.monotonic())

    key_thread = threading.Thread(
        target=key_input_worker,
        args=(channels.keys, stop_event),
        name="keys",
        daemon=True,
    )
    key_thread.start()
    if monitor is not None:
        threading.Thread(
            target=chat_worker,
            args=(monitor, config, channels, stop_event),
            name="chat-monitor",
            daemon=True,
        ).start()
    else:
        append_notice(state, "Telegram monitor disabled.")

    with Live(
        build_frame(state, config, console, time.monotonic()),
        console=console,
        auto_refresh=False,
        screen=True,
        vertical_overflow="crop",
    ) as live:
        try:
            while run_iteration(state, config, channels):
                live.update(build_frame(state, config, console, time.monotonic()), refresh=True)
        finally:
            stop_event.set()
            key_thread.join(timeout=0.5)
            if monitor is not None:
                monitor.transport.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    console = Console()
    try:
        config = parse_config(argv if argv is not None else sys.argv[1:], os.environ)
    except ValueError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        return 2
    configure_logging(config.log_file)
    try:
        return run(config, console)
    except ChatError as exc:
        logger.error("Telegram session failed: %s", exc)
        console.print(f"[red]Telegram error:[/red] {exc}")
        return 1
    except KeyboardInterrupt:
        console.print("\n[bold]Stopped.[/bold]")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
