from __future__ import annotations

from rich import box
from rich.console import Group
from rich.layout import Layout
from rich.panel import Panel
from rich.text import Text

from newswall.feeds import FEED_SOURCES, FeedSource
from newswall.models import ChatMessage, DashboardSnapshot, FeedItem

DARK_BG = "rgb(15,15,20)"
BORDER_MUTED = "rgb(50,50,60)"
TELEGRAM_BLUE = "rgb(0,136,204)"
DESC_GREY = "rgb(120,120,130)"
UI_GREY = "rgb(160,160,170)"

ITEM_MARKER = "◆ "
TITLE_MARGIN = 2
DATE_WIDTH = 10
ELLIPSIS = "..."
DIVIDER = "─"
DESCRIPTION_LINES = 2
DEFAULT_VISIBLE_ITEMS = 2
CHAT_DISPLAY_MAX = 20
FETCHING_PLACEHOLDER = "   Fetching data..."
CHAT_PLACEHOLDER = "   Waiting for messages..."
FEED_COLUMN_PERCENT = 40
SEPARATOR = "\ue0b0"


def truncate(value: str, width: int) -> str:
    if len(value) <= width:
        return value
    if width <= 1:
        return value[:width]
    return f"{value[: width - 1]}…"


def visible_indices(offset: int, length: int, count: int) -> list[int]:
    if length <= 0:
        return []
    return [(offset + slot) % length for slot in range(count)]


def fit_title(title: str, max_length: int) -> str:
    if len(title) <= max_length:
        return title
    if max_length < len(ELLIPSIS):
        return title[: max(max_length, 0)]
    return f"{title[: max_length - len(ELLIPSIS)]}{ELLIPSIS}"


def build_header(item: FeedItem, inner_width: int, color: str, tag: str = "") -> Text:
    date_str = item.date[:DATE_WIDTH]
    tag_str = f" [{tag}]" if tag else ""
    reserved = len(date_str) + len(tag_str) + len(ITEM_MARKER) + TITLE_MARGIN
    title = fit_title(item.title, max(inner_width - reserved, 0))
    content_length = len(ITEM_MARKER) + len(title) + len(date_str) + len(tag_str)
    padding = " " * max(inner_width - content_length, 0)

    header = Text(no_wrap=True, overflow="crop")
    header.append(ITEM_MARKER, style=color)
    header.append(title, style="bold white")
    header.append(padding)
    header.append(date_str, style=f"italic {DESC_GREY}")
    header.append(tag_str, style=f"bold {color}")
    # Panels narrower than marker + date + tag lose the tail.
    overflow = len(header.plain) - inner_width
    if overflow > 0:
        header.right_crop(overflow)
    return header


def wrap_description(text: str, width: int, max_lines: int = DESCRIPTION_LINES) -> list[str]:
    if width <= 0:
        return []
    flat = text.replace("\n", " ")
    limit = min(len(flat), width * max_lines)
    return [flat[start : start + width] for start in range(0, limit, width)]


def _plain_line(value: str, style: str = "") -> Text:
    return Text(value, style=style, no_wrap=True, overflow="crop")


def render_feed_lines(
    feed: tuple[FeedItem, ...],
    offset: int,
    inner_width: int,
    color: str,
    tag: str = "",
    count: int = DEFAULT_VISIBLE_ITEMS,
) -> list[Text]:
    if not feed:
        return [_plain_line(FETCHING_PLACEHOLDER)]

    lines: list[Text] = []
    indices = visible_indices(offset, len(feed), count)
    for slot, item_index in enumerate(indices):
        item = feed[item_index]
        lines.append(build_header(item, inner_width, color, tag))
        for chunk in wrap_description(item.description, inner_width):
            lines.append(_plain_line(chunk, style=DESC_GREY))
        if slot < len(indices) - 1:
            lines.append(_plain_line(DIVIDER * inner_width, style=BORDER_MUTED))
    return lines


def render_chat_lines(messages: tuple[ChatMessage, ...], inner_width: int) -> list[Text]:
    if not messages:
        return [_plain_line(CHAT_PLACEHOLDER, style=f"italic {DESC_GREY}")]
    lines: list[Text] = []
    for message in messages[:CHAT_DISPLAY_MAX]:
        bullet = Text(no_wrap=True, overflow="ellipsis")
        bullet.append(" ● ", style=TELEGRAM_BLUE)
        bullet.append(message.sender, style=f"bold {TELEGRAM_BLUE}")
        lines.append(bullet)
        lines.append(_plain_line(truncate(f"   {message.text}", max(inner_width, 0))))
        lines.append(_plain_line(""))
    return lines


def render_footer(
    seconds_to_tick: float,
    notices: tuple[str, ...],
    terminal_width: int,
    pending_fetches: int = 0,
) -> Text:
    footer = Text(no_wrap=True, overflow="crop")
    footer.append(" SYSTEM ", style=f"bold {DARK_BG} on {UI_GREY}")
    footer.append(SEPARATOR, style=f"{UI_GREY} on {BORDER_MUTED}")
    footer.append(" [Q] QUIT   [R] REFRESH ", style=f"white on {BORDER_MUTED}")
    footer.append(SEPARATOR, style=BORDER_MUTED)
    footer.append(f"   Syncing in: {max(seconds_to_tick, 0.0):.0f}s")
    if pending_fetches:
        footer.append("   Fetching feeds...", style=f"italic {UI_GREY}")
    if notices:
        room = terminal_width - len(footer.plain) - 3
        if room > 0:
            footer.append(" | ", style=DESC_GREY)
            footer.append(truncate(notices[-1], room), style="yellow")
    return footer


def create_panel(lines: list[Text], title: str, color: str) -> Panel:
    return Panel(
        Group(*lines),
        title=Text(title, style=f"bold {color}"),
        title_align="left",
        box=box.ROUNDED,
        border_style=BORDER_MUTED,
        style=f"on {DARK_BG}",
        padding=(0, 0),
    )


def column_widths(width: int) -> tuple[int, int, int]:
    feed_width = width * FEED_COLUMN_PERCENT // 100
    return feed_width, feed_width, max(width - 2 * feed_width, 0)


def row_heights(height: int, rows: int = 3) -> list[int]:
    base = height // rows
    return [base] * (rows - 1) + [height - base * (rows - 1)]


def _feed_column(
    snapshot: DashboardSnapshot,
    sources: tuple[FeedSource, ...],
    first_index: int,
    width: int,
    height: int,
    items_per_feed: int,
    name: str,
) -> Layout:
    inner_width = max(width - 2, 0)
    column = Layout(name=name, size=width)
    rows: list[Layout] = []
    for row, row_height in enumerate(row_heights(height)):
        index = first_index + row
        source = sources[index]
        feed = snapshot.feeds[index] if index < len(snapshot.feeds) else ()
        lines = render_feed_lines(
            feed,
            snapshot.offset,
            inner_width,
            source.color,
            source.tag,
            count=items_per_feed,
        )
        rows.append(Layout(create_panel(lines, source.title, source.color), size=row_height))
    column.split_column(*rows)
    return column


def build_dashboard(
    snapshot: DashboardSnapshot,
    width: int,
    height: int,
    seconds_to_tick: float,
    items_per_feed: int = DEFAULT_VISIBLE_ITEMS,
    sources: tuple[FeedSource, ...] = FEED_SOURCES,
) -> Layout:
    body_height = max(height - 1, 3)
    left_width, middle_width, right_width = column_widths(width)

    chat_panel = create_panel(
        render_chat_lines(snapshot.chat, max(right_width - 2, 0)),
        " TELEGRAM ",
        TELEGRAM_BLUE,
    )
    body = Layout(name="body", size=body_height)
    body.split_row(
        _feed_column(snapshot, sources, 0, left_width, body_height, items_per_feed, "left"),
        _feed_column(snapshot, sources, 3, middle_width, body_height, items_per_feed, "middle"),
        Layout(chat_panel, name="chat", size=right_width),
    )

    footer = render_footer(seconds_to_tick, snapshot.notices, width, snapshot.pending_fetches)
    root = Layout(name="root")
    root.split_column(body, Layout(footer, name="footer", size=1))
    return root
