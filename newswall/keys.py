from __future__ import annotations

import os
import queue
import select
import sys
import termios
import threading
import tty

QUIT = "QUIT"
REFRESH = "REFRESH"

KEY_ACTIONS = {"q": QUIT, "r": REFRESH, "\x03": QUIT}


def key_action(key: str) -> str | None:
    return KEY_ACTIONS.get(key.lower())


def _line_input_worker(key_queue: queue.Queue[str], stop_event: threading.Event) -> None:
    while not stop_event.is_set():
        try:
            line = sys.stdin.readline()
        except (OSError, ValueError):
            if stop_event.wait(0.2):
                break
            continue
        if line == "":
            if stop_event.wait(0.2):
                break
            continue
        for key in line.strip():
            key_queue.put(key)


def key_input_worker(key_queue: queue.Queue[str], stop_event: threading.Event) -> None:
    if not sys.stdin.isatty():
        _line_input_worker(key_queue, stop_event)
        return

    try:
        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
    except (OSError, ValueError, termios.error):
        _line_input_worker(key_queue, stop_event)
        return

    try:
        tty.setcbreak(fd)
        while not stop_event.is_set():
            ready, _, _ = select.select([fd], [], [], 0.1)
            if not ready:
                continue
            data = os.read(fd, 1)
            if not data:
                continue
            key = data.decode("utf-8", errors="ignore")
            if key == "\x1b":
                # Swallow the rest of an escape sequence so arrows do not leak letters.
                while select.select([fd], [], [], 0.001)[0]:
                    os.read(fd, 1)
                continue
            if key:
                key_queue.put(key)
    finally:
        try:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
        except termios.error:
            pass
