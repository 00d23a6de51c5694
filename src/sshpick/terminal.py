"""Local terminal state: raw mode, window size and resize notifications."""

from __future__ import annotations

import logging
import os
import queue
import signal
import sys
import termios
import threading
import tty
from contextlib import contextmanager
from typing import Any, Callable, ContextManager, Iterator, Optional, TextIO, Tuple

from .errors import PTYError

LOGGER = logging.getLogger(__name__)


def terminal_size(fd: int) -> Optional[Tuple[int, int]]:
    """Return ``(columns, lines)`` for *fd*, or ``None`` when unavailable."""
    try:
        size = os.get_terminal_size(fd)
    except (OSError, ValueError):
        return None
    if size.columns <= 0 or size.lines <= 0:
        return None
    return size.columns, size.lines


@contextmanager
def raw_mode(fd: int, logger: Optional[logging.Logger] = None) -> Iterator[None]:
    """Switch *fd* to raw mode and restore the previous mode on exit.

    Restoration runs once on every exit path, including exceptions and
    ``KeyboardInterrupt``. Failing to enter raw mode raises ``PTYError``.
    """
    log = logger or LOGGER
    try:
        previous = termios.tcgetattr(fd)
    except (termios.error, OSError) as exc:
        raise PTYError(f"failed to set raw terminal: {exc}") from exc
    try:
        tty.setraw(fd)
    except (termios.error, OSError) as exc:
        termios.tcsetattr(fd, termios.TCSADRAIN, previous)
        raise PTYError(f"failed to set raw terminal: {exc}") from exc
    log.debug("Terminal %d switched to raw mode", fd)
    try:
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, previous)
        log.debug("Terminal %d restored", fd)


_STOP = object()


class ResizeForwarder:
    """Forwards SIGWINCH notifications to *on_resize* from a worker thread.

    The signal handler only enqueues; the worker drains the queue and calls
    *on_resize* once per notification until ``cancel`` is called. ``cancel``
    reinstates the previous handler and joins the worker. Must be started
    from the main thread.
    """

    def __init__(
        self,
        on_resize: Callable[[], None],
        *,
        logger: Optional[logging.Logger] = None,
        signum: int = signal.SIGWINCH,
    ) -> None:
        self._on_resize = on_resize
        self._logger = logger or LOGGER
        self._signum = signum
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._previous_handler: Any = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._previous_handler = signal.signal(self._signum, self._notify)
        self._thread = threading.Thread(
            target=self._run, name="sshpick-resize", daemon=True
        )
        self._thread.start()
        self._logger.debug("Resize forwarding started")

    def cancel(self) -> None:
        if self._thread is None:
            return
        signal.signal(self._signum, self._previous_handler)
        self._queue.put(_STOP)
        self._thread.join()
        self._thread = None
        self._logger.debug("Resize forwarding stopped")

    def _notify(self, signum: int, frame: Any) -> None:
        self._queue.put(signum)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                self._on_resize()
            except Exception:
                self._logger.debug("Window change request failed", exc_info=True)

    def __enter__(self) -> "ResizeForwarder":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cancel()


class LocalTerminal:
    """The process's own stdin/stdout/stderr as seen by an interactive session."""

    def __init__(
        self,
        *,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr
        self._logger = logger or LOGGER

    @property
    def fd(self) -> int:
        return self.stdin.fileno()

    def raw(self) -> ContextManager[None]:
        return raw_mode(self.fd, self._logger)

    def size(self) -> Optional[Tuple[int, int]]:
        return terminal_size(self.fd)

    def watch_resize(self, on_resize: Callable[[], None]) -> ResizeForwarder:
        return ResizeForwarder(on_resize, logger=self._logger)

    def read(self, size: int) -> bytes:
        return os.read(self.fd, size)

    def write_out(self, data: bytes) -> None:
        self.stdout.buffer.write(data)
        self.stdout.flush()

    def write_err(self, data: bytes) -> None:
        self.stderr.buffer.write(data)
        self.stderr.flush()


__all__ = [
    "LocalTerminal",
    "ResizeForwarder",
    "raw_mode",
    "terminal_size",
]
