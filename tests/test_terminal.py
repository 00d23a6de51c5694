"""Tests for raw mode scoping, size queries and resize forwarding."""

import os
import signal
import termios
import threading

import pytest

from sshpick import terminal
from sshpick.errors import PTYError
from sshpick.terminal import ResizeForwarder, raw_mode, terminal_size


class FakeTermios:
    def __init__(self, get_error=None, raw_error=None):
        self.get_error = get_error
        self.raw_error = raw_error
        self.events = []

    def tcgetattr(self, fd):
        if self.get_error:
            raise self.get_error
        self.events.append(("get", fd))
        return ["saved-mode"]

    def setraw(self, fd):
        if self.raw_error:
            raise self.raw_error
        self.events.append(("raw", fd))

    def tcsetattr(self, fd, when, mode):
        self.events.append(("restore", fd, when, mode))


@pytest.fixture
def fake_tty(monkeypatch):
    fake = FakeTermios()
    monkeypatch.setattr(terminal.termios, "tcgetattr", fake.tcgetattr)
    monkeypatch.setattr(terminal.termios, "tcsetattr", fake.tcsetattr)
    monkeypatch.setattr(terminal.tty, "setraw", fake.setraw)
    return fake


class TestTerminalSize:
    def test_not_a_terminal(self):
        read_fd, write_fd = os.pipe()
        try:
            assert terminal_size(read_fd) is None
        finally:
            os.close(read_fd)
            os.close(write_fd)

    def test_reports_columns_and_lines(self, monkeypatch):
        monkeypatch.setattr(
            terminal.os, "get_terminal_size", lambda fd: os.terminal_size((132, 43))
        )

        assert terminal_size(0) == (132, 43)

    def test_zero_size_is_unavailable(self, monkeypatch):
        monkeypatch.setattr(
            terminal.os, "get_terminal_size", lambda fd: os.terminal_size((0, 0))
        )

        assert terminal_size(0) is None


class TestRawMode:
    def test_restores_on_normal_exit(self, fake_tty):
        with raw_mode(7):
            assert fake_tty.events == [("get", 7), ("raw", 7)]

        assert fake_tty.events[-1] == ("restore", 7, termios.TCSADRAIN, ["saved-mode"])

    def test_restores_on_error(self, fake_tty):
        with pytest.raises(ValueError):
            with raw_mode(7):
                raise ValueError("boom")

        restores = [event for event in fake_tty.events if event[0] == "restore"]
        assert len(restores) == 1

    def test_restores_on_interrupt(self, fake_tty):
        with pytest.raises(KeyboardInterrupt):
            with raw_mode(7):
                raise KeyboardInterrupt

        assert fake_tty.events[-1][0] == "restore"

    def test_not_a_terminal(self, fake_tty):
        fake_tty.get_error = termios.error(25, "Inappropriate ioctl for device")

        with pytest.raises(PTYError):
            with raw_mode(7):
                pass

        assert fake_tty.events == []

    def test_setraw_failure_restores_previous_mode(self, fake_tty):
        fake_tty.raw_error = termios.error(5, "I/O error")

        with pytest.raises(PTYError):
            with raw_mode(7):
                pass

        assert fake_tty.events == [
            ("get", 7),
            ("restore", 7, termios.TCSADRAIN, ["saved-mode"]),
        ]


class TestResizeForwarder:
    def test_forwards_each_notification(self):
        calls = []
        done = threading.Event()

        def on_resize():
            calls.append(threading.current_thread().name)
            if len(calls) == 2:
                done.set()

        previous = signal.getsignal(signal.SIGWINCH)
        with ResizeForwarder(on_resize) as forwarder:
            assert forwarder.running
            signal.raise_signal(signal.SIGWINCH)
            signal.raise_signal(signal.SIGWINCH)
            assert done.wait(5)

        assert not forwarder.running
        assert calls == ["sshpick-resize", "sshpick-resize"]
        assert signal.getsignal(signal.SIGWINCH) == previous

    def test_callback_errors_do_not_stop_forwarding(self):
        done = threading.Event()
        attempts = []

        def on_resize():
            attempts.append(1)
            if len(attempts) == 1:
                raise OSError("channel closed")
            done.set()

        with ResizeForwarder(on_resize):
            signal.raise_signal(signal.SIGWINCH)
            signal.raise_signal(signal.SIGWINCH)
            assert done.wait(5)

    def test_cancel_is_idempotent(self):
        forwarder = ResizeForwarder(lambda: None)
        forwarder.cancel()
        forwarder.start()
        forwarder.cancel()
        forwarder.cancel()

        assert not forwarder.running
