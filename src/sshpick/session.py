"""Interactive SSH shell sessions driven by paramiko."""

from __future__ import annotations

import logging
import os
import selectors
import socket
import struct
from enum import Enum
from typing import Callable, List, Mapping, Optional, Sequence

import paramiko
from paramiko.common import cMSG_CHANNEL_REQUEST
from paramiko.message import Message
from paramiko.ssh_exception import (
    AuthenticationException,
    BadAuthenticationType,
    SSHException,
)

from .auth_chain import AuthCandidate, AuthChainBuilder
from .errors import (
    AuthExhaustedError,
    DialError,
    PTYError,
    SessionRuntimeError,
)
from .settings import Settings
from .ssh_config import HostRecord
from .terminal import LocalTerminal

LOGGER = logging.getLogger(__name__)

# RFC 4254 section 8 opcodes.
TTY_OP_END = 0
ECHO = 53
TTY_OP_ISPEED = 128
TTY_OP_OSPEED = 129

ALL_METHODS = ("publickey", "password", "keyboard-interactive")
CHUNK_SIZE = 32768


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    DIALING = "dialing"
    AUTHENTICATED = "authenticated"
    PTY_REQUESTED = "pty-requested"
    SHELL_RUNNING = "shell-running"
    CLOSED = "closed"


class SessionOutcome(Enum):
    SUCCESS = "success"
    ERROR = "error"


def encode_terminal_modes(modes: Mapping[int, int]) -> bytes:
    encoded = b"".join(struct.pack(">BI", opcode, value) for opcode, value in modes.items())
    return encoded + bytes([TTY_OP_END])


def request_pty(
    channel: paramiko.Channel,
    term: str,
    width: int,
    height: int,
    modes: Mapping[int, int],
) -> None:
    """Send a ``pty-req`` carrying *modes* and wait for the reply.

    ``Channel.get_pty`` always sends an empty mode list, so the request is
    assembled here the same way paramiko does it internally.
    """
    m = Message()
    m.add_byte(cMSG_CHANNEL_REQUEST)
    m.add_int(channel.remote_chanid)
    m.add_string("pty-req")
    m.add_boolean(True)
    m.add_string(term)
    m.add_int(width)
    m.add_int(height)
    m.add_int(0)
    m.add_int(0)
    m.add_string(encode_terminal_modes(modes))
    channel._event_pending()
    channel.transport._send_user_message(m)
    channel._wait_for_event()


def open_transport(address: str, port: int, timeout: float) -> paramiko.Transport:
    sock = socket.create_connection((address, port), timeout=timeout)
    transport = paramiko.Transport(sock)
    try:
        transport.start_client(timeout=timeout)
    except BaseException:
        transport.close()
        raise
    return transport


def _drain_stderr(channel: paramiko.Channel, terminal: LocalTerminal) -> None:
    while channel.recv_stderr_ready():
        terminal.write_err(channel.recv_stderr(CHUNK_SIZE))


def pump_channel(channel: paramiko.Channel, terminal: LocalTerminal) -> None:
    """Copy local input to *channel* and its output back until the remote closes.

    The channel is only read from when data is already buffered, so stderr
    output never blocks forwarding of local input.
    """
    selector = selectors.DefaultSelector()
    selector.register(channel, selectors.EVENT_READ)
    selector.register(terminal.fd, selectors.EVENT_READ)
    try:
        while True:
            for key, _ in selector.select():
                if key.fileobj is channel:
                    _drain_stderr(channel, terminal)
                    if channel.recv_ready():
                        terminal.write_out(channel.recv(CHUNK_SIZE))
                    elif channel.eof_received or channel.closed:
                        _drain_stderr(channel, terminal)
                        return
                else:
                    data = terminal.read(1024)
                    if not data:
                        selector.unregister(terminal.fd)
                        channel.shutdown_write()
                        continue
                    channel.sendall(data)
    finally:
        selector.close()


class SessionManager:
    """Connects to one host and runs an interactive shell until it exits."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        chain_builder: Optional[AuthChainBuilder] = None,
        logger: Optional[logging.Logger] = None,
        environ: Optional[Mapping[str, str]] = None,
        terminal: Optional[LocalTerminal] = None,
        transport_factory: Callable[[str, int, float], paramiko.Transport] = open_transport,
        pty_requester: Callable[..., None] = request_pty,
        pump: Callable[[paramiko.Channel, LocalTerminal], None] = pump_channel,
    ) -> None:
        self.settings = settings or Settings()
        self._logger = logger or LOGGER
        self._environ = os.environ if environ is None else environ
        self._chain_builder = chain_builder or AuthChainBuilder(
            logger=self._logger, environ=self._environ
        )
        self._terminal = terminal or LocalTerminal(logger=self._logger)
        self._transport_factory = transport_factory
        self._request_pty = pty_requester
        self._pump = pump
        self._state = SessionState.DISCONNECTED
        self._outcome: Optional[SessionOutcome] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def outcome(self) -> Optional[SessionOutcome]:
        """How the session ended; ``None`` until it reaches ``CLOSED``."""
        return self._outcome

    def _set_state(self, new_state: SessionState) -> None:
        self._logger.debug("Session state: %s -> %s", self._state.name, new_state.name)
        self._state = new_state

    def username_for(self, host: HostRecord) -> str:
        return (
            host.user
            or self._environ.get("USER")
            or self._environ.get("LOGNAME")
            or ""
        )

    def terminal_modes(self) -> dict[int, int]:
        speed = self.settings.terminal_speed
        return {ECHO: 1, TTY_OP_ISPEED: speed, TTY_OP_OSPEED: speed}

    def run(self, host: HostRecord) -> int:
        """Connect to *host*, run its login shell and return the exit status."""
        if self._state is not SessionState.DISCONNECTED:
            raise SessionRuntimeError("session objects cannot be reused")
        outcome = SessionOutcome.ERROR
        try:
            transport = self.dial(host)
            try:
                status = self._run_shell(transport)
            finally:
                transport.close()
            outcome = SessionOutcome.SUCCESS
            return status
        finally:
            self._outcome = outcome
            self._set_state(SessionState.CLOSED)

    # -- Dialing -------------------------------------------------------

    def dial(self, host: HostRecord) -> paramiko.Transport:
        self._set_state(SessionState.DIALING)
        username = self.username_for(host)
        try:
            port = int(host.port)
        except ValueError as exc:
            raise DialError(f"invalid port {host.port!r} for host {host.name}") from exc
        self._logger.debug("Connecting to %s@%s:%d", username, host.address, port)
        self._logger.debug("IdentityFile from config: %s", host.identity_file or "")
        try:
            transport = self._transport_factory(
                host.address, port, self.settings.connect_timeout
            )
        except (OSError, SSHException, EOFError) as exc:
            raise DialError(f"failed to connect to {host.address}:{port}: {exc}") from exc

        candidates = self._chain_builder.build(host)
        try:
            self._authenticate(transport, username, candidates)
        except BaseException:
            transport.close()
            raise
        finally:
            for candidate in candidates:
                candidate.close()
        self._set_state(SessionState.AUTHENTICATED)
        return transport

    def _authenticate(
        self,
        transport: paramiko.Transport,
        username: str,
        candidates: Sequence[AuthCandidate],
    ) -> None:
        allowed = self._allowed_methods(transport, username)
        for candidate in candidates:
            if transport.is_authenticated():
                break
            if candidate.method not in allowed:
                self._logger.debug(
                    "Skipping %s, server allows %s",
                    candidate.describe(),
                    ", ".join(allowed),
                )
                continue
            if not candidate.is_available():
                self._logger.debug("Skipping unavailable %s", candidate.describe())
                continue
            self._logger.debug("Trying %s", candidate.describe())
            try:
                remaining = candidate.authenticate(transport, username)
            except BadAuthenticationType as exc:
                self._logger.debug("%s not allowed: %s", candidate.describe(), exc)
                allowed = list(exc.allowed_types)
                continue
            except AuthenticationException as exc:
                self._logger.debug("%s rejected: %s", candidate.describe(), exc)
                continue
            except (SSHException, EOFError, OSError) as exc:
                raise DialError(f"connection lost during authentication: {exc}") from exc
            if remaining:
                self._logger.debug("Partial success, server requires %s", remaining)
                allowed = list(remaining)
        if not transport.is_authenticated():
            raise AuthExhaustedError(
                f"unable to authenticate as {username!r}: all methods were rejected"
            )

    def _allowed_methods(self, transport: paramiko.Transport, username: str) -> List[str]:
        try:
            transport.auth_none(username)
        except BadAuthenticationType as exc:
            return list(exc.allowed_types)
        except AuthenticationException:
            return list(ALL_METHODS)
        except (SSHException, EOFError, OSError) as exc:
            raise DialError(f"connection lost during authentication: {exc}") from exc
        return []

    # -- Interactive shell ---------------------------------------------

    def _run_shell(self, transport: paramiko.Transport) -> int:
        try:
            channel = transport.open_session()
        except (SSHException, EOFError) as exc:
            raise SessionRuntimeError(f"failed to create session: {exc}") from exc
        try:
            with self._terminal.raw():
                self._negotiate_pty(channel)
                with self._terminal.watch_resize(lambda: self._forward_resize(channel)):
                    try:
                        channel.invoke_shell()
                    except SSHException as exc:
                        raise SessionRuntimeError(f"failed to start shell: {exc}") from exc
                    self._set_state(SessionState.SHELL_RUNNING)
                    try:
                        self._pump(channel, self._terminal)
                        status = channel.recv_exit_status()
                    except (SSHException, OSError) as exc:
                        raise SessionRuntimeError(f"session failed: {exc}") from exc
        finally:
            channel.close()
        self._logger.debug("Remote shell exited with status %d", status)
        return status

    def _negotiate_pty(self, channel: paramiko.Channel) -> None:
        size = self._terminal.size()
        width, height = size if size is not None else self.settings.fallback_size
        term = self._environ.get("TERM") or self.settings.default_term
        self._logger.debug("Requesting PTY %s %dx%d", term, width, height)
        try:
            self._request_pty(channel, term, width, height, self.terminal_modes())
        except (SSHException, EOFError, OSError) as exc:
            raise PTYError(f"failed to request PTY: {exc}") from exc
        self._set_state(SessionState.PTY_REQUESTED)

    def _forward_resize(self, channel: paramiko.Channel) -> None:
        size = self._terminal.size()
        if size is None:
            return
        width, height = size
        channel.resize_pty(width=width, height=height)


__all__ = [
    "ECHO",
    "SessionManager",
    "SessionOutcome",
    "SessionState",
    "TTY_OP_ISPEED",
    "TTY_OP_OSPEED",
    "encode_terminal_modes",
    "open_transport",
    "pump_channel",
    "request_pty",
]
