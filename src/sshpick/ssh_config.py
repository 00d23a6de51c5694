"""Utilities for reading selectable SSH hosts from ~/.ssh/config."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .errors import ConfigIOError, HomeDirectoryError

DEFAULT_PORT = "22"
WILDCARD_TOKENS = ("*", "?")

_HOST_LINE = re.compile(r"^Host\s+(.+)$", re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class HostRecord:
    """A concrete ``Host`` block from the user's configuration."""

    name: str
    hostname: Optional[str] = None
    port: str = DEFAULT_PORT
    user: Optional[str] = None
    comment: Optional[str] = None
    identity_file: Optional[str] = None

    @property
    def address(self) -> str:
        return self.hostname or self.name

    def display(self) -> str:
        """Single-line label used by the host picker."""
        info = f"{self.name:<20}"
        if self.user:
            info += f" user={self.user:<10}"
        if self.hostname:
            info += f" host={self.hostname:<20}"
        if self.port and self.port != DEFAULT_PORT:
            info += f" port={self.port}"
        if self.comment:
            info += f" ({self.comment})"
        return info

    def preview(self) -> str:
        return "\n".join(
            [
                f"Name:     {self.name}",
                f"Host:     {self.hostname or ''}",
                f"User:     {self.user or ''}",
                f"Port:     {self.port}",
                f"Key:      {self.identity_file or ''}",
                f"Comment:  {self.comment or ''}",
            ]
        )


@dataclass(slots=True)
class _HostDraft:
    name: str
    hostname: Optional[str] = None
    port: str = DEFAULT_PORT
    user: Optional[str] = None
    comment: Optional[str] = None
    identity_file: Optional[str] = None

    def freeze(self) -> HostRecord:
        return HostRecord(
            name=self.name,
            hostname=self.hostname,
            port=self.port,
            user=self.user,
            comment=self.comment,
            identity_file=self.identity_file,
        )


def resolve_home() -> str:
    """Return the current user's home directory or raise ``HomeDirectoryError``."""
    try:
        home = Path.home()
    except (RuntimeError, KeyError) as exc:
        raise HomeDirectoryError("cannot find home directory") from exc
    return str(home)


def resolve_config_path(value: str = "~/.ssh/config") -> Path:
    """Turn a configured path into a ``Path``; ``~/`` needs a home directory."""
    if value.startswith("~/"):
        return Path(resolve_home()) / value[2:]
    return Path(value)


def expand_home(value: str, home: Optional[str] = None) -> str:
    """Expand a leading ``~/``; any other value is returned untouched."""
    if not value.startswith("~/"):
        return value
    if home is None:
        try:
            home = resolve_home()
        except HomeDirectoryError:
            return value
    return os.path.join(home, value[2:])


def is_wildcard(pattern: str) -> bool:
    return any(token in pattern for token in WILDCARD_TOKENS)


def parse_ssh_config(
    path: Union[str, Path], *, home: Optional[str] = None
) -> List[HostRecord]:
    """Parse *path* and return its concrete hosts in declaration order.

    Wildcard ``Host`` blocks are skipped along with their attributes. A
    ``#`` comment line attaches to the next concrete ``Host`` declaration,
    blank lines in between are allowed. Bytes that are not valid UTF-8 are
    replaced rather than rejected. Raises ``ConfigIOError`` when the
    file cannot be read.
    """

    config_path = Path(path)
    try:
        with config_path.open("r", encoding="utf-8", errors="replace") as handle:
            lines = handle.read().splitlines()
    except OSError as exc:
        raise ConfigIOError(f"cannot read {config_path}: {exc}") from exc
    return _SSHConfigParser(home=home).feed(lines)


class _SSHConfigParser:
    def __init__(self, *, home: Optional[str] = None) -> None:
        self.hosts: List[HostRecord] = []
        self._home = home
        self._current: Optional[_HostDraft] = None
        self._pending_comment: Optional[str] = None

    def feed(self, lines: List[str]) -> List[HostRecord]:
        for raw_line in lines:
            line = raw_line.strip()
            if line.startswith("#"):
                self._pending_comment = line[1:].strip()
                continue
            if not line:
                continue
            match = _HOST_LINE.match(line)
            if match:
                self._open(match.group(1).strip())
                continue
            if self._current is None:
                continue
            pair = _split_option(line)
            if pair is not None:
                self._apply(*pair)
        self._close()
        return self.hosts

    def _open(self, pattern: str) -> None:
        self._close()
        comment, self._pending_comment = self._pending_comment, None
        if is_wildcard(pattern):
            return
        self._current = _HostDraft(name=pattern, comment=comment or None)

    def _close(self) -> None:
        if self._current is not None:
            self.hosts.append(self._current.freeze())
            self._current = None

    def _apply(self, keyword: str, value: str) -> None:
        assert self._current is not None
        if keyword == "hostname":
            self._current.hostname = value
        elif keyword == "port":
            self._current.port = value
        elif keyword == "user":
            self._current.user = value
        elif keyword == "identityfile":
            self._current.identity_file = expand_home(value, self._home)


def _split_option(line: str) -> Optional[tuple[str, str]]:
    if "=" in line:
        key, value = line.split("=", 1)
    else:
        for separator in (" ", "\t"):
            if separator in line:
                key, value = line.split(separator, 1)
                break
        else:
            return None
    return key.strip().lower(), value.strip()


__all__ = [
    "DEFAULT_PORT",
    "HostRecord",
    "expand_home",
    "is_wildcard",
    "parse_ssh_config",
    "resolve_config_path",
    "resolve_home",
]
