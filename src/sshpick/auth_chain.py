"""Ordered credential candidates tried while authenticating a session."""

from __future__ import annotations

import getpass
import logging
import os
import socket
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

import paramiko
from paramiko.ssh_exception import (
    AuthenticationException,
    PasswordRequiredException,
    SSHException,
)

from .errors import HomeDirectoryError
from .ssh_config import HostRecord, resolve_home

LOGGER = logging.getLogger(__name__)

DEFAULT_KEY_NAMES = ("id_ed25519", "id_rsa", "id_ecdsa", "id_dsa")

# DSSKey is gone from recent paramiko releases; DSA files are then simply
# reported as unparseable.
_KEY_CLASSES = tuple(
    key_class
    for key_class in (
        getattr(paramiko, name, None)
        for name in ("Ed25519Key", "RSAKey", "ECDSAKey", "DSSKey")
    )
    if key_class is not None
)

KeyLoader = Callable[..., paramiko.PKey]


def load_private_key(path: str, passphrase: Optional[str] = None) -> paramiko.PKey:
    """Load *path* with whichever key type parses it.

    Raises ``PasswordRequiredException`` when the file is encrypted and no
    passphrase was given, ``SSHException`` when nothing can parse it and
    ``OSError`` when it cannot be read.
    """
    needs_passphrase = False
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key_file(path, password=passphrase)
        except PasswordRequiredException:
            needs_passphrase = True
        except (SSHException, ValueError):
            continue
    if needs_passphrase:
        raise PasswordRequiredException(f"private key file is encrypted: {path}")
    raise SSHException(f"not a usable private key: {path}")


def default_key_paths(ssh_dir: str) -> List[str]:
    return [os.path.join(ssh_dir, name) for name in DEFAULT_KEY_NAMES]


class TerminalPrompter:
    """Reads credentials from the controlling terminal."""

    def secret(self, prompt: str) -> str:
        return getpass.getpass(prompt)

    def visible(self, prompt: str) -> str:
        return input(prompt).strip()

    def notice(self, text: str) -> None:
        print(text)


class AuthCandidate:
    """One credential strategy: a lazy availability check plus an attempt.

    ``authenticate`` returns the list of methods the server still requires
    (empty once fully authenticated) and raises paramiko's
    ``AuthenticationException`` when the server rejects the credential.
    """

    kind = "candidate"
    method = ""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or LOGGER
        self._available: Optional[bool] = None

    def is_available(self) -> bool:
        if self._available is None:
            self._available = self._probe()
        return self._available

    def authenticate(self, transport: paramiko.Transport, username: str) -> List[str]:
        raise NotImplementedError

    def close(self) -> None:
        return None

    def describe(self) -> str:
        return self.kind

    def _probe(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.describe()}>"


class _KeyFileCandidate(AuthCandidate):
    method = "publickey"

    def __init__(
        self,
        path: str,
        *,
        key_loader: KeyLoader,
        prompter: TerminalPrompter,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(logger)
        self.path = path
        self._key_loader = key_loader
        self._prompter = prompter
        self._key: Optional[paramiko.PKey] = None

    def describe(self) -> str:
        return f"{self.kind}({self.path})"

    def _probe(self) -> bool:
        if not os.path.isfile(self.path):
            self._logger.debug("Key file not found: %s", self.path)
            return False
        try:
            self._key = self._key_loader(self.path)
        except PasswordRequiredException:
            self._key = self._load_with_passphrase()
        except (OSError, SSHException) as exc:
            self._logger.debug("Failed to load key %s: %s", self.path, exc)
        return self._key is not None

    def _load_with_passphrase(self) -> Optional[paramiko.PKey]:
        try:
            passphrase = self._prompter.secret(
                f"Enter passphrase for key '{self.path}': "
            )
        except EOFError:
            self._logger.debug("No passphrase entered for %s", self.path)
            return None
        try:
            return self._key_loader(self.path, passphrase)
        except (OSError, SSHException) as exc:
            self._logger.debug("Failed to decrypt key %s: %s", self.path, exc)
            return None

    def authenticate(self, transport: paramiko.Transport, username: str) -> List[str]:
        assert self._key is not None
        return transport.auth_publickey(username, self._key)


class IdentityFileCandidate(_KeyFileCandidate):
    kind = "identity-file"


class DefaultKeyCandidate(_KeyFileCandidate):
    kind = "default-key"


class AgentCandidate(AuthCandidate):
    kind = "agent"
    method = "publickey"

    def __init__(
        self,
        socket_path: Optional[str],
        *,
        agent_factory: Callable[[], paramiko.Agent] = paramiko.Agent,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(logger)
        self.socket_path = socket_path
        self._agent_factory = agent_factory
        self._agent: Optional[paramiko.Agent] = None
        self._keys: Tuple[paramiko.AgentKey, ...] = ()

    def describe(self) -> str:
        return f"{self.kind}({self.socket_path or '-'})"

    def _probe(self) -> bool:
        if not self.socket_path:
            self._logger.debug("SSH_AUTH_SOCK is not set")
            return False
        probe = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            probe.connect(self.socket_path)
        except OSError as exc:
            self._logger.debug("Cannot reach agent at %s: %s", self.socket_path, exc)
            return False
        finally:
            probe.close()
        try:
            self._agent = self._agent_factory()
            self._keys = tuple(self._agent.get_keys())
        except SSHException as exc:
            self._logger.debug("Agent query failed: %s", exc)
            return False
        if not self._keys:
            self._logger.debug("Agent at %s offers no keys", self.socket_path)
            return False
        return True

    def authenticate(self, transport: paramiko.Transport, username: str) -> List[str]:
        for key in self._keys:
            try:
                return transport.auth_publickey(username, key)
            except AuthenticationException as exc:
                self._logger.debug(
                    "Agent key %s rejected: %s", key.get_name(), exc
                )
        raise AuthenticationException("no agent key was accepted")

    def close(self) -> None:
        if self._agent is not None:
            self._agent.close()
            self._agent = None


class PasswordCandidate(AuthCandidate):
    kind = "password"
    method = "password"

    def __init__(
        self, *, prompter: TerminalPrompter, logger: Optional[logging.Logger] = None
    ) -> None:
        super().__init__(logger)
        self._prompter = prompter

    def authenticate(self, transport: paramiko.Transport, username: str) -> List[str]:
        password = self._prompter.secret("Password: ")
        return transport.auth_password(username, password)


class KeyboardInteractiveCandidate(AuthCandidate):
    kind = "keyboard-interactive"
    method = "keyboard-interactive"

    def __init__(
        self, *, prompter: TerminalPrompter, logger: Optional[logging.Logger] = None
    ) -> None:
        super().__init__(logger)
        self._prompter = prompter

    def respond(
        self, title: str, instructions: str, prompt_list: Sequence[Tuple[str, bool]]
    ) -> List[str]:
        if instructions:
            self._prompter.notice(instructions)
        answers = []
        for question, echo in prompt_list:
            if echo:
                answers.append(self._prompter.visible(question))
            else:
                answers.append(self._prompter.secret(question))
        return answers

    def authenticate(self, transport: paramiko.Transport, username: str) -> List[str]:
        return transport.auth_interactive(username, self.respond)


class AuthChainBuilder:
    """Builds the fixed-priority candidate list for one host.

    An explicit ``IdentityFile`` suppresses agent and default-key probing.
    Password and keyboard-interactive candidates are always appended.
    """

    def __init__(
        self,
        *,
        prompter: Optional[TerminalPrompter] = None,
        logger: Optional[logging.Logger] = None,
        environ: Optional[Mapping[str, str]] = None,
        key_loader: KeyLoader = load_private_key,
        agent_factory: Callable[[], paramiko.Agent] = paramiko.Agent,
        ssh_dir: Optional[str] = None,
    ) -> None:
        self._prompter = prompter or TerminalPrompter()
        self._logger = logger or LOGGER
        self._environ = os.environ if environ is None else environ
        self._key_loader = key_loader
        self._agent_factory = agent_factory
        self._ssh_dir = ssh_dir

    def build(self, host: HostRecord) -> List[AuthCandidate]:
        candidates: List[AuthCandidate] = []
        if host.identity_file:
            candidates.append(
                IdentityFileCandidate(
                    host.identity_file,
                    key_loader=self._key_loader,
                    prompter=self._prompter,
                    logger=self._logger,
                )
            )
        else:
            candidates.append(
                AgentCandidate(
                    self._environ.get("SSH_AUTH_SOCK") or None,
                    agent_factory=self._agent_factory,
                    logger=self._logger,
                )
            )
            for path in self._default_key_paths():
                candidates.append(
                    DefaultKeyCandidate(
                        path,
                        key_loader=self._key_loader,
                        prompter=self._prompter,
                        logger=self._logger,
                    )
                )
        candidates.append(PasswordCandidate(prompter=self._prompter, logger=self._logger))
        candidates.append(
            KeyboardInteractiveCandidate(prompter=self._prompter, logger=self._logger)
        )
        self._logger.debug(
            "Auth chain for %s: %s",
            host.name,
            ", ".join(candidate.describe() for candidate in candidates),
        )
        return candidates

    def _default_key_paths(self) -> List[str]:
        ssh_dir = self._ssh_dir
        if ssh_dir is None:
            try:
                ssh_dir = os.path.join(resolve_home(), ".ssh")
            except HomeDirectoryError:
                self._logger.debug("No home directory, skipping default keys")
                return []
        return default_key_paths(ssh_dir)


__all__ = [
    "AgentCandidate",
    "AuthCandidate",
    "AuthChainBuilder",
    "DEFAULT_KEY_NAMES",
    "DefaultKeyCandidate",
    "IdentityFileCandidate",
    "KeyboardInteractiveCandidate",
    "PasswordCandidate",
    "TerminalPrompter",
    "default_key_paths",
    "load_private_key",
]
