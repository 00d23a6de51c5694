"""Command line entry point: pick a host, then open a shell on it."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Mapping, Optional

import yaml

from . import __version__
from .errors import ConfigEmptyError, ConfigIOError, HomeDirectoryError, SSHPickError
from .selector import FuzzyHostSelector
from .session import SessionManager
from .settings import Settings, load_settings
from .ssh_config import HostRecord, expand_home, parse_ssh_config, resolve_config_path

DEBUG_ENV = "SSHPICK_DEBUG"
LOG_FORMAT = "[%(levelname)s] %(message)s"

LOGGER = logging.getLogger("sshpick")


def build_parser(environ: Mapping[str, str]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sshpick",
        description="Pick a host from your SSH config and open an interactive shell",
    )
    parser.add_argument(
        "query",
        nargs="*",
        help="Initial filter for the host picker (words are joined by spaces)",
    )
    parser.add_argument(
        "-F",
        "--config",
        default=None,
        help="SSH client configuration file (default: ~/.ssh/config)",
    )
    parser.add_argument(
        "--settings",
        default=None,
        help="YAML settings file merged over the packaged defaults",
    )
    parser.add_argument(
        "--log-level",
        default="DEBUG" if environ.get(DEBUG_ENV) else "WARNING",
        help=f"Logging verbosity (DEBUG, INFO, WARNING, ERROR); ${DEBUG_ENV} selects DEBUG",
    )
    parser.add_argument(
        "--version", action="version", version=f"sshpick {__version__}"
    )
    return parser


def load_hosts(config: Optional[str], settings: Settings) -> List[HostRecord]:
    """Parse the configured SSH config and require at least one host."""
    if config:
        path = Path(expand_home(config))
    else:
        path = resolve_config_path(settings.ssh_config)
    hosts = parse_ssh_config(path)
    LOGGER.debug("Loaded %d SSH hosts from %s", len(hosts), path)
    if not hosts:
        raise ConfigEmptyError("No SSH hosts found in config")
    return hosts


def main(argv: Optional[list[str]] = None) -> int:
    environ = os.environ
    parser = build_parser(environ)
    args = parser.parse_args(argv)

    numeric_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, stream=sys.stderr)

    try:
        settings = load_settings(
            Path(args.settings) if args.settings else None, environ=environ
        )
    except (OSError, ValueError, yaml.YAMLError) as exc:
        LOGGER.error("Error loading settings: %s", exc)
        return 1

    try:
        hosts = load_hosts(args.config, settings)
    except HomeDirectoryError:
        LOGGER.error("Error: cannot find home directory")
        return 1
    except ConfigIOError as exc:
        LOGGER.error("Error parsing SSH config: %s", exc)
        return 1
    except ConfigEmptyError as exc:
        LOGGER.error("%s", exc)
        return 1

    selector = FuzzyHostSelector(settings, logger=LOGGER)
    index = selector.select(
        [host.display() for host in hosts],
        [host.preview() for host in hosts],
        " ".join(args.query),
    )
    if index is None:
        return 0

    host = hosts[index]
    print(f"Connecting to {host.name}...")
    session = SessionManager(settings, logger=LOGGER, environ=environ)
    try:
        status = session.run(host)
    except SSHPickError as exc:
        LOGGER.error("SSH error: %s", exc)
        return 1
    except KeyboardInterrupt:
        LOGGER.error("Interrupted")
        return 1
    if status != 0:
        LOGGER.error("SSH error: remote shell exited with status %d", status)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
