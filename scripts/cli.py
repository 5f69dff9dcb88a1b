"""CLI entry point: run one fetchses pass, typically from cron or a systemd timer."""

from __future__ import annotations

import argparse
import logging
import socket
import sys
from logging.handlers import SysLogHandler
from pathlib import Path

from pydantic import ValidationError

from fetchses.config.settings import FetchSesSettings
from fetchses.core.exceptions import ConfigurationError
from fetchses.core.models import PassSummary
from fetchses.pipeline.fetcher import MailFetcher

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_SETUP_FAILED = 2
EXIT_MESSAGES_FAILED = 3
EXIT_INTERRUPTED = 130


def syslog_address(address: str) -> str | tuple[str, int]:
    """Return a SysLogHandler address: a socket path or a (host, port) pair."""
    if address.startswith("/") or ":" not in address:
        return address
    host, _, port = address.rpartition(":")
    return host, int(port)


def setup_logging(settings: FetchSesSettings, *, force_console: bool = False) -> logging.Logger:
    """Configure console or syslog logging and return the pass logger."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if settings.log_console or force_console:
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        socktype = socket.SOCK_STREAM if settings.syslog_socktype == "tcp" else socket.SOCK_DGRAM
        handler = SysLogHandler(
            address=syslog_address(settings.syslog_address),
            facility=SysLogHandler.LOG_MAIL,
            socktype=socktype,
        )
        handler.ident = "fetchses: "
        logging.basicConfig(level=level, format="%(message)s", handlers=[handler])
    return logging.getLogger("fetchses")


def _validate_config_path(path: Path) -> None:
    """Reject a --config path that is missing or not a regular file."""
    if not path.exists():
        print(f"Error: config file {path} does not exist", file=sys.stderr)
        sys.exit(EXIT_USAGE)
    if not path.is_file():
        print(f"Error: '{path}' is not a normal file", file=sys.stderr)
        sys.exit(EXIT_USAGE)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="fetchses - Deliver SES mail from an encrypted S3 bucket to a local MTA"
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="Path to an env file with FETCHSES_* settings (default: .env)",
    )
    parser.add_argument(
        "--key",
        "-k",
        default=None,
        help="Process only this S3 object key instead of the whole new-mail prefix",
    )
    parser.add_argument(
        "--console",
        action="store_true",
        help="Log to the console even when syslog is configured",
    )
    return parser


def exit_code_for(summary: PassSummary) -> int:
    if summary.setup_error:
        return EXIT_SETUP_FAILED
    if not summary.ok:
        return EXIT_MESSAGES_FAILED
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        if args.config is not None:
            _validate_config_path(args.config)
            settings = FetchSesSettings(_env_file=args.config)
        else:
            settings = FetchSesSettings()
    except ValidationError as e:
        print(f"Error: invalid settings: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE)

    try:
        logger = setup_logging(settings, force_console=args.console)
    except OSError as e:
        print(f"Error: cannot open syslog at {settings.syslog_address}: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE)

    try:
        fetcher = MailFetcher(settings=settings, logger=logger)
        summary = fetcher.run(key=args.key)
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(EXIT_USAGE)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        logger.error("pass aborted: %s", e)
        sys.exit(EXIT_SETUP_FAILED)

    sys.exit(exit_code_for(summary))


if __name__ == "__main__":
    main()
