"""
VaultSandbox client CLI.

Manual checks against a live gateway. Connection settings come from a YAML
file (`--config`) or from the `VAULTSANDBOX_*` environment variables.

Usage::

    python -m vaultsandbox server-info
    python -m vaultsandbox check-key
    python -m vaultsandbox wait --subject "Reset" --timeout 60
    python -m vaultsandbox watch --strategy polling
    python -m vaultsandbox delete-all

Commands:
    server-info   Print the gateway's algorithms and limits
    check-key     Check that the API key is accepted
    wait          Create an inbox and wait for one matching email
    watch         Create an inbox and print every email until interrupted
    delete-all    Delete every inbox owned by the API key
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import re
import sys
from pathlib import Path

from vaultsandbox.client import VaultSandboxClient
from vaultsandbox.config import ClientConfig
from vaultsandbox.delivery import WaitOptions
from vaultsandbox.email import Email
from vaultsandbox.errors import StreamError, VaultSandboxError

logger = logging.getLogger(__name__)


class ColoredFormatter(logging.Formatter):
    """Logging formatter with ANSI colors for better readability."""

    # ANSI color codes
    GREY = "\x1b[38;5;244m"
    BLUE = "\x1b[38;5;39m"
    GREEN = "\x1b[38;5;40m"
    YELLOW = "\x1b[38;5;220m"
    RED = "\x1b[38;5;196m"
    BOLD_RED = "\x1b[38;5;196;1m"
    CYAN = "\x1b[38;5;51m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors."""
        color = self.LEVEL_COLORS.get(record.levelno, self.RESET)
        timestamp = self.formatTime(record, self.datefmt)
        levelname = f"{color}{record.levelname:8}{self.RESET}"
        name = f"{self.BLUE}{record.name}{self.RESET}"
        return f"{self.CYAN}{timestamp}{self.RESET} {levelname} {name}: {record.getMessage()}"


def setup_logging(verbose: bool = False, no_color: bool = False) -> None:
    """Configure the root logger with optional colors."""
    level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    handler.setLevel(level)
    if no_color:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = ColoredFormatter(datefmt="%Y-%m-%d %H:%M:%S")
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    # httpx logs every request at INFO.
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def load_config(path: Path | None, strategy: str | None) -> ClientConfig:
    """Load settings from a YAML file or the environment, then apply CLI overrides."""
    config = ClientConfig.from_yaml_file(path) if path is not None else ClientConfig.from_env()
    if strategy is not None:
        config = config.copy(strategy=strategy)
    return config


def describe(email: Email) -> str:
    """One-line summary of an email."""
    recipients = ", ".join(email.to)
    return f"[{email.received_at:%H:%M:%S}] {email.from_address} -> {recipients}: {email.subject}"


def _matcher(value: str | None, regex: bool) -> str | re.Pattern[str] | None:
    if value is None:
        return None
    return re.compile(value) if regex else value


async def cmd_server_info(client: VaultSandboxClient, args: argparse.Namespace) -> int:
    info = await client.get_server_info()
    print(f"algorithms:      {info.algs.ciphersuite}")
    print(f"context:         {info.context}")
    print(f"default ttl:     {info.default_ttl}s (max {info.max_ttl}s)")
    print(f"allowed domains: {', '.join(info.allowed_domains) or '-'}")
    return 0


async def cmd_check_key(client: VaultSandboxClient, args: argparse.Namespace) -> int:
    ok = await client.check_key()
    print("API key accepted" if ok else "API key rejected")
    return 0 if ok else 1


async def cmd_wait(client: VaultSandboxClient, args: argparse.Namespace) -> int:
    inbox = await client.create_inbox(ttl=args.ttl)
    print(f"Send an email to {inbox.email_address}")
    try:
        email = await inbox.wait_for_email(
            WaitOptions(
                timeout_ms=int(args.timeout * 1000),
                subject=_matcher(args.subject, args.regex),
                from_address=_matcher(args.sender, args.regex),
            )
        )
        print(describe(email))
        if email.text:
            print()
            print(email.text)
    finally:
        if not args.keep:
            await inbox.delete()
    return 0


async def cmd_watch(client: VaultSandboxClient, args: argparse.Namespace) -> int:
    inbox = await client.create_inbox(ttl=args.ttl)
    print(f"Watching {inbox.email_address} (Ctrl-C to stop)")

    subscription = inbox.on_new_email(lambda email: print(describe(email), flush=True))
    try:
        # Runs until interrupted.
        await asyncio.Event().wait()
    finally:
        subscription.unsubscribe()
        if not args.keep:
            await inbox.delete()
    return 0


async def cmd_delete_all(client: VaultSandboxClient, args: argparse.Namespace) -> int:
    deleted = await client.delete_all_inboxes()
    print(f"Deleted {deleted} inbox(es)")
    return 0


COMMANDS = {
    "server-info": cmd_server_info,
    "check-key": cmd_check_key,
    "wait": cmd_wait,
    "watch": cmd_watch,
    "delete-all": cmd_delete_all,
}


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config, args.strategy)
    logger.debug("Connecting to %s with key %s", config.url, config.redacted_api_key)

    def on_stream_error(error: StreamError) -> None:
        logger.error("Event stream lost: %s", error)

    async with VaultSandboxClient(config, on_stream_error=on_stream_error) as client:
        return await COMMANDS[args.command](client, args)


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="VaultSandbox client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("command", choices=sorted(COMMANDS), help="Command to run")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a YAML config file (default: VAULTSANDBOX_* environment variables)",
    )
    parser.add_argument(
        "--strategy",
        choices=["sse", "polling", "auto"],
        default=None,
        help="Override the delivery strategy",
    )
    parser.add_argument("--ttl", type=int, default=None, help="Inbox lifetime in seconds")
    parser.add_argument("--timeout", type=float, default=30.0, help="Wait timeout in seconds")
    parser.add_argument("--subject", default=None, help="Subject filter for `wait`")
    parser.add_argument("--from", dest="sender", default=None, help="Sender filter for `wait`")
    parser.add_argument(
        "--regex",
        action="store_true",
        help="Treat --subject and --from as regular expressions",
    )
    parser.add_argument(
        "--keep",
        action="store_true",
        help="Keep the inbox instead of deleting it on exit",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored logging output",
    )

    args = parser.parse_args()

    setup_logging(args.verbose, args.no_color)

    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        code = 130
    except VaultSandboxError as e:
        logger.error("%s", e)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
