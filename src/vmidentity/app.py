"""Application entry point for the vmidentity resolver."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
import signal
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

from vmidentity import settings
from vmidentity.adapters.sqlite_contacts import SQLiteContactStore
from vmidentity.adapters.watchdog_watcher import WatchdogPathWatcher
from vmidentity.core.config import MatchingConfig, ResolverConfig, WatchConfig
from vmidentity.core.marker_watcher import MarkerFileWatcher
from vmidentity.core.models import VoicemailSnapshot
from vmidentity.core.query_service import ContactQueryService
from vmidentity.core.resolver import VoicemailIdentityResolver

NAME = "VMIDENTITY"
FONT = "tarty-1"

# Runs of at least five digits, optionally with a leading "+" and separators.
_PHONE_LIKE = re.compile(r"\+?\d[\d \-().]{3,}\d")
MIN_MASKED_DIGITS = 5


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


def mask_phone_numbers(text: str, visible_digits: int = 2) -> str:
    """Replace all but the last ``visible_digits`` digits of phone-like runs with '*'."""

    def _mask(match: re.Match) -> str:
        value = match.group(0)
        total = sum(ch.isdigit() for ch in value)
        if total < MIN_MASKED_DIGITS:
            return value
        keep_from = total - max(visible_digits, 0)
        seen = 0
        masked = []
        for ch in value:
            if ch.isdigit():
                masked.append(ch if seen >= keep_from else "*")
                seen += 1
            else:
                masked.append(ch)
        return "".join(masked)

    return _PHONE_LIKE.sub(_mask, text)


class _PhoneMaskingFormatter(logging.Formatter):
    """Masks phone numbers in the log message, leaving timestamps untouched."""

    def __init__(self, visible_digits: int, fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._visible_digits = visible_digits

    def format(self, record: logging.LogRecord) -> str:
        original_msg, original_args = record.msg, record.args
        record.msg = mask_phone_numbers(record.getMessage(), self._visible_digits)
        record.args = None
        try:
            return super().format(record)
        finally:
            record.msg, record.args = original_msg, original_args


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    redact_cfg = config.get("redact", {})
    if redact_cfg.get("enabled", False):
        formatter: logging.Formatter = _PhoneMaskingFormatter(
            int(redact_cfg.get("visible_digits", 2)), fmt=fmt, datefmt=datefmt
        )
    else:
        formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/vmidentity.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_store() -> SQLiteContactStore:
    directory = os.path.dirname(settings.DB_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)
    store = SQLiteContactStore(settings.DB_PATH)
    store.init_db()
    return store


def _watch_config() -> WatchConfig:
    return WatchConfig(directory=settings.MARKER_DIRECTORY, marker_file_name=settings.MARKER_FILE_NAME)


def build_resolver(store: SQLiteContactStore) -> VoicemailIdentityResolver:
    """Wire the resolver from settings; the caller owns its lifecycle."""

    if not settings.IDENTITY_MARKER:
        raise RuntimeError("contacts.identity_marker must not be empty")

    return VoicemailIdentityResolver(
        watcher=MarkerFileWatcher(WatchdogPathWatcher),
        query_service=ContactQueryService(store),
        watch_config=_watch_config(),
        resolver_config=ResolverConfig(
            identity_marker=settings.IDENTITY_MARKER,
            settle_on_resolve=settings.SETTLE_ON_RESOLVE,
            clear_on_marker_removed=settings.CLEAR_ON_MARKER_REMOVED,
        ),
        matching_config=MatchingConfig(
            default_region=settings.DEFAULT_REGION,
            suffix_length=settings.SUFFIX_LENGTH,
        ),
    )


def _log_snapshot(snapshot: VoicemailSnapshot) -> None:
    logger = logging.getLogger(__name__)
    if snapshot.is_resolved:
        logger.info(
            "Voicemail identity changed: contact %s, numbers %s",
            snapshot.contact_id,
            ", ".join(snapshot.phone_numbers) or "none",
        )
    else:
        logger.info("Voicemail identity cleared")


async def _serve() -> None:
    logger = logging.getLogger(__name__)
    resolver = build_resolver(_open_store())
    resolver.add_listener(_log_snapshot)

    # Explicit shutdown keeps watch release deterministic on SIGINT/SIGTERM.
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, resolver.close)
        except NotImplementedError:
            logger.debug("Signal handlers are not supported on this platform")

    resolver.initialize()
    logger.info("Watching %s for voicemail identity changes", settings.MARKER_DIRECTORY)
    try:
        await resolver.run()
    finally:
        resolver.close()


def _run() -> None:
    _print_banner()
    _configure_logging()
    logging.getLogger(__name__).info("Starting vmidentity")
    asyncio.run(_serve())


async def _check_number(number: str) -> bool:
    resolver = build_resolver(_open_store())
    runner = asyncio.create_task(resolver.run())
    resolver.initialize()
    try:
        await resolver.wait_idle()
        contact_id = resolver.current_voicemail_contact_id()
        is_voicemail = resolver.is_voicemail_number(number)
    finally:
        resolver.close()
        await runner

    print(f"Voicemail contact: {contact_id if contact_id is not None else 'none'}")
    print(f"{number} is {'a' if is_voicemail else 'not a'} voicemail number")
    return is_voicemail


def _check(number: str) -> None:
    _configure_logging()
    is_voicemail = asyncio.run(_check_number(number))
    raise SystemExit(0 if is_voicemail else 1)


def _provision(numbers: list[str], display_name: Optional[str]) -> None:
    _configure_logging()
    store = _open_store()
    contact_id = store.upsert_by_guid(settings.IDENTITY_MARKER, numbers, display_name=display_name)

    # Rewriting the marker file notifies running resolvers.
    watch_config = _watch_config()
    os.makedirs(watch_config.directory, exist_ok=True)
    with open(watch_config.marker_path, "w", encoding="utf-8") as handle:
        handle.write(f"{contact_id}\n")

    print(f"Voicemail contact {contact_id} provisioned with {len(numbers)} number(s)")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="vmidentity")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the resolver and follow marker changes")
    check_parser = subparsers.add_parser(
        "check",
        help="Resolve once and report whether a number belongs to the voicemail contact.",
    )
    check_parser.add_argument("number")
    provision_parser = subparsers.add_parser(
        "provision",
        help="Store the voicemail contact and rewrite the marker file.",
    )
    provision_parser.add_argument("numbers", nargs="+")
    provision_parser.add_argument("--name", default="Voicemail")

    args = parser.parse_args(argv)
    if args.command == "check":
        _check(args.number)
        return
    if args.command == "provision":
        _provision(args.numbers, args.name)
        return
    _run()


if __name__ == "__main__":
    main()
