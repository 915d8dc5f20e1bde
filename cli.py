#!/usr/bin/env python3
"""
XZip client CLI.

Commands:
  xzip compress <source> <target.zip>
  xzip extract <source.zip> <target-dir>
  xzip history [--limit N]

Every archive command is gated on license authorization: the key in
~/.xzip/key is sent to the license server first and nothing is read or
written unless the server accepts it.

Exit Codes:
  0: Success
  1: Configuration or authorization failure (no archive work attempted)
  2: Archive failure
"""

import argparse
import asyncio
import getpass
import logging
import sys
from typing import Optional

import archive
from config import Settings, settings as default_settings
from database import HistoryStore
from errors import ArchiveError, AuthorizationError, KeyFileError
from license_client import LicenseClient, init_key_file

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_AUTH = 1
EXIT_ARCHIVE = 2


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xzip",
        description="License-gated ZIP archiver",
    )
    parser.add_argument("--version", action="version", version=f"xzip {settings.APP_VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    compress_parser = subparsers.add_parser("compress", help="Compress a file or directory")
    compress_parser.add_argument("source", help="File or directory to compress")
    compress_parser.add_argument("target", help="ZIP file to create")

    extract_parser = subparsers.add_parser("extract", help="Extract a ZIP archive")
    extract_parser.add_argument("source", help="ZIP file to extract")
    extract_parser.add_argument("target", help="Directory to extract into")

    history_parser = subparsers.add_parser("history", help="Show recent authorization attempts")
    history_parser.add_argument("--limit", type=int, default=20)

    return parser


def ask_yes_no(prompt: str) -> bool:
    return input(prompt).strip().lower() == "y"


def ask_password(question: str) -> Optional[str]:
    """Ask whether a password applies, then read it without echo."""
    if not ask_yes_no(question):
        return None
    return getpass.getpass("Password: ")


def open_history(settings: Settings) -> Optional[HistoryStore]:
    if not settings.HISTORY_ENABLED:
        return None
    return HistoryStore(settings.HISTORY_DATABASE_URL)


def check_license(settings: Settings, history: Optional[HistoryStore]) -> None:
    """Raise KeyFileError or AuthorizationError unless the server accepts our key."""
    init_key_file(settings.KEY_FILE)
    client = LicenseClient(settings, history=history)
    asyncio.run(client.check())


def cmd_history(args, history: Optional[HistoryStore]) -> int:
    if history is None:
        print("Authorization history is disabled (HISTORY_ENABLED=false)")
        return EXIT_OK

    attempts = history.recent(args.limit)
    if not attempts:
        print("No authorization attempts recorded")
        return EXIT_OK

    for attempt in attempts:
        line = f"{attempt.attempted_at:%Y-%m-%d %H:%M:%S}  {attempt.result:<8} {attempt.key_prefix}"
        if attempt.error_message:
            line += f"  {attempt.error_message}"
        print(line)
    return EXIT_OK


def cmd_compress(args, settings: Settings) -> int:
    password = None
    if settings.PASSWORD_SUPPORT:
        try:
            password = ask_password("Password protect? (y/n): ")
        except (EOFError, KeyboardInterrupt):
            print("\n❌ Password input failed")
            return EXIT_ARCHIVE

    print(f"Compressing {args.source} to {args.target}")
    try:
        archive.compress(args.source, args.target, password=password)
    except ArchiveError as e:
        print(f"❌ Compression failed: {e}")
        return EXIT_ARCHIVE

    print(f"✅ Compression complete: {args.target}")
    return EXIT_OK


def cmd_extract(args, settings: Settings) -> int:
    password = None
    if settings.PASSWORD_SUPPORT:
        try:
            password = ask_password("Is the archive password protected? (y/n): ")
        except (EOFError, KeyboardInterrupt):
            print("\n❌ Password input failed")
            return EXIT_ARCHIVE

    print(f"Extracting {args.source} to {args.target}")
    try:
        archive.extract(args.source, args.target, password=password)
    except ArchiveError as e:
        print(f"❌ Extraction failed: {e}")
        return EXIT_ARCHIVE

    print(f"✅ Extraction complete: {args.target}")
    return EXIT_OK


def main(argv=None, settings: Settings = default_settings) -> int:
    parser = build_parser(settings)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    print(f"XZip archiver v{settings.APP_VERSION}")
    print("=================================")

    history = open_history(settings)

    if args.command == "history":
        return cmd_history(args, history)

    try:
        check_license(settings, history)
    except KeyFileError as e:
        print(f"❌ Initialization failed: {e}")
        return EXIT_AUTH
    except AuthorizationError as e:
        print(f"❌ {e}")
        return EXIT_AUTH

    print("✅ License authorized")

    if args.command == "compress":
        return cmd_compress(args, settings)
    return cmd_extract(args, settings)


if __name__ == "__main__":
    sys.exit(main())
