#!/usr/bin/env python3
"""
CLI tool for checking a lookout setup.

Usage:
    lookout send-test-event --dsn https://public@ingest.example.com/42
    lookout parse-rate-limits "60:transaction, 2700:default;error"
    lookout decode-envelope captured.envelope
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from colorama import Fore, Style, just_fix_windows_console

from .config import ClientConfig, DeliveryMode
from .envelope import Envelope
from .errors import ConfigError, DsnError, EncodeError, MalformedHeaderEntry
from .governance.rate_limiter import GLOBAL, parse_entry
from .pipeline import EventPipeline


def colorize(text: str, color: str) -> str:
    return f"{color}{text}{Style.RESET_ALL}"


def print_json(data: Any, indent: int = 2) -> None:
    print(json.dumps(data, indent=indent, default=str, ensure_ascii=False))


def cmd_send_test_event(args) -> int:
    """Send one message event synchronously and report the outcome."""
    try:
        config = ClientConfig(delivery=DeliveryMode.SYNC)
        if args.dsn:
            config.dsn = args.dsn
        config.transport.timeout = args.timeout
        pipeline = EventPipeline(config=config)
    except (ConfigError, DsnError) as e:
        print(colorize(f"Invalid configuration: {e}", Fore.RED), file=sys.stderr)
        return 1

    if not pipeline.enabled:
        print(colorize("No DSN given (use --dsn or LOOKOUT_DSN)", Fore.RED), file=sys.stderr)
        return 1

    with pipeline:
        print(colorize("Endpoint:", Style.BRIGHT), pipeline.transport.dsn.envelope_url)
        result = pipeline.capture_message(args.message, level="info")

    color = Fore.GREEN if result.ok else Fore.RED
    print(colorize("Result:", Style.BRIGHT), colorize(str(result), color))
    return 0 if result.ok else 1


def cmd_parse_rate_limits(args) -> int:
    """Show how a rate-limit header is interpreted, entry by entry."""
    malformed = 0
    for entry in args.header.split(","):
        entry = entry.strip()
        if not entry:
            continue
        try:
            limits = parse_entry(entry)
        except MalformedHeaderEntry as e:
            malformed += 1
            print(f"{colorize('skip', Fore.RED)}  {entry!r}: {e.reason}")
            continue

        for category, seconds in limits:
            label = colorize(category, Fore.MAGENTA if category == GLOBAL else Fore.CYAN)
            print(f"{colorize('ok', Fore.GREEN)}    {label} for {seconds}s")

    if malformed:
        print(colorize(f"\n{malformed} malformed entr{'y' if malformed == 1 else 'ies'} ignored", Style.DIM))
    return 0


def cmd_decode_envelope(args) -> int:
    """Decode an envelope file ("-" for stdin) and print its contents."""
    if args.file == "-":
        data = sys.stdin.buffer.read()
    else:
        with open(args.file, "rb") as f:
            data = f.read()

    try:
        envelope = Envelope.decode(data)
    except EncodeError as e:
        print(colorize(f"Invalid envelope: {e}", Fore.RED), file=sys.stderr)
        return 1

    print(colorize("Envelope header:", Style.BRIGHT))
    print_json(envelope.headers)

    for index, item in enumerate(envelope.items):
        print(colorize(f"\nItem {index}: {item.type}", Style.BRIGHT),
              colorize(f"(category {item.category}, {len(item.payload)} bytes)", Style.DIM))
        print_json(item.headers)
        if item.type == "attachment":
            continue
        try:
            print_json(item.json())
        except EncodeError:
            print(colorize("(payload is not JSON)", Fore.YELLOW))
    return 0


def main(argv: list[str] | None = None) -> int:
    just_fix_windows_console()

    parser = argparse.ArgumentParser(
        prog="lookout",
        description="CLI tool for the lookout reporting client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show client debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # send-test-event command
    send_parser = subparsers.add_parser("send-test-event", help="Send a test message event")
    send_parser.add_argument("--dsn", help="DSN to send to (default: LOOKOUT_DSN)")
    send_parser.add_argument("--message", default="lookout test event", help="Event message")
    send_parser.add_argument("--timeout", type=float, default=5.0, help="Per-attempt timeout (seconds)")

    # parse-rate-limits command
    limits_parser = subparsers.add_parser("parse-rate-limits", help="Explain a rate-limit header")
    limits_parser.add_argument("header", help="X-Sentry-Rate-Limits header value")

    # decode-envelope command
    decode_parser = subparsers.add_parser("decode-envelope", help="Print the contents of an envelope")
    decode_parser.add_argument("file", help="Envelope file, or - for stdin")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "send-test-event":
        return cmd_send_test_event(args)
    elif args.command == "parse-rate-limits":
        return cmd_parse_rate_limits(args)
    elif args.command == "decode-envelope":
        return cmd_decode_envelope(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
