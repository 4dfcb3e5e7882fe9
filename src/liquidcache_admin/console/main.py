#!/usr/bin/env python3
"""Command-line front end for the LiquidCache admin console.

Usage:
    liquidcache-admin watch --stream overview --stream node-detail:node-1
    liquidcache-admin export --output-dir ./exports
    liquidcache-admin command evict --target node-1
"""

from __future__ import annotations

import argparse
import sys
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import List, Optional

from ..client.base import AdminCommand, CommandKind, TransportError
from ..client.http import normalize_base_url
from ..data.formatting import summarize_view
from ..data.models import StreamView
from ..data.normalization import PayloadError
from .app import AdminConsole, ConsoleMountError
from .config import Config, ConfigError

COMMAND_GRACE_SECONDS = 5.0


def build_config(args: argparse.Namespace) -> Config:
    """Load config and apply command-line overrides."""
    config = Config.load(args.config)
    if args.host:
        config.service.base_url = normalize_base_url(args.host)
    if args.timeout is not None:
        config.poll.request_timeout = args.timeout
    if args.insecure is not None:
        config.service.verify = not args.insecure
    if args.ca_bundle:
        config.service.ca_bundle = args.ca_bundle
    return config


def _print_view(view: StreamView) -> None:
    print(summarize_view(view), flush=True)


def run_watch(console: AdminConsole, streams: List[str], duration: Optional[float]) -> int:
    subscriptions = []
    try:
        for name in streams:
            subscriptions.append(console.subscribe(name, _print_view))
    except ValueError as exc:
        print(f"[watch] {exc}", file=sys.stderr)
        for sub in subscriptions:
            sub.close()
        return 2

    done = threading.Event()
    try:
        done.wait(duration)
    except KeyboardInterrupt:
        print("\n[watch] Stopping...")
    finally:
        for sub in subscriptions:
            sub.close()
    return 0


def run_export(console: AdminConsole, output_dir: Optional[str]) -> int:
    try:
        path = console.export(output_dir)
    except (TransportError, PayloadError) as exc:
        print(f"[export] Failed: {exc}", file=sys.stderr)
        return 1
    print(path)
    return 0


def run_command(console: AdminConsole, kind: str, target: Optional[str]) -> int:
    command = AdminCommand(CommandKind(kind), target)
    future = console.submit_command(command)
    try:
        notification = future.result(timeout=console.config.poll.request_timeout + COMMAND_GRACE_SECONDS)
    except FutureTimeoutError:
        print(f"[command] No outcome for {kind} command", file=sys.stderr)
        return 1
    print(f"[{notification.level.value}] {notification.message}")
    return 1 if notification.is_error else 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="LiquidCache cluster admin console",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", type=str, help="Path to config YAML file")
    parser.add_argument("--host", default=None, help="Cache service address, e.g. localhost:53703")
    parser.add_argument("--timeout", type=float, default=None, help="Request timeout in seconds")

    # TLS options
    parser.add_argument(
        "--insecure",
        action="store_true",
        default=None,
        help="Skip TLS verification",
    )
    parser.add_argument(
        "--secure",
        dest="insecure",
        action="store_false",
        help="Require TLS verification",
    )
    parser.add_argument("--ca-bundle", type=str, help="Path to a custom CA bundle")

    subparsers = parser.add_subparsers(dest="action", required=True)

    watch = subparsers.add_parser("watch", help="Print live stream views")
    watch.add_argument(
        "--stream",
        dest="streams",
        action="append",
        help=(
            "Stream to watch (overview, fragments, system-info, execution-plans, "
            "node-detail:<id>); repeatable"
        ),
    )
    watch.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")

    export = subparsers.add_parser("export", help="Export the current overview snapshot")
    export.add_argument("--output-dir", default=None, help="Directory for the export file")

    command = subparsers.add_parser("command", help="Submit an administrative command")
    command.add_argument("kind", choices=[k.value for k in CommandKind])
    command.add_argument("--target", default=None, help="Node, fragment or query id")
    command.add_argument(
        "--path",
        dest="target",
        help="Output directory on the service host (stop_trace, cache_stats; default /tmp)",
    )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the liquidcache-admin command."""
    args = parse_args(argv)
    try:
        config = build_config(args)
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        return 2

    console = AdminConsole(config)
    try:
        console.mount()
    except ConsoleMountError as exc:
        print(exc, file=sys.stderr)
        return 2

    try:
        if args.action == "watch":
            return run_watch(console, args.streams or ["overview"], args.duration)
        if args.action == "export":
            return run_export(console, args.output_dir)
        return run_command(console, args.kind, args.target)
    finally:
        console.unmount()


if __name__ == "__main__":
    sys.exit(main())
