#!/usr/bin/env python3
"""Command-line access to a shared crossbar measurement store.

Backend settings come from ``CROSSBAR_*`` environment variables (see
``TrackerConfig.from_env``) and can be overridden with ``--backend``,
``--database-url``, ``--mqtt-host`` and ``--storage``.

Examples:
    crossbar_shell.py create Wafer-A --size 8
    crossbar_shell.py cycle Wafer-A 0 5 --times 3
    crossbar_shell.py export Wafer-A -o Wafer-A_export.json
    crossbar_shell.py clear Wafer-A --yes
    crossbar_shell.py watch --duration 60
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pycrossbar import (  # noqa: E402
    ConnectivityStatus,
    CrossbarError,
    CrossbarTracker,
    EntryChange,
    TrackerConfig,
)

_LOG = logging.getLogger("crossbar_shell")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--backend", choices=["local", "firebase", "mqtt"], help="Override CROSSBAR_BACKEND")
    parser.add_argument("--database-url", help="Override CROSSBAR_DATABASE_URL")
    parser.add_argument("--mqtt-host", help="Override CROSSBAR_MQTT_HOST")
    parser.add_argument("--storage", help="Override CROSSBAR_STORAGE_PATH (local backend)")
    parser.add_argument(
        "--settle",
        type=float,
        default=2.0,
        help="Seconds to wait for the initial remote snapshot (default: 2)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable DEBUG logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List entries")

    create = sub.add_parser("create", help="Create an entry")
    create.add_argument("name")
    create.add_argument("--size", type=int, default=8)

    cycle = sub.add_parser("cycle", help="Cycle the device at bottom/top electrode")
    cycle.add_argument("name")
    cycle.add_argument("bottom")
    cycle.add_argument("top")
    cycle.add_argument("--times", type=int, default=1)

    stats = sub.add_parser("stats", help="Print per-state counts")
    stats.add_argument("name")

    clear = sub.add_parser("clear", help="Reset every device to unmeasured")
    clear.add_argument("name")
    clear.add_argument("--yes", action="store_true", help="Confirm; affects everyone viewing the entry")

    delete = sub.add_parser("delete", help="Delete an entry for everyone")
    delete.add_argument("name")
    delete.add_argument("--yes", action="store_true", help="Confirm deletion")

    exp = sub.add_parser("export", help="Write the export document")
    exp.add_argument("name")
    exp.add_argument("-o", "--output", help="File to write (default: stdout)")

    imp = sub.add_parser("import", help="Import an export document")
    imp.add_argument("path")
    imp.add_argument("--overwrite", action="store_true", help="Replace an existing entry of the same name")

    watch = sub.add_parser("watch", help="Print changes as they arrive")
    watch.add_argument("--duration", type=float, default=0.0, help="Stop after N seconds (0 = until Ctrl-C)")
    return parser


def _config_from_args(args: argparse.Namespace) -> TrackerConfig:
    overrides: dict[str, Any] = {}
    if args.backend:
        overrides["backend"] = args.backend
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.storage:
        overrides["storage_path"] = args.storage
    if args.mqtt_host:
        overrides["mqtt"] = {"host": args.mqtt_host}
    return TrackerConfig.from_env(**overrides)


def _print_change(change: EntryChange) -> None:
    stamp = change.observed_at.strftime("%H:%M:%S")
    print(f"[{stamp}] {change.origin} {change.kind} {change.name}")


def _print_status(status: ConnectivityStatus) -> None:
    print(f"[status] {status.message}")


def _print_warning(message: str) -> None:
    print(f"[warning] {message}", file=sys.stderr)


async def _run(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    watching = args.command == "watch"
    tracker = CrossbarTracker(
        config,
        on_change=_print_change if watching else None,
        on_status=_print_status if watching else None,
        on_warning=_print_warning,
    )
    async with tracker:
        await asyncio.sleep(args.settle)

        if args.command == "list":
            for name in tracker.names():
                grid = tracker.get(name)
                print(f"{name} ({grid.size}x{grid.size})")
        elif args.command == "create":
            tracker.create(args.name, args.size)
            print(f"Created {args.name} ({args.size}x{args.size})")
        elif args.command == "cycle":
            for _ in range(max(1, args.times)):
                state = tracker.cycle_at(args.name, args.bottom, args.top)
            print(f"B{args.bottom} T{args.top} -> {state.label}")
        elif args.command == "stats":
            statistics = tracker.statistics(args.name)
            percentages = statistics.percentages()
            print(f"total={statistics.total}")
            for field_name in ("successful", "failed", "misaligned", "unmeasured"):
                print(f"{field_name}={getattr(statistics, field_name)} ({percentages[field_name]}%)")
        elif args.command == "clear":
            if not args.yes:
                print("Refusing to clear without --yes (this affects everyone viewing the entry).")
                return 2
            tracker.clear_all(args.name)
        elif args.command == "delete":
            if not args.yes:
                print(f"Refusing to delete {args.name!r} without --yes (this removes it for everyone).")
                return 2
            tracker.delete(args.name)
        elif args.command == "export":
            text = tracker.export_json(args.name)
            if args.output:
                Path(args.output).write_text(text, encoding="utf-8")
                print(f"Wrote {args.output}")
            else:
                print(text)
        elif args.command == "import":
            grid = tracker.import_document(Path(args.path).read_bytes(), overwrite=args.overwrite)
            print(f"Successfully imported: {grid.name}")
        elif watching:
            started = time.monotonic()
            while args.duration <= 0 or time.monotonic() - started < args.duration:
                await asyncio.sleep(0.5)

        await tracker.flush()
        _LOG.debug("Sync engine stats: %s", tracker.engine.stats())
    return 0


def _main() -> int:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130
    except CrossbarError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(_main())
