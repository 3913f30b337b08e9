# Minimal CLI using argparse over a TemporalStore in a data directory.
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from temporal_kv.core.config import TemporalConfig
from temporal_kv.core.errors import TemporalKVError
from temporal_kv.core.store import TemporalStore
from temporal_kv.interfaces.store import TemporalKV


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="temporal-kv", description="Append-only key-value store with time travel"
    )
    p.add_argument(
        "--data-dir",
        type=Path,
        default=Path("./tkv-data"),
        help="Directory holding the history log and snapshot",
    )
    p.add_argument(
        "-v", "--verbose", action="count", default=0, help="Log more (-vv for debug)"
    )
    sub = p.add_subparsers(dest="command", required=True)

    upsert = sub.add_parser("upsert", help="Set a key's value, print the timestamp")
    upsert.add_argument("key")
    upsert.add_argument("value")

    get = sub.add_parser("get", help="Print a key's current value")
    get.add_argument("key")

    travel = sub.add_parser("travel", help="Print a key's value at or before a timestamp")
    travel.add_argument("key")
    travel.add_argument("timestamp", type=int)

    diff = sub.add_parser("diff", help="Print every version of a key")
    diff.add_argument("key")

    sub.add_parser("keys", help="List all keys")
    sub.add_parser("rebuild", help="Rebuild the current-state snapshot from history")
    return p


def _text(value: bytes) -> str:
    return value.decode("utf-8", errors="replace")


def run(store: TemporalKV, args: argparse.Namespace) -> int:
    if args.command == "upsert":
        print(store.upsert(args.key, args.value.encode("utf-8")))
    elif args.command == "get":
        value = store.get(args.key)
        if value is None:
            print(f"{args.key}: not found", file=sys.stderr)
            return 1
        print(_text(value))
    elif args.command == "travel":
        value = store.travel(args.key, args.timestamp)
        if value is None:
            print(f"{args.key}: not found at {args.timestamp}", file=sys.stderr)
            return 1
        print(_text(value))
    elif args.command == "diff":
        for version in store.diff(args.key):
            print(f"{version.timestamp}\t{_text(version.value)}")
    elif args.command == "keys":
        for key in store.keys():
            print(key)
    elif args.command == "rebuild":
        print(store.rebuild())
    return 0


def main(argv: list[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        with TemporalStore(TemporalConfig(data_dir=str(args.data_dir))) as store:
            return run(store, args)
    except TemporalKVError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
