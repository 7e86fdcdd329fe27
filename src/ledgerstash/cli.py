#!/usr/bin/env python3

import argparse
import logging
import sys
import os
import json
import sqlite3

import yaml

from .errors import StashError
from .stash import create_stash


def setup_logging(debug: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if debug else logging.INFO

    filename = "ledgerstash_debug.log" if debug else None

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        filename=filename,
        filemode='w'
    )

    if debug:
        print(f"Debug logging enabled. Writing to {filename}...", file=sys.stderr)


# ---------------------------------------------------------------------------

def open_stash(args, **kwargs):
    """Create the stash for a command; None (after printing why) if that fails."""
    try:
        return create_stash(config_path=args.config, db_path=args.db, **kwargs)
    except (StashError, ValueError, TypeError, OSError, sqlite3.Error, yaml.YAMLError) as e:
        print(f"Error: could not open stash: {e}", file=sys.stderr)
        return None


def cmd_save(args) -> int:
    """Handle save command."""
    if args.string is None and args.file is None:
        print("Error: pass a FILE or --string TEXT", file=sys.stderr)
        return 1

    datatype = "string" if args.string is not None else "file"
    data = args.string if args.string is not None else args.file

    if datatype == "file" and not os.path.exists(data):
        print(f"Error: File '{data}' not found", file=sys.stderr)
        return 1

    stash = open_stash(args, datatype=datatype, seed=args.seed)
    if stash is None:
        return 1
    try:
        entry_hash = stash.save(data, secret=args.secret)
        status = stash.get_status()["last_save"] or {}
    except (StashError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        stash.close()

    print(entry_hash)
    logging.getLogger(__name__).info(
        "Saved %d chunks (%d retries)",
        status.get("total_chunks", 0),
        status.get("chunks_retried", 0),
    )
    return 0


def cmd_load(args) -> int:
    """Handle load command."""
    datatype = "string" if args.string else "file"

    stash = open_stash(args, datatype=datatype)
    if stash is None:
        return 1
    try:
        data = stash.load(args.entry_hash, secret=args.secret)
    except (StashError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        stash.close()

    if args.out:
        if isinstance(data, str):
            data = data.encode("utf-8")
        with open(args.out, "wb") as f:
            f.write(data)
        print(f"Wrote {len(data)} bytes to {args.out}")
    elif isinstance(data, str):
        print(data)
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()
    return 0


def cmd_status(args) -> int:
    """Handle status command."""
    stash = open_stash(args)
    if stash is None:
        return 1
    try:
        status = stash.get_status()
    finally:
        stash.close()

    if args.json:
        print(json.dumps(status, indent=2))
        return 0

    print(f"Ledger: {stash.config.ledger.db_path}")
    print(f"Records: {status.get('records', 0)}")
    print(f"Records tagged {status['tag']}: {status.get('stash_records', 0)}")
    return 0


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="ledgerstash: persist any payload into an append-only ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Save a file, encrypted
  ledgerstash --db stash.db save ./photo.jpg --secret hunter2

  # Save a string
  ledgerstash --db stash.db save --string "HELLO_WORLD"

  # Load it back
  ledgerstash --db stash.db load <entry-hash> --secret hunter2 --out photo.jpg
  ledgerstash --db stash.db load <entry-hash> --string

  # Check the local ledger
  ledgerstash --db stash.db status --json
""",
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Configuration file path",
    )
    parser.add_argument(
        "--db",
        type=str,
        help="SQLite ledger path (overrides ledger.db_path)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    save_parser = subparsers.add_parser("save", help="Persist a file or a string")
    payload_group = save_parser.add_mutually_exclusive_group()
    payload_group.add_argument("file", nargs="?", help="File to persist")
    payload_group.add_argument(
        "--string",
        type=str,
        help="Persist this text instead of a file",
    )
    save_parser.add_argument(
        "--secret",
        type=str,
        help="Encrypt the payload with this secret",
    )
    save_parser.add_argument(
        "--seed",
        type=str,
        help="Wallet seed (default: ledger.seed or a fresh random seed)",
    )

    load_parser = subparsers.add_parser("load", help="Load a payload by entry hash")
    load_parser.add_argument("entry_hash", help="Entry hash returned by save")
    load_parser.add_argument(
        "--secret",
        type=str,
        help="Secret the payload was encrypted with",
    )
    load_parser.add_argument(
        "--out",
        type=str,
        help="Write the payload to this file",
    )
    load_parser.add_argument(
        "--string",
        action="store_true",
        help="Payload was saved with --string",
    )

    status_parser = subparsers.add_parser("status", help="Show ledger status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status in JSON format",
    )

    args = parser.parse_args(argv)
    setup_logging(args.debug)

    if args.command == "save":
        return cmd_save(args)
    elif args.command == "load":
        return cmd_load(args)
    elif args.command == "status":
        return cmd_status(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
