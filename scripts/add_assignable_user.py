#!/usr/bin/env python3
"""Admin script to add names to the assignable-users list.

Usage:
    python scripts/add_assignable_user.py NAME [NAME ...] [--db PATH]

This will ensure the DB is initialized, and then insert every name that is
not already on the list.
"""
# Make the script runnable from the project root or from anywhere by
# adding the project root to sys.path. This locates the top-level
# `layer_todos` package (parent of the scripts/ directory).
import os
import sys
proj_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if proj_root not in sys.path:
    sys.path.insert(0, proj_root)

import argparse
import asyncio


async def _add_names(names: list[str]) -> list[str]:
    # Import app modules lazily so running `-h` doesn't require the runtime
    # dependencies and so DATABASE_URL set below is honored at import time.
    from layer_todos.db import init_db
    from layer_todos.store import RecordStore
    await init_db()
    store = RecordStore()
    added = []
    for name in names:
        if await store.select('assignable_users', name=name):
            print(f"'{name}' is already assignable")
            continue
        await store.insert('assignable_users', {'name': name})
        added.append(name)
    return added


def parse_args(argv):
    p = argparse.ArgumentParser(description="Add names to the assignable users list")
    p.add_argument("names", nargs="+", help="collaborator names to add")
    p.add_argument("--db", default=None, help="path to sqlite file to use (default: DATABASE_URL or ./layer_todos.db)")
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv or sys.argv[1:])
    if args.db:
        # Convert a file path into the async sqlite URL used by SQLAlchemy
        os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{args.db}"
    names = [n.strip() for n in args.names if n.strip()]
    if not names:
        print("No names given", file=sys.stderr)
        return 2
    added = asyncio.run(_add_names(names))
    print(f"Added {len(added)} of {len(names)} name(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
