#!/usr/bin/env python3
"""
Create (or recreate) the lobby tables on a database.

Rooms and players are the whole schema; the app also creates them on
startup when APP_DEBUG is set, so this is for production databases.
"""
import argparse
import asyncio
import sys
from pathlib import Path
from typing import List

sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine

from lobby.config import DATABASE_URL
from lobby.models import Base


async def init_db(database_url: str = DATABASE_URL, echo: bool = True, drop: bool = False) -> List[str]:
    """
    Create the lobby tables and return the table names now present.

    With `drop`, existing lobby tables (and every room in them) are dropped
    first.
    """
    engine = create_async_engine(database_url, echo=echo)
    try:
        async with engine.begin() as conn:
            if drop:
                await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    finally:
        await engine.dispose()
    return sorted(t for t in tables if t in Base.metadata.tables)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Create the room lobby tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create missing tables on $DATABASE_URL:
  python deploy/init_db.py

  # Start over with empty tables:
  python deploy/init_db.py --drop
        """,
    )
    parser.add_argument("--database-url", default=DATABASE_URL, help="Database to initialize (default: $DATABASE_URL)")
    parser.add_argument("--drop", action="store_true", help="Drop the lobby tables first (destructive!)")
    parser.add_argument("--quiet", action="store_true", help="Do not echo SQL statements")
    args = parser.parse_args(argv)

    try:
        tables = asyncio.run(init_db(args.database_url, echo=not args.quiet, drop=args.drop))
    except Exception as e:
        print(f"❌ Schema initialization failed: {e}")
        return 1
    print(f"✅ Lobby tables ready: {', '.join(tables)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
