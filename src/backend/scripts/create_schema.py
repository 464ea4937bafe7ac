"""
Create the StarVote tables in PostgreSQL.

Creates active_votes, active_ballots, archived_votes and archived_ballots
with their constraints and indexes. Existing tables are left untouched, so
the script is safe to run repeatedly.

Usage:
    python scripts/create_schema.py
"""

import asyncio
import os
import sys

# Add the parent directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text

from core.logging_config import setup_logging
from db.session import close_db, get_engine, init_db

TABLES = ("active_votes", "active_ballots", "archived_votes", "archived_ballots")


async def create_schema() -> None:
    print("Creating StarVote schema...")
    await init_db()

    async with get_engine().connect() as conn:
        for table in TABLES:
            result = await conn.execute(
                text("""
                SELECT EXISTS (
                    SELECT FROM information_schema.tables
                    WHERE table_name = :table
                )
            """),
                {"table": table},
            )
            status = "present" if result.scalar() else "MISSING"
            print(f"  {table}: {status}")

    await close_db()
    print("Schema ready.")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(create_schema())
