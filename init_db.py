"""Initialize the database schema for B-mo.

Enables pgvector, creates all tables and seeds the default roles.
Pass ``--reset`` to drop existing tables first.
"""

import asyncio
import sys
import traceback

from sqlalchemy import text

from bmo.config import settings
from bmo.db import AsyncSessionMaker, engine
from bmo.models import Base
from bmo.store.roles import ensure_default_roles


async def init_database(reset: bool = False):
    """Create all database tables and default roles."""
    print(f"Initializing database: {settings.db.url.split('@')[-1]}")

    async with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            print("✓ Enabled pgvector extension")

        if reset:
            await conn.run_sync(Base.metadata.drop_all)
            print("✓ Dropped existing tables")

        await conn.run_sync(Base.metadata.create_all)
        print("✓ Created all tables")

    async with AsyncSessionMaker() as session:
        created = await ensure_default_roles(session)
        print(f"✓ Seeded {created} default role(s)")

    print("\n✅ Database initialization complete!")
    print(f"Tables: {', '.join(Base.metadata.tables.keys())}")


async def main():
    """Main entry point."""
    try:
        await init_database(reset="--reset" in sys.argv[1:])
    except Exception as e:
        print(f"\n❌ Error initializing database: {e}")
        traceback.print_exc()
        sys.exit(1)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
