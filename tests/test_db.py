from bmo.config import DatabaseSettings
from bmo.db import engine_options


def test_postgres_engine_uses_pool_settings():
    config = DatabaseSettings(url="postgresql+asyncpg://u:p@db.test/bmo", pool_size=7, max_overflow=3)

    assert engine_options(config) == {"echo": False, "pool_size": 7, "max_overflow": 3, "pool_pre_ping": True}


def test_sqlite_engine_skips_pool_settings():
    config = DatabaseSettings(url="sqlite+aiosqlite:///:memory:", echo=True)

    assert engine_options(config) == {"echo": True}
