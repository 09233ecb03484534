# alembic/env.py
# Alembic migration environment
#
#   1. Resolve the database URL the same way app/db/session.py does
#   2. Import every model via app/db/base.py so autogenerate sees all tables
#   3. Offline (SQL script) and online (live connection) modes

import os
import sys
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Local development reads .env; deployed environments inject variables directly
load_dotenv()

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

import app.db.base  # noqa: F401, E402
from app.db.base_class import Base  # noqa: E402
from app.db.session import DATABASE_URL  # noqa: E402

target_metadata = Base.metadata


# ── Offline Mode ──────────────────────────────────────────────────────────────
# Usage: alembic upgrade head --sql > migration.sql
def run_migrations_offline() -> None:
    context.configure(
        url=DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )
    with context.begin_transaction():
        context.run_migrations()


# ── Online Mode ───────────────────────────────────────────────────────────────
# Usage: alembic upgrade head
def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = DATABASE_URL

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
