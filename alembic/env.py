from __future__ import annotations

import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import create_engine, pool

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# migrations are hand-written with op.create_table; there is no ORM metadata to autogenerate from
target_metadata = None


def _configured_url() -> str | None:
    url = (config.get_main_option("sqlalchemy.url") or "").strip()
    return url or None


def run_migrations_offline() -> None:
    url = _configured_url()
    if url is None:
        raise SystemExit("Offline migrations need sqlalchemy.url set in alembic.ini")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = _configured_url()
    if url is not None:
        connectable = create_engine(url, poolclass=pool.NullPool, future=True)
    else:
        from compendium.db import get_engine

        connectable = get_engine()

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
