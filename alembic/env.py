import logging
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context

# Add the project root to the path before importing project modules
BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from config import get_settings  # noqa: E402
from database import Base, create_db_engine  # noqa: E402
import models  # noqa: E402,F401  registers the dashboard tables

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata


def _database_url() -> str:
    # programmatic callers pass the target through Config.attributes
    return config.attributes.get("database_url") or get_settings().database_url


def run_migrations_offline(url: str) -> None:
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online(url: str) -> None:
    # same engine setup as the app, so the sqlite pragmas apply
    engine = create_db_engine(url)
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                render_as_batch=connection.dialect.name == "sqlite",
                compare_type=True,
            )

            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


url = _database_url()
logger.info(f"migrations_target: url={url} offline={context.is_offline_mode()}")

if context.is_offline_mode():
    run_migrations_offline(url)
else:
    run_migrations_online(url)
