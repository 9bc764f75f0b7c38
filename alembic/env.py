from logging.config import fileConfig

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Inject application settings for DB URL
import os
import sys
from app.core.config import settings  # type: ignore

# Allow override with root credentials for migrations (via environment variable)
if os.getenv("MYSQL_ROOT_MIGRATION", "").lower() == "true" and not settings.database_url:
    sqlalchemy_url = (
        f"mysql+pymysql://root:{os.getenv('MYSQL_ROOT_PASSWORD', 'root')}"
        f"@{settings.mysql_host}:{settings.mysql_port}/{settings.mysql_db}?charset=utf8mb4"
    )
else:
    sqlalchemy_url = settings.sqlalchemy_url

config.set_main_option("sqlalchemy.url", sqlalchemy_url.replace("%", "%%"))

from app.db.base import Base
from app.db.models import *  # noqa: F401,F403

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    This configures the context with just a URL
    and not an Engine, though an Engine is acceptable
    here as well.  By skipping the Engine creation
    we don't even need a DBAPI to be available.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    try:
        connectable = engine_from_config(
            config.get_section(config.config_ini_section, {}),
            prefix="sqlalchemy.",
            poolclass=pool.NullPool,
        )

        with connectable.connect() as connection:
            context.configure(connection=connection, target_metadata=target_metadata)

            with context.begin_transaction():
                context.run_migrations()
    except Exception as e:
        print("\n[ERROR] Database connection failed:", file=sys.stderr)
        print(f"  Host: {settings.mysql_host}", file=sys.stderr)
        print(f"  Port: {settings.mysql_port}", file=sys.stderr)
        print(f"  Database: {settings.mysql_db}", file=sys.stderr)
        print(f"\n  Error: {str(e)}", file=sys.stderr)
        print("\n  Override with env vars: DATABASE_URL or MYSQL_HOST, MYSQL_USER, MYSQL_PASSWORD", file=sys.stderr)
        raise


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
