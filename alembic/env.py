import asyncio
import logging
from logging.config import fileConfig
from time import perf_counter

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

config = context.config

if config.config_file_name is not None:
  fileConfig(config.config_file_name)

# Importing the models registers every table this service migrates on Base.metadata.
import app.schema.sql  # noqa: E402, F401
from app.core.database import DATABASE_URL, Base  # noqa: E402

target_metadata = Base.metadata

_migration_logger = logging.getLogger("alembic.runtime.migration")
_revision_started_at: dict[str, float] = {}


def _require_url() -> str:
  if not DATABASE_URL:
    raise RuntimeError("HELPDESK_PG_DSN (or DATABASE_URL) must be set to run migrations.")
  return DATABASE_URL


def _include_object(obj: object, name: str | None, type_: str, reflected: bool, compare_to: object | None) -> bool:
  """Ignore reflected tables this service does not model.

  The notification tables live in the shared helpdesk database; autogenerate
  must never propose dropping tables owned by other services.
  """
  if type_ == "table" and reflected and compare_to is None:
    return False
  return True


def _on_version_apply(*, ctx: object, step: object, heads: set[str], run_args: dict[str, object]) -> None:
  revision = getattr(step, "up_revision_id", None) or "unknown"
  started = _revision_started_at.pop("current", None)
  if started is None:
    _migration_logger.info("Applied migration %s", revision)
  else:
    _migration_logger.info("Applied migration %s in %.3fs", revision, perf_counter() - started)
  _revision_started_at["current"] = perf_counter()


def _context_options() -> dict[str, object]:
  return {"target_metadata": target_metadata, "compare_type": True, "compare_server_default": True, "include_object": _include_object, "on_version_apply": _on_version_apply}


def run_migrations_offline() -> None:
  """Emit SQL for the notification tables without connecting."""
  context.configure(url=_require_url(), literal_binds=True, dialect_opts={"paramstyle": "named"}, **_context_options())
  with context.begin_transaction():
    context.run_migrations()


def _run_with_connection(connection: Connection) -> None:
  context.configure(connection=connection, **_context_options())
  current = context.get_context().get_current_revision() or "base"
  _migration_logger.info("Starting notification migrations from %s", current)
  _revision_started_at["current"] = perf_counter()
  with context.begin_transaction():
    context.run_migrations()


async def run_async_migrations() -> None:
  """Run migrations through asyncpg, the same driver the service uses at runtime."""
  configuration = config.get_section(config.config_ini_section) or {}
  configuration["sqlalchemy.url"] = _require_url()
  connectable = async_engine_from_config(configuration, prefix="sqlalchemy.", poolclass=pool.NullPool)
  try:
    async with connectable.connect() as connection:
      await connection.run_sync(_run_with_connection)
  finally:
    await connectable.dispose()


if context.is_offline_mode():
  run_migrations_offline()
else:
  asyncio.run(run_async_migrations())
