from __future__ import annotations

import importlib.util
from collections.abc import Iterator
from pathlib import Path
from types import ModuleType

import pytest
import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations

VERSIONS_DIR = Path(__file__).resolve().parents[2] / "alembic" / "versions"
REVISION_FILES = ("0001_notification_pipeline.py", "0002_user_notification_settings.py")
SERVICE_TABLES = {"notifications", "push_subscriptions", "user_notification_settings"}


def _load_revision(filename: str) -> ModuleType:
  spec = importlib.util.spec_from_file_location(f"notification_revision_{filename[:4]}", VERSIONS_DIR / filename)
  assert spec is not None and spec.loader is not None
  module = importlib.util.module_from_spec(spec)
  spec.loader.exec_module(module)
  return module


def _run(engine: sa.Engine, step: str) -> None:
  modules = [_load_revision(filename) for filename in REVISION_FILES]
  if step == "downgrade":
    modules.reverse()
  with engine.begin() as connection, Operations.context(MigrationContext.configure(connection)):
    for module in modules:
      getattr(module, step)()


@pytest.fixture
def engine() -> Iterator[sa.Engine]:
  engine = sa.create_engine("sqlite://")
  yield engine
  engine.dispose()


def test_revisions_form_a_single_chain():
  first, second = (_load_revision(filename) for filename in REVISION_FILES)

  assert (first.revision, first.down_revision) == ("0001", None)
  assert (second.revision, second.down_revision) == ("0002", "0001")


def test_upgrade_keeps_an_existing_users_table(engine):
  with engine.begin() as connection:
    connection.execute(sa.text("CREATE TABLE users (id CHAR(32) PRIMARY KEY, email VARCHAR NOT NULL, role VARCHAR NOT NULL)"))

  _run(engine, "upgrade")

  inspector = sa.inspect(engine)
  assert SERVICE_TABLES <= set(inspector.get_table_names())
  assert {column["name"] for column in inspector.get_columns("users")} == {"id", "email", "role"}
  assert "ix_users_email" not in {index["name"] for index in inspector.get_indexes("users")}


def test_upgrade_creates_users_on_an_empty_database_and_downgrade_leaves_it(engine):
  _run(engine, "upgrade")

  inspector = sa.inspect(engine)
  assert SERVICE_TABLES | {"users"} <= set(inspector.get_table_names())
  assert {"ix_users_email"} <= {index["name"] for index in inspector.get_indexes("users")}
  assert {fk["referred_table"] for fk in inspector.get_foreign_keys("user_notification_settings")} == {"users"}

  _run(engine, "downgrade")

  assert set(sa.inspect(engine).get_table_names()) == {"users"}
