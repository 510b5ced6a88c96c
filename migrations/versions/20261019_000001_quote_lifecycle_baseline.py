"""Quote lifecycle baseline from portal_cotacoes.db

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from __future__ import annotations

from typing import Iterable, Sequence, Union

from alembic import op
from sqlalchemy.engine import Connection

from portal_cotacoes.db import (
    _UPDATED_AT_TABLES,
    _convert_qmark_to_pg,
    _init_db_postgres,
    _init_db_sqlite,
    _split_sql_statements,
)


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


_TABLES_IN_DROP_ORDER = (
    "status_events",
    "quote_visits",
    "quote_responses",
    "quote_suppliers",
    "quote_items",
    "quotes",
    "suppliers",
    "clients",
    "tenants",
)


class _ResultAdapter:
    def __init__(self, result):
        self._result = result

    @property
    def rowcount(self) -> int:
        return int(getattr(self._result, "rowcount", 0) or 0)

    @staticmethod
    def _map_row(row):
        if row is None:
            return None
        mapping = getattr(row, "_mapping", None)
        return dict(mapping) if mapping is not None else row

    def fetchone(self):
        return self._map_row(self._result.fetchone())

    def fetchall(self):
        return [self._map_row(row) for row in self._result.fetchall()]


class _AlembicDbAdapter:
    """Exposes the `Database` surface that the schema builders expect."""

    def __init__(self, connection: Connection, backend: str):
        self._connection = connection
        self.backend = backend

    def execute(self, sql: str, params: Iterable | None = None):
        if params is None:
            return _ResultAdapter(self._connection.exec_driver_sql(sql))
        statement = _convert_qmark_to_pg(sql) if self.backend == "postgres" else sql
        return _ResultAdapter(self._connection.exec_driver_sql(statement, tuple(params)))

    def executescript(self, sql: str):
        # sqlite triggers carry `;` inside BEGIN...END, so they cannot be split.
        if self.backend == "sqlite":
            raw_conn = getattr(self._connection, "connection", None)
            driver_conn = getattr(raw_conn, "driver_connection", raw_conn)
            if driver_conn is not None and hasattr(driver_conn, "executescript"):
                driver_conn.executescript(sql)
                return
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)

    def commit(self):
        return None


def _resolve_backend(connection: Connection) -> str:
    return "postgres" if (connection.dialect.name or "").lower().startswith("postgres") else "sqlite"


def upgrade() -> None:
    connection = op.get_bind()
    adapter = _AlembicDbAdapter(connection, _resolve_backend(connection))
    if adapter.backend == "postgres":
        _init_db_postgres(adapter)
    else:
        _init_db_sqlite(adapter)


def downgrade() -> None:
    backend = _resolve_backend(op.get_bind())
    if backend == "postgres":
        op.execute("DROP FUNCTION IF EXISTS set_updated_at() CASCADE")
    else:
        for table in _UPDATED_AT_TABLES:
            op.execute(f"DROP TRIGGER IF EXISTS trg_{table}_updated_at")
    for table in _TABLES_IN_DROP_ORDER:
        op.execute(f"DROP TABLE IF EXISTS {table}")
