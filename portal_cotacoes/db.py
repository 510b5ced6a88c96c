import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g

from portal_cotacoes.tenant import DEFAULT_TENANT_ID


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def _split_sql_statements(sql: str) -> List[str]:
    statements = []
    current = []
    in_single = False
    in_dollar = False
    i = 0
    while i < len(sql):
        ch = sql[i]
        if not in_single and sql[i : i + 2] == "$$":
            in_dollar = not in_dollar
            current.append("$$")
            i += 2
            continue
        if not in_dollar:
            if ch == "'":
                in_single = not in_single
            elif ch == ";" and not in_single:
                statements.append("".join(current))
                current = []
                i += 1
                continue
        current.append(ch)
        i += 1
    if current:
        statements.append("".join(current))
    return statements


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def _connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 nao instalado.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = _connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
    else:
        _init_db_sqlite(db)
    if bool(current_app.config.get("DB_SEED_DEMO", True)):
        _ensure_demo_data(db)
    db.commit()


_QUOTE_STATUS_CHECK = (
    "'draft','sent','receiving','received','under_review','pending_approval',"
    "'approved','paid','delivering','finalized','expired'"
)
_RESPONSE_STATUS_CHECK = "'draft','pending','sent','approved','rejected','expired'"
_VISIT_STATUS_CHECK = "'scheduled','confirmed','overdue'"
_STATUS_EVENT_ENTITY_CHECK = "'quote','quote_response','quote_visit'"

_UPDATED_AT_TABLES = (
    "clients",
    "suppliers",
    "quotes",
    "quote_items",
    "quote_responses",
    "quote_visits",
)


def _schema_statements(backend: str) -> List[str]:
    if backend == "postgres":
        pk = "SERIAL PRIMARY KEY"
        ts = "TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP"
        boolean = "BOOLEAN NOT NULL DEFAULT FALSE"
    else:
        pk = "INTEGER PRIMARY KEY AUTOINCREMENT"
        ts = "TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP"
        boolean = "INTEGER NOT NULL DEFAULT 0"

    return [
        f"""
        CREATE TABLE IF NOT EXISTS tenants (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            subdomain TEXT UNIQUE,
            created_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS clients (
            id {pk},
            name TEXT NOT NULL,
            email TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS suppliers (
            id {pk},
            name TEXT NOT NULL,
            email TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS quotes (
            id {pk},
            local_code TEXT,
            client_id INTEGER NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            deadline TEXT,
            total REAL NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ({_QUOTE_STATUS_CHECK})),
            supplier_scope TEXT NOT NULL DEFAULT 'all' CHECK (supplier_scope IN ('local','global','all')),
            supplier_id INTEGER,
            requires_visit {boolean},
            visit_deadline TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS quote_items (
            id {pk},
            quote_id INTEGER NOT NULL,
            product_name TEXT NOT NULL,
            quantity REAL NOT NULL DEFAULT 1,
            unit_price REAL NOT NULL DEFAULT 0,
            total REAL NOT NULL DEFAULT 0,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS quote_suppliers (
            id {pk},
            quote_id INTEGER NOT NULL,
            supplier_id INTEGER NOT NULL,
            tenant_id TEXT NOT NULL,
            created_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS quote_responses (
            id {pk},
            quote_id INTEGER NOT NULL,
            supplier_id INTEGER NOT NULL,
            supplier_name TEXT,
            items TEXT NOT NULL DEFAULT '[]',
            total_amount REAL NOT NULL DEFAULT 0,
            delivery_time INTEGER,
            payment_terms TEXT,
            shipping_cost REAL NOT NULL DEFAULT 0,
            warranty_months INTEGER,
            notes TEXT,
            status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ({_RESPONSE_STATUS_CHECK})),
            sent_at TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS quote_visits (
            id {pk},
            quote_id INTEGER NOT NULL,
            supplier_id INTEGER NOT NULL,
            client_id INTEGER,
            scheduled_date TEXT NOT NULL,
            requested_date TEXT,
            status TEXT NOT NULL DEFAULT 'scheduled' CHECK (status IN ({_VISIT_STATUS_CHECK})),
            confirmed_date TEXT,
            confirmed_by TEXT,
            confirmation_notes TEXT,
            previous_date TEXT,
            reschedule_count INTEGER NOT NULL DEFAULT 0,
            reschedule_reason TEXT,
            notes TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS status_events (
            id {pk},
            entity TEXT NOT NULL CHECK (entity IN ({_STATUS_EVENT_ENTITY_CHECK})),
            entity_id INTEGER NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            reason TEXT,
            occurred_at {ts},
            tenant_id TEXT NOT NULL
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_quote_responses_quote_supplier_tenant
        ON quote_responses (quote_id, supplier_id, tenant_id)
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_quote_suppliers_unique
        ON quote_suppliers (quote_id, supplier_id, tenant_id)
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_quotes_client_local_code
        ON quotes (client_id, local_code, tenant_id)
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_quotes_tenant_status
        ON quotes (tenant_id, status)
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_quote_visits_pair
        ON quote_visits (quote_id, supplier_id, tenant_id)
        """,
    ]


def _init_db_sqlite(db: Database) -> None:
    for statement in _schema_statements("sqlite"):
        db.execute(statement)

    triggers = []
    for table in _UPDATED_AT_TABLES:
        triggers.append(
            f"""
            CREATE TRIGGER IF NOT EXISTS trg_{table}_updated_at
            AFTER UPDATE ON {table}
            FOR EACH ROW
            BEGIN
                UPDATE {table} SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
            END;
            """
        )
    db.executescript("\n".join(triggers))


def _init_db_postgres(db: Database) -> None:
    for statement in _schema_statements("postgres"):
        db.execute(statement)
    _create_postgres_updated_at_triggers(db)


def _create_postgres_updated_at_triggers(db: Database) -> None:
    db.execute(
        """
        CREATE OR REPLACE FUNCTION set_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = CURRENT_TIMESTAMP;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    for table in _UPDATED_AT_TABLES:
        db.execute(
            f"""
            DROP TRIGGER IF EXISTS trg_{table}_updated_at ON {table};
            CREATE TRIGGER trg_{table}_updated_at
            BEFORE UPDATE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION set_updated_at();
            """
        )


def _ensure_demo_data(db: Database) -> None:
    tenant = db.execute("SELECT id FROM tenants WHERE id = ?", (DEFAULT_TENANT_ID,)).fetchone()
    if not tenant:
        db.execute(
            "INSERT INTO tenants (id, name, subdomain) VALUES (?, ?, ?)",
            (DEFAULT_TENANT_ID, "Workspace Demo", "demo"),
        )

    client = db.execute("SELECT id FROM clients WHERE tenant_id = ? LIMIT 1", (DEFAULT_TENANT_ID,)).fetchone()
    if not client:
        db.execute(
            "INSERT INTO clients (name, email, tenant_id) VALUES (?, ?, ?)",
            ("Condominio Demo", "cliente@demo.local", DEFAULT_TENANT_ID),
        )

    supplier = db.execute("SELECT id FROM suppliers WHERE tenant_id = ? LIMIT 1", (DEFAULT_TENANT_ID,)).fetchone()
    if supplier:
        return
    demo_suppliers = [
        ("Fornecedor Atlas", "atlas@fornecedor.local"),
        ("Fornecedor Nexo", "nexo@fornecedor.local"),
        ("Fornecedor Prisma", "prisma@fornecedor.local"),
    ]
    for name, email in demo_suppliers:
        db.execute(
            "INSERT INTO suppliers (name, email, tenant_id) VALUES (?, ?, ?)",
            (name, email, DEFAULT_TENANT_ID),
        )
