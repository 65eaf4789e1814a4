import contextlib
import logging
import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g

from zen_platform.contexts.ordering.domain.collections import COLLECTIONS


# (tabela, coluna de agrupamento) das listas ordenaveis, na ordem de criacao.
ORDERED_TABLES = tuple(
    (collection.table, collection.parent_column) for collection in COLLECTIONS.values()
)

_SERIALIZATION_PGCODES = {"40001", "40P01", "55P03"}
_SQLITE_BUSY_MARKERS = ("database is locked", "database is busy", "database table is locked")
_UNIQUE_VIOLATION_PGCODE = "23505"

_logger = logging.getLogger("zen_platform")


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._in_transaction = False

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

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

    def commit(self):
        # Conexoes em autocommit: so ha algo a confirmar dentro de transaction().
        if not self._in_transaction:
            self._conn.commit()

    def close(self):
        self._conn.close()

    @contextlib.contextmanager
    def transaction(self):
        """Run the block as one serialized unit of work.

        SQLite takes the write lock up front (BEGIN IMMEDIATE) so concurrent
        writers queue on the busy timeout; PostgreSQL runs the block at
        SERIALIZABLE isolation. Any exception rolls the whole block back.
        """
        if self._in_transaction:
            raise RuntimeError("Transacao ja aberta nesta conexao.")
        if self.backend == "postgres":
            self.execute("BEGIN ISOLATION LEVEL SERIALIZABLE")
        else:
            self.execute("BEGIN IMMEDIATE")
        self._in_transaction = True
        try:
            yield self
        except BaseException as exc:
            self._in_transaction = False
            self._rollback_quietly(exc)
            raise
        self._in_transaction = False
        self.execute("COMMIT")

    def _rollback_quietly(self, original: BaseException) -> None:
        # SQLite desfaz a transacao sozinho em alguns erros fatais; o ROLLBACK
        # explicito pode falhar e nao deve esconder o erro original.
        try:
            self.execute("ROLLBACK")
        except Exception as rollback_exc:
            _logger.warning(
                "db_rollback_failed",
                extra={"error": str(rollback_exc), "original_error": str(original)},
            )


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def is_serialization_failure(exc: BaseException) -> bool:
    """True when the store refused the unit of work because of a concurrent writer."""
    pg_code = str(getattr(exc, "pgcode", "") or "").strip().upper()
    if pg_code in _SERIALIZATION_PGCODES:
        return True
    if isinstance(exc, sqlite3.OperationalError):
        message = str(exc or "").lower()
        return any(marker in message for marker in _SQLITE_BUSY_MARKERS)
    return False


def is_unique_violation(exc: BaseException) -> bool:
    """True when an INSERT hit an existing primary key or unique index."""
    if str(getattr(exc, "pgcode", "") or "").strip() == _UNIQUE_VIOLATION_PGCODE:
        return True
    return isinstance(exc, sqlite3.IntegrityError) and "unique" in str(exc or "").lower()


def _connect_database(db_path: str, *, busy_timeout: float = 5.0) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 nao instalado.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    # isolation_level=None: transacoes explicitas via Database.transaction().
    conn = sqlite3.connect(db_path, timeout=busy_timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn)


def _busy_timeout() -> float:
    return float(current_app.config.get("SQLITE_BUSY_TIMEOUT_SECONDS", 5) or 5)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = _connect_database(db_path, busy_timeout=_busy_timeout())
    return g.db


def get_read_db():
    if "db_read" not in g:
        db_path = current_app.config.get("DATABASE_READ_URL") or current_app.config["DB_PATH"]
        g.db_read = _connect_database(db_path, busy_timeout=_busy_timeout())
    return g.db_read


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()
    db_read = g.pop("db_read", None)
    if db_read is not None:
        db_read.close()


def init_db():
    db = get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
        return

    _init_db_sqlite(db)


def _ordered_table_ddl(table: str, parent_column: str | None, *, timestamp_type: str) -> str:
    parent_line = f"{parent_column} TEXT NOT NULL," if parent_column else ""
    return f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            {parent_line}
            name TEXT NOT NULL,
            orden INTEGER,
            active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0, 1)),
            created_at {timestamp_type} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at {timestamp_type} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """


def _create_ordered_indexes(db: Database) -> None:
    for table, parent_column in ORDERED_TABLES:
        columns = ["tenant_id"]
        if parent_column:
            columns.append(parent_column)
        columns.extend(["active", "orden"])
        db.execute(
            f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_scope_orden
            ON {table} ({", ".join(columns)})
            """
        )


def _init_db_sqlite(db: Database):
    for table, parent_column in ORDERED_TABLES:
        db.execute(_ordered_table_ddl(table, parent_column, timestamp_type="TEXT"))
    _create_ordered_indexes(db)
    db.commit()


def _init_db_postgres(db: Database) -> None:
    for table, parent_column in ORDERED_TABLES:
        db.execute(_ordered_table_ddl(table, parent_column, timestamp_type="TIMESTAMP"))
    _create_ordered_indexes(db)
    _create_postgres_updated_at_triggers(db)
    db.commit()


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

    for table, _parent_column in ORDERED_TABLES:
        db.execute(
            f"""
            DROP TRIGGER IF EXISTS trg_{table}_updated_at ON {table};
            CREATE TRIGGER trg_{table}_updated_at
            BEFORE UPDATE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION set_updated_at();
            """
        )


def table_names() -> List[str]:
    return [table for table, _parent_column in ORDERED_TABLES]
