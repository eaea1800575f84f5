"""
core/db.py -- Shared SQLAlchemy engine factory and schema metadata.

Users, books and library entries live in one database because account
deletion must null book ownership and remove library entries in the same
transaction that removes the user row. Each store module registers its
tables on the shared `metadata`; create_schema() builds whatever is missing.

SQLite notes:
  check_same_thread=False -- FastAPI runs sync handlers in a threadpool, so
      a pooled connection may be used from a different thread than the one
      that opened it.
  PRAGMA foreign_keys=ON  -- SQLite ignores FOREIGN KEY clauses unless this is
      set per connection. Without it ON DELETE CASCADE on user_books would be
      a no-op.
  PRAGMA journal_mode=WAL -- readers do not block on writers.

Layer rule: core/ is the kernel. No imports from api/, auth/, or catalog/.
"""

from __future__ import annotations

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine

metadata = MetaData()


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign key enforcement on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Build an Engine for db_url with the SQLite connection hooks attached."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def create_schema(engine: Engine) -> None:
    """Create every table registered on metadata. Idempotent."""
    metadata.create_all(engine)
