from sqlalchemy import event, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession


def _normalize_db_url(url: str | None) -> str | None:
    # managed postgres often hands out "postgres://..." but asyncpg needs "postgresql+asyncpg://..."
    if not url:
        return None
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


def insert_for(session: AsyncSession, model):
    """INSERT construct with on_conflict support for the session's backend."""
    if dialect_name(session) == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


async def acquire_xact_lock(session: AsyncSession, key: int) -> None:
    """Transaction-scoped advisory lock, released on commit/rollback.

    sqlite connections open with BEGIN IMMEDIATE, which already serializes writers.
    """
    if dialect_name(session) == "postgresql":
        await session.execute(text("SELECT pg_advisory_xact_lock(:k)"), {"k": key})


def install_sqlite_write_lock(engine: AsyncEngine) -> None:
    # pysqlite defers BEGIN until the first write; take the write lock up front so
    # SELECT ... then UPDATE sequences behave like row-locked transactions
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
