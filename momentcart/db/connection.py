from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from momentcart.config.settings import config_settings
from momentcart.db.utils import _normalize_db_url, install_sqlite_write_lock


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    url = _normalize_db_url(url)
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo, connect_args={"timeout": 30})
        install_sqlite_write_lock(engine)
        return engine
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async_engine = build_engine(config_settings.DATABASE_URL, echo=config_settings.DB_ECHO)

async_session = build_session_factory(async_engine)
