from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from libs.common.config import Settings, get_settings
from libs.db.base import Base


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    """SQLite has no row locks: start every transaction with BEGIN IMMEDIATE.

    The write lock is then taken up front and competing transactions wait on
    the busy timeout instead of failing mid-transaction.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine; pool tuning only applies to server databases."""
    if settings.is_sqlite:
        engine = create_async_engine(
            settings.DATABASE_URL,
            future=True,
            connect_args={"timeout": 30},
        )
        _serialize_sqlite_writers(engine)
        return engine
    return create_async_engine(
        settings.DATABASE_URL,
        future=True,
        pool_pre_ping=True,  # Test connections before using
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


settings = get_settings()

engine = build_engine(settings)

AsyncSessionLocal = build_sessionmaker(engine)


async def init_models(bind: AsyncEngine = engine) -> None:
    """Create missing tables. Local/dev convenience; production uses migrations."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
