"""Database engine and session factory setup."""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def setup_db_session(db_url: str, pool_size: int = 20) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    PostgreSQL (postgresql+psycopg://...) gets a bounded connection pool;
    SQLite URLs, used for local runs and tests, keep SQLAlchemy's default
    pool for their driver.

    Args:
        db_url: Database URL
        pool_size: Maximum number of pooled connections (PostgreSQL only)

    Returns:
        Async session factory; sessions do not expire objects on commit
    """
    engine_options: dict = {"echo": False}  # SQL is not logged; structlog events are
    if make_url(db_url).get_backend_name() == "sqlite":
        engine_options["connect_args"] = {"timeout": 30}
    else:
        engine_options.update(pool_size=pool_size, max_overflow=0, pool_pre_ping=True)

    engine = create_async_engine(db_url, **engine_options)

    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
