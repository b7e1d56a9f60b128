from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from contextlib import contextmanager
from typing import Iterator

from poi_share.config.settings import settings


def _engine_options(url: str) -> dict:
    options = {"echo": settings.database.echo, "pool_pre_ping": True, "future": True}
    if not url.startswith("sqlite"):
        options["pool_size"] = settings.database.pool_size
        options["max_overflow"] = settings.database.max_overflow
    return options


engine = create_async_engine(settings.database.url, **_engine_options(settings.database.url))
SessionLocal = async_sessionmaker(
    bind=engine, autoflush=False, expire_on_commit=False
)

# SQLAlchemy declarative base for models
Base = declarative_base()


async def dispose_engine() -> None:
    await engine.dispose()


@contextmanager
def translate_db_errors(operation: str) -> Iterator[None]:
    """Re-raise connectivity failures as retryable TransientNetworkError.

    Integrity and programming errors propagate unchanged; callers decide
    what a constraint violation means for their operation.
    """
    from poi_share.core.exceptions import TransientNetworkError

    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise TransientNetworkError("database", details={"operation": operation, "error": str(e.orig or e)}) from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise TransientNetworkError("database", details={"operation": operation}) from e
        raise
