import logging
import os
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.errors import PersistenceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Apteka DB  (medicines, medicine_aliases, pharmacies, inventory_entries,
#             pharmacy_owners, catalog_imports)
# ---------------------------------------------------------------------------
DATABASE_URL = os.getenv(
    "DB_URL",
    "postgresql+asyncpg://apteka_admin:apteka2024@db:5432/apteka",
)

#: Isolation used by every search transaction; resolver and aggregator must
#: observe the same snapshot.
SEARCH_ISOLATION_LEVEL = "REPEATABLE READ"

engine: AsyncEngine = create_async_engine(
    DATABASE_URL,
    echo=False,
    future=True,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def create_task_session_factory() -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Short-lived engine for catalog operations in Celery tasks."""
    task_engine = create_async_engine(DATABASE_URL, echo=False, future=True)
    return task_engine, async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)


async def run_in_transaction(
    session_factory: Callable[[], AsyncSession],
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    isolation_level: str | None = None,
    read_only: bool = False,
) -> T:
    """
    Execute *work* as one unit of work.

    A fresh session is opened, a transaction is started (with the requested
    isolation level, if any) and ``work(session)`` is awaited.  The
    transaction commits when *work* returns and rolls back when it raises.
    ``SQLAlchemyError`` is logged and re-raised as
    :class:`~app.core.errors.PersistenceFailure`; any other exception
    propagates unchanged after the rollback.
    """
    execution_options: dict[str, object] = {}
    if isolation_level:
        execution_options["isolation_level"] = isolation_level
    if read_only:
        execution_options["postgresql_readonly"] = True

    try:
        async with session_factory() as session:
            async with session.begin():
                if execution_options:
                    await session.connection(execution_options=execution_options)
                return await work(session)
    except SQLAlchemyError as exc:
        logger.exception("Transaction rolled back: %s", type(exc).__name__)
        raise PersistenceFailure(f"{type(exc).__name__} during transaction") from exc
