import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Request
from sqlmodel import SQLModel
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite only checks REFERENCES clauses when asked to, per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the async engine. Opened at startup, disposed at shutdown."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self._session_factory = None

    async def connect(self, retries: int = 3, retry_delay: float = 1.0) -> None:
        self.engine = create_async_engine(self.url, echo=self.echo, future=True)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self._session_factory = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

        attempt = 1
        while True:
            try:
                await self.init_db()
                break
            except (OperationalError, OSError) as exc:
                if attempt >= retries:
                    logger.error("Database unreachable after %d attempts", attempt)
                    await self.dispose()
                    raise
                logger.warning(
                    "Database connection attempt %d/%d failed: %s", attempt, retries, exc
                )
                attempt += 1
                await asyncio.sleep(retry_delay)

        logger.info("Database connected (%s)", self.engine.url.render_as_string(hide_password=True))

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            # This creates the tables if they don't exist
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
            logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database is not connected; call connect() first")
        async with self._session_factory() as session:
            yield session


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session
