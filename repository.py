import logging
from typing import Any, Generic, Mapping, Optional, Sequence, Type, TypeVar

from sqlmodel import SQLModel, select
from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import InternalFailureError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=SQLModel)

# SQLSTATE codes reported by PostgreSQL drivers
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


class DuplicateKeyError(Exception):
    """A write violated a uniqueness constraint."""


class ForeignKeyError(Exception):
    """A write referenced a missing row, or removed a row still referenced."""


def _integrity_kind(exc: IntegrityError) -> Optional[str]:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == UNIQUE_VIOLATION:
        return "unique"
    if code == FOREIGN_KEY_VIOLATION:
        return "foreign_key"
    message = str(orig).lower()
    if "unique" in message or "duplicate" in message:
        return "unique"
    if "foreign key" in message:
        return "foreign_key"
    return None


class Repository(Generic[ModelT]):
    """Record access for one table: find, create, update, delete and count.

    Writes commit immediately unless ``commit=False`` is passed, in which case
    the caller finishes the transaction with :meth:`commit`.
    """

    def __init__(self, session: AsyncSession, model: Type[ModelT]):
        self.session = session
        self.model = model

    async def find(self, *criteria, order_by: Sequence[Any] = ()) -> list[ModelT]:
        statement = select(self.model)
        if criteria:
            statement = statement.where(*criteria)
        if order_by:
            statement = statement.order_by(*order_by)
        result = await self._execute(statement)
        return list(result.scalars().all())

    async def find_one(self, *criteria) -> Optional[ModelT]:
        statement = select(self.model).where(*criteria).limit(1)
        result = await self._execute(statement)
        return result.scalars().first()

    async def find_by_id(self, record_id: int) -> Optional[ModelT]:
        try:
            return await self.session.get(self.model, record_id)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise self._failure("lookup", exc) from exc

    async def lock_by_id(self, record_id: int) -> Optional[ModelT]:
        """Load a row with ``FOR UPDATE``; the lock lasts until the next commit."""
        statement = (
            select(self.model)
            .where(self.model.id == record_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._execute(statement)
        return result.scalars().first()

    async def count(self, *criteria) -> int:
        statement = select(func.count()).select_from(self.model)
        if criteria:
            statement = statement.where(*criteria)
        result = await self._execute(statement)
        return result.scalar_one()

    async def create(self, record: ModelT) -> ModelT:
        self.session.add(record)
        await self.commit("create")
        await self.session.refresh(record)
        return record

    async def update_by_id(self, record_id: int, patch: Mapping[str, Any]) -> Optional[ModelT]:
        record = await self.find_by_id(record_id)
        if record is None:
            return None
        for field, value in patch.items():
            if field not in self.model.model_fields:
                raise ValueError(f"{self.model.__name__} has no field {field!r}")
            setattr(record, field, value)
        self.session.add(record)
        await self.commit("update")
        await self.session.refresh(record)
        return record

    async def delete_by_id(self, record_id: int, commit: bool = True) -> Optional[ModelT]:
        record = await self.find_by_id(record_id)
        if record is None:
            return None
        await self.session.delete(record)
        if commit:
            await self.commit("delete")
        return record

    async def delete_where(self, *criteria, commit: bool = True) -> int:
        result = await self._execute(delete(self.model).where(*criteria))
        if commit:
            await self.commit("delete")
        return result.rowcount

    async def commit(self, action: str = "commit") -> None:
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            kind = _integrity_kind(exc)
            if kind == "unique":
                raise DuplicateKeyError(str(exc.orig)) from exc
            if kind == "foreign_key":
                raise ForeignKeyError(str(exc.orig)) from exc
            raise self._failure(action, exc) from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise self._failure(action, exc) from exc

    async def _execute(self, statement):
        try:
            return await self.session.execute(statement)
        except SQLAlchemyError as exc:
            # PostgreSQL refuses further statements in a failed transaction
            await self.session.rollback()
            raise self._failure("query", exc) from exc

    def _failure(self, action: str, exc: Exception) -> InternalFailureError:
        table = self.model.__tablename__
        logger.exception("Persistence %s on %s failed", action, table)
        return InternalFailureError(f"Database {action} on {table} failed.")
