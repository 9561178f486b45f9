"""
Base Repository for Storefront Billing

Generic async repository mapping SQLModel rows to pydantic domain entities.
Repositories never commit; the session owner (request dependency or batch
unit of work) decides the transaction boundary.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Generic, List, Optional, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel as DomainModel
from pydantic_core import to_jsonable_python
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from storefront_billing.infrastructure.exceptions import NotFoundError


ModelType = TypeVar("ModelType", bound=SQLModel)
EntityType = TypeVar("EntityType", bound=DomainModel)


def to_column_value(value: Any) -> Any:
    """Convert a domain value into something the column types accept."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dict, list, tuple)):
        return to_jsonable_python(value)
    return value


class IReadRepository(ABC, Generic[EntityType]):
    """Read side of a repository."""

    @abstractmethod
    async def get_by_id(self, id: UUID) -> Optional[EntityType]:
        """Get a single record by ID."""
        pass

    @abstractmethod
    async def get_all(self, skip: int = 0, limit: int = 100) -> List[EntityType]:
        """Get all records with pagination."""
        pass


class IWriteRepository(ABC, Generic[EntityType]):
    """Write side of a repository."""

    @abstractmethod
    async def create(self, entity: EntityType) -> EntityType:
        """Insert a new record."""
        pass

    @abstractmethod
    async def update(self, entity: EntityType) -> EntityType:
        """Persist changes to an existing record."""
        pass


class BaseRepository(
    IReadRepository[EntityType],
    IWriteRepository[EntityType],
    Generic[ModelType, EntityType],
):
    """
    Generic async repository with CRUD operations.

    Args:
        model: The SQLModel table class to operate on
        entity: The domain entity class rows are mapped to
        session: Async database session
    """

    # Columns an ``update`` never touches
    immutable_fields: frozenset[str] = frozenset({"id", "created_at"})

    def __init__(
        self,
        model: Type[ModelType],
        entity: Type[EntityType],
        session: AsyncSession,
    ):
        self._model = model
        self._entity = entity
        self._session = session

    @property
    def session(self) -> AsyncSession:
        """Get the current session."""
        return self._session

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_id(self, id: UUID) -> Optional[EntityType]:
        row = await self._session.get(self._model, id)
        return self._to_domain(row) if row is not None else None

    async def get_all(self, skip: int = 0, limit: int = 100) -> List[EntityType]:
        stmt = select(self._model).offset(skip).limit(limit)
        return await self._fetch_all(stmt)

    async def _fetch_all(self, stmt) -> List[EntityType]:
        result = await self._session.execute(stmt)
        return [self._to_domain(row) for row in result.scalars().all()]

    async def _fetch_one(self, stmt) -> Optional[EntityType]:
        result = await self._session.execute(stmt)
        row = result.scalars().first()
        return self._to_domain(row) if row is not None else None

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def create(self, entity: EntityType) -> EntityType:
        """
        Insert a new record.

        Unset ``id`` and timestamps fall back to the table defaults.
        """
        values = self._to_values(entity)
        for key in ("id", "created_at", "updated_at"):
            if values.get(key) is None:
                values.pop(key, None)

        row = self._model(**values)
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return self._to_domain(row)

    async def update(self, entity: EntityType) -> EntityType:
        """
        Write every mutable field of ``entity`` onto its row.

        Raises:
            NotFoundError: If no row has the entity's id
        """
        row = await self._session.get(self._model, entity.id)
        if row is None:
            raise NotFoundError(
                f"{self._entity.__name__} {entity.id} not found",
                operation="update",
                table=self._model.__tablename__,
            )

        for key, value in self._to_values(entity).items():
            if key in self.immutable_fields:
                continue
            if key == "updated_at" and value is None:
                # left to the column's onupdate
                continue
            setattr(row, key, value)

        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return self._to_domain(row)

    async def update_columns(
        self,
        id: UUID,
        values: dict[str, Any],
        *conditions,
    ) -> Optional[EntityType]:
        """
        Write only ``values`` to one row in a single UPDATE.

        Columns not named in ``values`` keep whatever is stored, so
        concurrent writers touching other columns are not overwritten.
        Extra ``conditions`` are added to the WHERE clause.

        Returns:
            The refreshed entity, or None when no row matched
        """
        stmt = (
            update(self._model)
            .where(self._model.id == id, *conditions)
            .values(**{key: to_column_value(value) for key, value in values.items()})
            .returning(self._model)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        row = result.scalars().first()
        return self._to_domain(row) if row is not None else None

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, row: ModelType) -> EntityType:
        return self._entity.model_validate(row, from_attributes=True)

    def _to_values(self, entity: EntityType) -> dict[str, Any]:
        return {
            key: to_column_value(value)
            for key, value in entity.model_dump().items()
        }
