"""Async repository pattern for database access.

Provides a generic base repository with CRUD operations over one model.
Verticals subclass this to add domain-specific queries.

Example: ProductRepository extending BaseRepository.
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.models.base import Base

# ---------------------------------------------------------------------------
# Type variable for model classes
# ---------------------------------------------------------------------------

ModelT = TypeVar("ModelT", bound=Base)

_IMMUTABLE_COLUMNS = ("id", "created_at")


# ---------------------------------------------------------------------------
# Base repository
# ---------------------------------------------------------------------------

class BaseRepository(Generic[ModelT]):
    """Generic async repository.

    Subclass and set `model` to your SQLAlchemy model::

        class ProductRepository(BaseRepository[Product]):
            model = Product

            async def get_for_update(self, product_id: str):
                stmt = select(self.model).where(self.model.id == product_id)
                result = await self.session.execute(stmt.with_for_update())
                return result.scalar_one_or_none()

    The repository never commits; transaction boundaries belong to the caller.
    """

    model: type[ModelT]

    def __init__(self, session: AsyncSession):
        self.session = session

    # -- Get by ID --

    async def get(self, item_id: str) -> ModelT | None:
        """Get a single row by primary key."""
        stmt = select(self.model).where(self.model.id == item_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # -- Create --

    async def create(self, data: dict[str, Any]) -> ModelT:
        """Create and flush a new row."""
        item = self.model(**data)
        self.session.add(item)
        await self.session.flush()
        return item

    # -- Update --

    async def update(self, item_id: str, data: dict[str, Any]) -> ModelT | None:
        """Update an existing row. Returns None if not found."""
        item = await self.get(item_id)
        if item is None:
            return None

        for key, value in data.items():
            if hasattr(item, key) and key not in _IMMUTABLE_COLUMNS:
                setattr(item, key, value)

        await self.session.flush()
        return item

    # -- Delete --

    async def delete(self, item_id: str) -> bool:
        """Delete a row. Returns True if deleted, False if not found."""
        item = await self.get(item_id)
        if item is None:
            return False

        await self.session.delete(item)
        await self.session.flush()
        return True
