"""
Keyset pagination shared by all repositories.

The backing store caps every query at `store_max_rows` rows, so full-table
scans walk an ascending cursor column (`WHERE cursor > :last ORDER BY cursor
LIMIT n`). Offsets are never used: rows inserted mid-scan would shift them.
"""

from typing import Any, AsyncIterator, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from deliveryiq.config import settings
from deliveryiq.db.engine import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Cursor-paged reads over one table."""

    def __init__(self, model: Type[ModelT], cursor: str = "id"):
        self.model = model
        self.cursor_name = cursor

    @property
    def cursor(self):
        return getattr(self.model, self.cursor_name)

    def page_limit(self, limit: Optional[int] = None) -> int:
        """Requested page size, clamped to the store's row cap."""
        if limit is None or limit <= 0:
            limit = settings.store_max_rows
        return min(limit, settings.store_max_rows)

    async def fetch_page(
        self,
        db: AsyncSession,
        after: Optional[Any] = None,
        limit: Optional[int] = None,
        stmt: Optional[Select] = None,
        scalars: bool = True,
    ) -> Sequence[Any]:
        """
        One page of rows strictly after `after` on the cursor column.

        `stmt` narrows the scan (extra WHERE clauses, column selects). Column
        selects must include the cursor column and should pass scalars=False.
        """
        if stmt is None:
            stmt = select(self.model)
        if after is not None:
            stmt = stmt.where(self.cursor > after)
        stmt = stmt.order_by(self.cursor.asc()).limit(self.page_limit(limit))

        result = await db.execute(stmt)
        return result.scalars().all() if scalars else result.all()

    async def iter_pages(
        self,
        db: AsyncSession,
        stmt: Optional[Select] = None,
        limit: Optional[int] = None,
        scalars: bool = True,
        after: Optional[Any] = None,
    ) -> AsyncIterator[Sequence[Any]]:
        """Yield successive pages until a short page ends the scan."""
        page_size = self.page_limit(limit)
        while True:
            page = await self.fetch_page(db, after=after, limit=page_size, stmt=stmt, scalars=scalars)
            if page:
                yield page
            if len(page) < page_size:
                return
            after = getattr(page[-1], self.cursor_name)

    async def get(self, db: AsyncSession, key: Any) -> Optional[ModelT]:
        result = await db.execute(select(self.model).where(self.cursor == key))
        return result.scalar_one_or_none()
