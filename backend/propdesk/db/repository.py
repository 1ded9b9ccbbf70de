"""
Journal Repositories
PropDesk Challenge Platform

Data access for the journal tables. Snapshot tables (accounts, orders,
positions) are upserted by primary key; trades and violations are
insert-only.
"""

from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk.db.base import Base
from propdesk.db.models import (
    AccountRecord,
    OrderRecord,
    PositionRecord,
    TradeRecord,
    ViolationRecord,
)


ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Generic async repository."""

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    async def get(self, id: str) -> Optional[ModelType]:
        """Get a single record by ID."""
        return await self.session.get(self.model, id)

    async def get_all(
        self,
        *,
        skip: int = 0,
        limit: int = 100,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[ModelType]:
        """
        Get multiple records with optional equality filters.

        Args:
            skip: Number of records to skip
            limit: Maximum records to return
            filters: Dict of field_name -> value for filtering
        """
        query = select(self.model)
        conditions = self._conditions(filters)
        if conditions:
            query = query.where(and_(*conditions))

        result = await self.session.execute(query.offset(skip).limit(limit))
        return list(result.scalars().all())

    async def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        query = select(func.count()).select_from(self.model)
        conditions = self._conditions(filters)
        if conditions:
            query = query.where(and_(*conditions))
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def add(self, record: ModelType) -> ModelType:
        """Insert a new record."""
        self.session.add(record)
        await self.session.flush()
        return record

    async def upsert(self, record: ModelType) -> ModelType:
        """Insert or overwrite by primary key."""
        merged = await self.session.merge(record)
        await self.session.flush()
        return merged

    def _conditions(self, filters: Optional[Dict[str, Any]]) -> list:
        conditions = []
        for field_name, value in (filters or {}).items():
            field = getattr(self.model, field_name, None)
            if field is None:
                raise ValueError(f"Field {field_name} not found on {self.model.__name__}")
            conditions.append(field == value)
        return conditions


class AccountRepository(BaseRepository[AccountRecord]):
    def __init__(self, session: AsyncSession):
        super().__init__(AccountRecord, session)

    async def get_for_user(self, user_id: str, include_deleted: bool = False) -> List[AccountRecord]:
        query = select(self.model).where(self.model.user_id == user_id)
        if not include_deleted:
            query = query.where(self.model.deleted_at.is_(None))
        result = await self.session.execute(query.order_by(self.model.created_at))
        return list(result.scalars().all())


class OrderRepository(BaseRepository[OrderRecord]):
    def __init__(self, session: AsyncSession):
        super().__init__(OrderRecord, session)

    async def get_group(self, group_id: str) -> List[OrderRecord]:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.parent_order_id == group_id)
            .order_by(self.model.created_at)
        )
        return list(result.scalars().all())


class PositionRepository(BaseRepository[PositionRecord]):
    def __init__(self, session: AsyncSession):
        super().__init__(PositionRecord, session)

    async def get_open(self, account_id: str) -> List[PositionRecord]:
        return await self.get_all(filters={"account_id": account_id, "status": "open"}, limit=1000)


class TradeRepository(BaseRepository[TradeRecord]):
    def __init__(self, session: AsyncSession):
        super().__init__(TradeRecord, session)

    async def get_history(
        self,
        account_id: str,
        symbol: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[TradeRecord]:
        """Trade history, newest close first."""
        query = select(self.model).where(self.model.account_id == account_id)
        if symbol:
            query = query.where(self.model.symbol == symbol.upper())
        result = await self.session.execute(
            query.order_by(self.model.closed_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())


class ViolationRepository(BaseRepository[ViolationRecord]):
    def __init__(self, session: AsyncSession):
        super().__init__(ViolationRecord, session)

    async def get_for_account(self, account_id: str) -> List[ViolationRecord]:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.account_id == account_id)
            .order_by(self.model.created_at.desc())
        )
        return list(result.scalars().all())
