# salesync/services/analytics_service.py
"""
Sales ledger queries: filtered sale lists, totals, manual entry and cost
basis updates. Cost is the one column users edit after import; the sync
engine never writes it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.enums import PlatformName
from salesync.integrations.base import round_money, utc_now
from salesync.models.sale import Sale
from salesync.schemas.sales import SaleCreate, SalesStats

logger = logging.getLogger(__name__)


@dataclass
class SalesFilter:
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    platform: Optional[PlatformName] = None
    limit: int = 100
    offset: int = 0


class SalesAnalyticsService:

    def __init__(self, db: AsyncSession):
        self.db = db

    def _scoped(self, stmt, user_id: str, start_date=None, end_date=None, platform=None):
        stmt = stmt.where(Sale.user_id == user_id)
        if start_date:
            stmt = stmt.where(Sale.sold_at >= start_date)
        if end_date:
            stmt = stmt.where(Sale.sold_at <= end_date)
        if platform:
            stmt = stmt.where(Sale.platform == PlatformName(platform).value)
        return stmt

    async def get_sales(self, user_id: str, filters: Optional[SalesFilter] = None) -> List[Sale]:
        """Newest first."""
        filters = filters or SalesFilter()
        stmt = self._scoped(select(Sale), user_id, filters.start_date, filters.end_date, filters.platform)
        stmt = stmt.order_by(Sale.sold_at.desc(), Sale.id.desc()).limit(filters.limit).offset(filters.offset)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_sale(self, user_id: str, sale_id: int) -> Optional[Sale]:
        result = await self.db.execute(select(Sale).where(Sale.id == sale_id, Sale.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_stats(
        self,
        user_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> SalesStats:
        stmt = self._scoped(
            select(
                func.count(Sale.id),
                func.coalesce(func.sum(Sale.sale_price), 0.0),
                func.coalesce(func.sum(Sale.profit), 0.0),
            ),
            user_id,
            start_date,
            end_date,
        )
        count, revenue, profit = (await self.db.execute(stmt)).one()
        count = count or 0

        return SalesStats(
            total_revenue=round_money(revenue or 0),
            total_profit=round_money(profit or 0),
            total_sales=count,
            avg_profit=round_money(profit / count) if count else 0.0,
            avg_sale_price=round_money(revenue / count) if count else 0.0,
        )

    async def record_sale(self, user_id: str, data: SaleCreate) -> Sale:
        """Manually entered sale. No external id, so it never collides with imports."""
        sale = Sale(
            user_id=user_id,
            platform=data.platform.value,
            external_id=None,
            listing_id=data.listing_id,
            sale_price=round_money(data.sale_price),
            shipping_cost=round_money(data.shipping_cost),
            platform_fees=round_money(data.platform_fees),
            cost=round_money(data.cost),
            buyer_username=data.buyer_username,
            sold_at=data.sold_at or utc_now(),
            item_title=data.item_title,
            item_image_url=data.item_image_url,
        )
        self.db.add(sale)
        await self.db.commit()
        await self.db.refresh(sale)
        logger.info(f"Recorded manual {sale.platform} sale {sale.id} for user {user_id}")
        return sale

    async def update_cost(self, user_id: str, sale_id: int, cost: float) -> Optional[Sale]:
        sale = await self.get_sale(user_id, sale_id)
        if sale is None:
            return None
        sale.cost = round_money(cost)
        await self.db.commit()
        await self.db.refresh(sale)
        return sale

    async def delete_sale(self, user_id: str, sale_id: int) -> bool:
        sale = await self.get_sale(user_id, sale_id)
        if sale is None:
            return False
        await self.db.delete(sale)
        await self.db.commit()
        return True
