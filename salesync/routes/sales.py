# salesync/routes/sales.py
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.enums import PlatformName
from salesync.core.exceptions import SyncError
from salesync.core.security import get_current_user_id
from salesync.dependencies import get_db, get_sync_service
from salesync.schemas.sales import (
    PlatformSyncRead,
    SaleCostUpdate,
    SaleCreate,
    SaleRead,
    SalesStats,
    SyncErrorRead,
    SyncResultRead,
)
from salesync.services.analytics_service import SalesAnalyticsService, SalesFilter
from salesync.services.sales_sync_service import SalesSyncService, SyncResult

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/sales", tags=["sales"])


def to_sync_result_read(result: SyncResult) -> SyncResultRead:
    return SyncResultRead(
        synced=result.synced,
        total=result.total,
        errors=[
            SyncErrorRead(platform=e.platform, reason=e.reason, kind=e.kind)
            for e in result.errors
        ],
        platforms=[
            PlatformSyncRead(
                platform=p.platform,
                fetched=p.fetched,
                inserted=p.inserted,
                already_present=p.already_present,
                dropped=p.dropped,
            )
            for p in result.platforms
        ],
        skipped=result.skipped,
        summary=result.summary,
    )


@router.post("/sync", response_model=SyncResultRead)
async def sync_sales(
    start_date: Optional[datetime] = None,
    force: bool = False,
    user_id: str = Depends(get_current_user_id),
    sync_service: SalesSyncService = Depends(get_sync_service),
):
    """
    Pull sales from every connected marketplace.

    Per-platform failures come back in `errors`; the request itself only
    fails when the run could not start.
    """
    try:
        result = await sync_service.sync_platform_sales(user_id, start_date=start_date, force=force)
    except SyncError as e:
        logger.error(f"Sales sync for user {user_id} could not run: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    return to_sync_result_read(result)


@router.get("", response_model=List[SaleRead])
async def list_sales(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    platform: Optional[PlatformName] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    service = SalesAnalyticsService(db)
    sales = await service.get_sales(
        user_id,
        SalesFilter(start_date=start_date, end_date=end_date, platform=platform, limit=limit, offset=offset),
    )
    return [SaleRead.from_orm_model(sale) for sale in sales]


@router.get("/stats", response_model=SalesStats)
async def sales_stats(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await SalesAnalyticsService(db).get_stats(user_id, start_date, end_date)


@router.post("", response_model=SaleRead, status_code=201)
async def create_sale(
    sale: SaleCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    created = await SalesAnalyticsService(db).record_sale(user_id, sale)
    return SaleRead.from_orm_model(created)


@router.patch("/{sale_id}/cost", response_model=SaleRead)
async def update_sale_cost(
    sale_id: int,
    update: SaleCostUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    sale = await SalesAnalyticsService(db).update_cost(user_id, sale_id, update.cost)
    if sale is None:
        raise HTTPException(status_code=404, detail=f"Sale {sale_id} not found")
    return SaleRead.from_orm_model(sale)


@router.delete("/{sale_id}", status_code=204)
async def delete_sale(
    sale_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    if not await SalesAnalyticsService(db).delete_sale(user_id, sale_id):
        raise HTTPException(status_code=404, detail=f"Sale {sale_id} not found")
