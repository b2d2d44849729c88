# salesync/schemas/sales.py
from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from salesync.core.enums import PlatformName, SyncErrorKind
from .base import BaseSchema


class SaleRead(BaseSchema):
    id: int
    platform: str
    external_id: Optional[str] = None
    listing_id: Optional[str] = None
    sale_price: float
    shipping_cost: float
    platform_fees: float
    cost: float
    profit: float
    buyer_username: Optional[str] = None
    sold_at: datetime
    item_title: Optional[str] = None
    item_image_url: Optional[str] = None


class SaleCreate(BaseSchema):
    """Manually recorded sale (not imported from a marketplace)."""
    platform: PlatformName
    sale_price: float = Field(ge=0)
    shipping_cost: float = Field(default=0.0, ge=0)
    platform_fees: float = Field(default=0.0, ge=0)
    cost: float = Field(default=0.0, ge=0)
    buyer_username: Optional[str] = None
    sold_at: Optional[datetime] = None
    listing_id: Optional[str] = None
    item_title: Optional[str] = None
    item_image_url: Optional[str] = None


class SaleCostUpdate(BaseSchema):
    cost: float = Field(ge=0)


class SalesStats(BaseSchema):
    total_revenue: float = 0.0
    total_profit: float = 0.0
    total_sales: int = 0
    avg_profit: float = 0.0
    avg_sale_price: float = 0.0


class SyncErrorRead(BaseSchema):
    platform: str
    reason: str
    kind: SyncErrorKind

    @field_validator("platform", mode="before")
    @classmethod
    def _platform_value(cls, value):
        return getattr(value, "value", value)


class PlatformSyncRead(BaseSchema):
    platform: str
    fetched: int
    inserted: int
    already_present: int
    dropped: int

    @field_validator("platform", mode="before")
    @classmethod
    def _platform_value(cls, value):
        return getattr(value, "value", value)


class SyncResultRead(BaseSchema):
    synced: int
    total: int
    errors: List[SyncErrorRead] = []
    platforms: List[PlatformSyncRead] = []
    skipped: bool = False
    summary: str = ""
