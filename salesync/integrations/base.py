"""
Marketplace adapter contract.

Every supported marketplace implements MarketplaceAdapter. The sync engine
only ever talks to this interface, so pagination, status filtering and price
encoding differences stay inside the platform modules.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from salesync.core.enums import PlatformName, ListingStatus

logger = logging.getLogger(__name__)


def round_money(value: float) -> float:
    return round(float(value), 2)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    # Naive datetimes are treated as UTC (SQLite drops tzinfo on read)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string or unix epoch seconds -> aware UTC datetime."""
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        logger.warning(f"Unparseable timestamp from provider: {value}")
        return None


def fee_breakdown(price: float, final_value_fee: float, processing_fee: float) -> "FeeBreakdown":
    total = final_value_fee + processing_fee
    return FeeBreakdown(
        final_value_fee=round_money(final_value_fee),
        payment_processing_fee=round_money(processing_fee),
        total_fees=round_money(total),
        net_proceeds=round_money(price - total),
    )


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str = ""
    expires_at: Optional[datetime] = None

    @classmethod
    def from_token_response(
        cls,
        data: Dict[str, Any],
        fallback_refresh_token: str = "",
        default_expires_in: Optional[int] = None,
    ) -> "TokenPair":
        """Build a pair from a standard OAuth token response body."""
        expires_in = data.get("expires_in") or default_expires_in
        expires_at = utc_now() + timedelta(seconds=int(expires_in)) if expires_in else None
        return cls(
            access_token=data["access_token"],
            # Providers may omit the refresh token on refresh; keep the old one
            refresh_token=data.get("refresh_token") or fallback_refresh_token or "",
            expires_at=expires_at,
        )


@dataclass
class FeeBreakdown:
    final_value_fee: float
    payment_processing_fee: float
    total_fees: float
    net_proceeds: float


@dataclass
class SalesQuery:
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: int = 200


@dataclass
class SaleImportRecord:
    """Normalized sale handed from an adapter to the import engine."""
    platform: PlatformName
    title: str
    price: float
    sold_at: Optional[datetime] = None
    external_id: Optional[str] = None
    shipping_cost: float = 0.0
    platform_fees: float = 0.0
    buyer_username: Optional[str] = None
    condition: str = ""
    image_url: str = ""
    url: str = ""


@dataclass
class ListingData:
    title: str
    price: float
    description: str = ""
    category: str = ""
    condition: str = ""
    images: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)


@dataclass
class PlatformListing:
    external_id: str
    url: str
    status: ListingStatus = ListingStatus.ACTIVE
    title: str = ""
    price: Optional[float] = None
    images: List[str] = field(default_factory=list)
    platform_data: Dict[str, Any] = field(default_factory=dict)


class MarketplaceAdapter(ABC):
    """Capability set shared by every marketplace integration."""

    platform: PlatformName
    supports_oauth: bool = True

    def __init__(self, timeout: float = 30.0, page_limit: int = 200, max_pages: int = 50):
        self.timeout = timeout
        self.page_limit = page_limit
        self.max_pages = max_pages

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Single HTTP round trip. Network errors propagate as httpx.RequestError."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Best-effort extraction of the provider's error text."""
        try:
            data = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(data, dict):
            for key in ("error_description", "error_msg", "message", "error"):
                value = data.get(key)
                if isinstance(value, str) and value:
                    return value
            errors = data.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                return errors[0].get("message") or str(errors[0])
        return response.text or f"HTTP {response.status_code}"

    # OAuth

    @abstractmethod
    def get_auth_url(self, state: Optional[str] = None) -> str:
        """Provider authorization URL for the connect flow"""
        pass

    @abstractmethod
    async def exchange_code(self, code: str, state: Optional[str] = None) -> TokenPair:
        """Trade an authorization code for credentials (AuthExchangeError on failure)"""
        pass

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> TokenPair:
        """New access token without user interaction (TokenRefreshError on failure)"""
        pass

    async def get_account_info(self, access_token: str) -> Dict[str, Optional[str]]:
        """Platform account id / display name for a fresh connection, when the provider has one."""
        return {}

    # Sales

    @abstractmethod
    async def get_sales(
        self,
        query: SalesQuery,
        access_token: str,
        account_id: Optional[str] = None,
    ) -> List[SaleImportRecord]:
        """Completed sales, all pages, normalized"""
        pass

    # Listings

    @abstractmethod
    async def create_listing(self, listing: ListingData, access_token: str, account_id: Optional[str] = None) -> PlatformListing:
        pass

    @abstractmethod
    async def update_listing(
        self,
        external_id: str,
        changes: Dict[str, Any],
        access_token: str,
        account_id: Optional[str] = None,
    ) -> PlatformListing:
        pass

    @abstractmethod
    async def delete_listing(self, external_id: str, access_token: str, account_id: Optional[str] = None) -> None:
        pass

    @abstractmethod
    async def get_listings(self, access_token: str, account_id: Optional[str] = None) -> List[PlatformListing]:
        pass

    # Helpers

    @abstractmethod
    def calculate_fees(self, price: float) -> FeeBreakdown:
        pass

    @abstractmethod
    def map_condition(self, condition: str) -> str:
        pass
