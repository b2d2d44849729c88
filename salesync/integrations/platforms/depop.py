"""
Depop adapter.

Depop has no public OAuth. Credentials are exchanged for tokens through a
small auth proxy (DEPOP_AUTH_PROXY_URL) that also handles refresh; the proxy
is authenticated with a shared secret header.

The sales endpoint is cursor paginated (meta.last_offset_id / meta.end) and
returns newest first with plain decimal prices.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from salesync.core.enums import PlatformName, ListingStatus
from salesync.core.exceptions import (
    AuthExchangeError,
    FetchError,
    PlatformAPIError,
    TokenRefreshError,
)
from salesync.integrations.base import (
    FeeBreakdown,
    ListingData,
    MarketplaceAdapter,
    PlatformListing,
    SaleImportRecord,
    SalesQuery,
    TokenPair,
    ensure_utc,
    fee_breakdown,
    parse_timestamp,
    round_money,
)

logger = logging.getLogger(__name__)

CONDITION_MAP = {
    "new": "NEW_WITH_TAGS",
    "like new": "NEW_WITHOUT_TAGS",
    "very good": "VERY_GOOD",
    "good": "GOOD",
    "acceptable": "USED",
}

PAID_STATUSES = {"PAID", "SHIPPED", "DELIVERED", "COMPLETED", "SOLD"}


def _decimal(value: Any) -> float:
    """Depop prices come as "12.50", 12.5 or {"amount": "12.50"}."""
    if isinstance(value, dict):
        value = value.get("amount") or value.get("price_amount")
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class DepopAdapter(MarketplaceAdapter):

    platform = PlatformName.DEPOP
    supports_oauth = False

    FEE_RATE = 0.10
    PROCESSING_RATE = 0.029
    PROCESSING_FIXED = 0.30

    def __init__(self, api_url: str, auth_proxy_url: str = "", proxy_secret: str = "", **kwargs):
        super().__init__(**kwargs)
        self.api_url = api_url.rstrip("/")
        self.auth_proxy_url = auth_proxy_url
        self.proxy_secret = proxy_secret

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    async def _proxy(self, payload: Dict[str, Any]) -> httpx.Response:
        if not self.auth_proxy_url:
            raise PlatformAPIError("Depop auth proxy is not configured", platform=self.platform.value)

        headers = {"Content-Type": "application/json"}
        if self.proxy_secret:
            headers["X-Proxy-Secret"] = self.proxy_secret
        return await self._request("POST", self.auth_proxy_url, json=payload, headers=headers)

    # Auth

    def get_auth_url(self, state: Optional[str] = None) -> str:
        raise PlatformAPIError(
            "Depop does not support browser OAuth; connect with your Depop login instead",
            platform=self.platform.value,
        )

    async def exchange_code(self, code: str, state: Optional[str] = None) -> TokenPair:
        raise AuthExchangeError(
            "Depop does not issue authorization codes; connect with your Depop login instead",
            platform=self.platform.value,
        )

    async def login(self, username: str, password: str) -> TokenPair:
        """Username/password -> tokens via the auth proxy."""
        try:
            response = await self._proxy({"action": "login", "username": username, "password": password})
        except httpx.RequestError as e:
            logger.error(f"Network error reaching Depop auth proxy: {e}")
            raise AuthExchangeError(f"Failed to reach Depop auth proxy: {e}", platform=self.platform.value)

        if response.status_code != 200:
            message = self._error_message(response)
            logger.error(f"Depop login failed ({response.status_code}): {message}")
            raise AuthExchangeError(message, platform=self.platform.value, status_code=response.status_code)

        logger.info(f"Depop login succeeded for {username}")
        return TokenPair.from_token_response(response.json(), default_expires_in=3600)

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        if not refresh_token:
            raise TokenRefreshError("No Depop refresh token stored", platform=self.platform.value)

        try:
            response = await self._proxy({"action": "refresh", "refresh_token": refresh_token})
        except httpx.RequestError as e:
            logger.error(f"Network error refreshing Depop token: {e}")
            raise PlatformAPIError(f"Network error refreshing Depop token: {e}", platform=self.platform.value)

        if response.status_code != 200:
            message = self._error_message(response)
            logger.error(f"Depop token refresh failed ({response.status_code}): {message}")
            raise TokenRefreshError(message, platform=self.platform.value, status_code=response.status_code)

        return TokenPair.from_token_response(
            response.json(),
            fallback_refresh_token=refresh_token,
            default_expires_in=3600,
        )

    # Sales

    @staticmethod
    def _is_paid(sale: Dict[str, Any]) -> bool:
        status = sale.get("status")
        # Older payloads carry no status; everything on the sales feed was paid for
        return status is None or str(status).upper() in PAID_STATUSES

    def _normalize_sale(self, sale: Dict[str, Any]) -> SaleImportRecord:
        product = sale.get("product") or {}
        pictures = product.get("pictures") or product.get("photos") or []
        first_picture = pictures[0] if pictures else ""
        if isinstance(first_picture, dict):
            first_picture = first_picture.get("url") or ""

        price = _decimal(sale.get("price") or sale.get("total_price"))
        fees = sale.get("fees")
        slug = product.get("slug") or product.get("id")
        description = product.get("description") or product.get("title") or "Unknown"

        return SaleImportRecord(
            platform=self.platform,
            title=description.splitlines()[0][:140] if description else "Unknown",
            price=round_money(price),
            sold_at=parse_timestamp(sale.get("date") or sale.get("sold_at") or sale.get("created_at")),
            external_id=str(sale["id"]) if sale.get("id") else None,
            shipping_cost=round_money(_decimal(sale.get("shipping_price") or sale.get("shipping_cost"))),
            platform_fees=round_money(_decimal(fees)) if fees is not None else self.calculate_fees(price).total_fees,
            buyer_username=(sale.get("buyer") or {}).get("username"),
            condition=product.get("condition") or "",
            image_url=first_picture,
            url=f"https://www.depop.com/products/{slug}" if slug else "",
        )

    async def get_sales(
        self,
        query: SalesQuery,
        access_token: str,
        account_id: Optional[str] = None,
    ) -> List[SaleImportRecord]:
        limit = min(query.limit or self.page_limit, 100)
        params: Dict[str, Any] = {"limit": limit}
        start = ensure_utc(query.start_date) if query.start_date else None
        end = ensure_utc(query.end_date) if query.end_date else None

        records: List[SaleImportRecord] = []
        reached_start = False

        for page in range(self.max_pages):
            try:
                response = await self._request(
                    "GET",
                    f"{self.api_url}/sales",
                    headers=self._headers(access_token),
                    params=params,
                )
            except httpx.RequestError as e:
                logger.error(f"Network error fetching Depop sales page {page + 1}: {e}")
                break

            if response.status_code == 401 and not records:
                raise FetchError("Depop rejected the access token", platform=self.platform.value, status_code=401)
            if response.status_code != 200:
                logger.error(
                    f"Depop sales page {page + 1} failed ({response.status_code}): "
                    f"{self._error_message(response)}"
                )
                break

            data = response.json()
            sales = data.get("sales") or data.get("objects") or []
            for sale in sales:
                if not self._is_paid(sale):
                    continue
                record = self._normalize_sale(sale)
                if record.sold_at and start and record.sold_at < start:
                    # Newest first, nothing older is wanted
                    reached_start = True
                    break
                if record.sold_at and end and record.sold_at > end:
                    continue
                records.append(record)

            meta = data.get("meta") or {}
            if reached_start or meta.get("end") or not meta.get("last_offset_id") or len(sales) < limit:
                break
            params["offset_id"] = meta["last_offset_id"]
        else:
            logger.warning(f"Depop sales pagination stopped at the {self.max_pages} page cap")

        logger.info(f"Depop get_sales: {len(records)} sales")
        return records

    # Listings

    async def create_listing(self, listing: ListingData, access_token: str, account_id: Optional[str] = None) -> PlatformListing:
        response = await self._request(
            "POST",
            f"{self.api_url}/products",
            headers=self._headers(access_token),
            json={
                "description": f"{listing.title}\n\n{listing.description}".strip(),
                "price": listing.price,
                "currency": "USD",
                "condition": self.map_condition(listing.condition),
                "photos": listing.images,
                "categories": [listing.category] if listing.category else [],
            },
        )
        if response.status_code not in (200, 201):
            raise PlatformAPIError(
                f"Failed to create Depop listing: {self._error_message(response)}",
                platform=self.platform.value,
                status_code=response.status_code,
            )

        data = response.json()
        external_id = str(data.get("id") or data.get("slug"))
        return PlatformListing(
            external_id=external_id,
            url=f"https://www.depop.com/products/{data.get('slug') or external_id}",
            title=listing.title,
            price=listing.price,
            images=listing.images,
        )

    async def update_listing(
        self,
        external_id: str,
        changes: Dict[str, Any],
        access_token: str,
        account_id: Optional[str] = None,
    ) -> PlatformListing:
        body = {key: changes[key] for key in ("price", "description") if changes.get(key) is not None}
        response = await self._request(
            "PATCH",
            f"{self.api_url}/products/{external_id}",
            headers=self._headers(access_token),
            json=body,
        )
        if response.status_code != 200:
            raise PlatformAPIError(
                f"Failed to update Depop listing {external_id}",
                platform=self.platform.value,
                status_code=response.status_code,
            )
        return PlatformListing(
            external_id=external_id,
            url=f"https://www.depop.com/products/{external_id}",
            price=body.get("price"),
        )

    async def delete_listing(self, external_id: str, access_token: str, account_id: Optional[str] = None) -> None:
        response = await self._request(
            "DELETE",
            f"{self.api_url}/products/{external_id}",
            headers=self._headers(access_token),
        )
        if response.status_code not in (200, 204, 404):
            raise PlatformAPIError(
                f"Failed to delete Depop listing {external_id}",
                platform=self.platform.value,
                status_code=response.status_code,
            )

    async def get_listings(self, access_token: str, account_id: Optional[str] = None) -> List[PlatformListing]:
        response = await self._request(
            "GET",
            f"{self.api_url}/products/me",
            headers=self._headers(access_token),
            params={"limit": 100},
        )
        if response.status_code != 200:
            logger.error(f"Depop get_listings failed ({response.status_code})")
            return []

        listings = []
        for product in response.json().get("products") or []:
            slug = product.get("slug") or product.get("id")
            listings.append(PlatformListing(
                external_id=str(product.get("id")),
                url=f"https://www.depop.com/products/{slug}",
                status=ListingStatus.SOLD if product.get("status") == "SOLD" else ListingStatus.ACTIVE,
                title=(product.get("description") or "").splitlines()[0] if product.get("description") else "",
                price=_decimal(product.get("price")) or None,
            ))
        return listings

    # Helpers

    def calculate_fees(self, price: float) -> FeeBreakdown:
        return fee_breakdown(
            price,
            price * self.FEE_RATE,
            price * self.PROCESSING_RATE + self.PROCESSING_FIXED,
        )

    def map_condition(self, condition: str) -> str:
        return CONDITION_MAP.get((condition or "").lower(), "GOOD")
