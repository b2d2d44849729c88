"""
eBay marketplace adapter.

Auth: OAuth2 authorization-code grant with client credentials in a Basic
header (https://developer.ebay.com/api-docs/static/oauth-tokens.html).

Sales come from the Fulfillment API (offset/limit pagination, decimal-string
prices). Fees are derived from the seller payout where eBay reports one and
estimated otherwise. Shipping label costs are only visible in the Finances
API and are merged in best-effort.

Active listings use the Trading API (GetMyeBaySelling) because it also sees
listings created outside the Inventory API.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, quote

import httpx
import xmltodict

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
    utc_now,
)

logger = logging.getLogger(__name__)

CONDITION_MAP = {
    "new": "NEW",
    "like new": "LIKE_NEW",
    "very good": "USED_VERY_GOOD",
    "good": "USED_GOOD",
    "acceptable": "USED_ACCEPTABLE",
    "for parts": "FOR_PARTS_OR_NOT_WORKING",
}

PAID_PAYMENT_STATUSES = {"PAID"}
COMPLETED_FULFILLMENT_STATUSES = {"FULFILLED"}

DEFAULT_CATEGORY_ID = "175672"


def _ebay_timestamp(value: datetime) -> str:
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _amount(node: Optional[Dict[str, Any]]) -> float:
    if not node:
        return 0.0
    try:
        return float(node.get("value") or 0)
    except (TypeError, ValueError):
        return 0.0


def _as_list(value: Any) -> List[Any]:
    # xmltodict returns a dict for a single child and a list for several
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _text(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("#text", ""))
    return "" if value is None else str(value)


class EbayAdapter(MarketplaceAdapter):
    """eBay Sell APIs (Fulfillment, Finances, Inventory) plus Trading API for listings."""

    platform = PlatformName.EBAY

    SCOPES = [
        "https://api.ebay.com/oauth/api_scope",
        "https://api.ebay.com/oauth/api_scope/sell.inventory",
        "https://api.ebay.com/oauth/api_scope/sell.account",
        "https://api.ebay.com/oauth/api_scope/sell.fulfillment",
        "https://api.ebay.com/oauth/api_scope/sell.finances",
    ]

    FEE_RATE = 0.1325         # final value fee, payment processing included
    PER_ORDER_FEE = 0.30

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        ru_name: str,
        sandbox: bool = False,
        marketplace_id: str = "EBAY_US",
        lookback_days: int = 3 * 365,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.ru_name = ru_name
        self.sandbox = sandbox
        self.marketplace_id = marketplace_id
        self.lookback_days = lookback_days

        if sandbox:
            self.auth_url = "https://auth.sandbox.ebay.com/oauth2/authorize"
            self.api_base = "https://api.sandbox.ebay.com"
            self.finances_base = "https://apiz.sandbox.ebay.com"
        else:
            self.auth_url = "https://auth.ebay.com/oauth2/authorize"
            self.api_base = "https://api.ebay.com"
            self.finances_base = "https://apiz.ebay.com"

        self.token_url = f"{self.api_base}/identity/v1/oauth2/token"
        self.trading_url = f"{self.api_base}/ws/api.dll"
        self.fulfillment_api = f"{self.api_base}/sell/fulfillment/v1"
        self.inventory_api = f"{self.api_base}/sell/inventory/v1"

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Content-Language": "en-US",
            "X-EBAY-C-MARKETPLACE-ID": self.marketplace_id,
        }

    # OAuth

    def get_auth_url(self, state: Optional[str] = None) -> str:
        if not self.client_id or not self.ru_name:
            raise PlatformAPIError("eBay OAuth is not configured", platform=self.platform.value)

        params = {
            "client_id": self.client_id,
            "redirect_uri": self.ru_name,
            "response_type": "code",
            "scope": " ".join(self.SCOPES),
        }
        if state:
            params["state"] = state
        return f"{self.auth_url}?{urlencode(params, quote_via=quote)}"

    async def _token_request(self, data: Dict[str, str]) -> httpx.Response:
        return await self._request(
            "POST",
            self.token_url,
            data=data,
            auth=httpx.BasicAuth(self.client_id, self.client_secret),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    async def exchange_code(self, code: str, state: Optional[str] = None) -> TokenPair:
        try:
            response = await self._token_request({
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.ru_name,
            })
        except httpx.RequestError as e:
            logger.error(f"Network error exchanging eBay code: {e}")
            raise AuthExchangeError(f"Network error contacting eBay: {e}", platform=self.platform.value)

        if response.status_code != 200:
            message = self._error_message(response)
            logger.error(f"eBay code exchange failed ({response.status_code}): {message}")
            raise AuthExchangeError(message, platform=self.platform.value, status_code=response.status_code)

        logger.info("eBay authorization code exchanged")
        return TokenPair.from_token_response(response.json(), default_expires_in=7200)

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        if not refresh_token:
            raise TokenRefreshError("No eBay refresh token stored", platform=self.platform.value)

        try:
            response = await self._token_request({
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "scope": " ".join(self.SCOPES),
            })
        except httpx.RequestError as e:
            logger.error(f"Network error refreshing eBay token: {e}")
            raise PlatformAPIError(f"Network error refreshing eBay token: {e}", platform=self.platform.value)

        if response.status_code != 200:
            message = self._error_message(response)
            logger.error(f"eBay token refresh failed ({response.status_code}): {message}")
            raise TokenRefreshError(message, platform=self.platform.value, status_code=response.status_code)

        logger.info("Refreshed eBay access token")
        return TokenPair.from_token_response(
            response.json(),
            fallback_refresh_token=refresh_token,
            default_expires_in=7200,
        )

    # Sales

    @staticmethod
    def _is_completed(order: Dict[str, Any]) -> bool:
        return (
            order.get("orderPaymentStatus") in PAID_PAYMENT_STATUSES
            or order.get("orderFulfillmentStatus") in COMPLETED_FULFILLMENT_STATUSES
        )

    def _normalize_order(self, order: Dict[str, Any]) -> SaleImportRecord:
        line_items = order.get("lineItems") or []
        pricing = order.get("pricingSummary") or {}
        payment_summary = order.get("paymentSummary") or {}

        first_item = line_items[0] if line_items else {}
        title = first_item.get("title") or "Unknown Item"
        if len(line_items) > 1:
            title = f"{title} (+{len(line_items) - 1} more)"

        subtotal = _amount(pricing.get("priceSubtotal"))
        pricing_total = _amount(pricing.get("total"))
        # Delivery actually charged, after any delivery discount
        net_delivery = max(0.0, pricing_total - subtotal)
        gross = pricing_total if pricing_total > 0 else subtotal

        payout = 0.0
        if payment_summary.get("totalDueSeller"):
            payout = _amount(payment_summary["totalDueSeller"])
        else:
            for payment in payment_summary.get("payments") or []:
                payout += _amount(payment.get("amount"))

        if payout > 0:
            fees = max(0.0, round_money(gross - payout))
        else:
            fees = self.calculate_fees(subtotal).total_fees

        return SaleImportRecord(
            platform=self.platform,
            title=title,
            price=round_money(gross),
            sold_at=parse_timestamp(order.get("creationDate")),
            external_id=order.get("orderId"),
            shipping_cost=round_money(net_delivery),
            platform_fees=fees,
            buyer_username=(order.get("buyer") or {}).get("username"),
            condition=first_item.get("condition") or "",
            image_url=(first_item.get("image") or {}).get("imageUrl") or "",
            url=f"https://www.ebay.com/itm/{first_item['legacyItemId']}" if first_item.get("legacyItemId") else "",
        )

    async def get_sales(
        self,
        query: SalesQuery,
        access_token: str,
        account_id: Optional[str] = None,
    ) -> List[SaleImportRecord]:
        # Without a date filter eBay only returns the last 90 days
        start = query.start_date or utc_now() - timedelta(days=self.lookback_days)
        end = query.end_date or utc_now()
        limit = min(query.limit or self.page_limit, 200)

        params = {
            "limit": limit,
            "offset": 0,
            "filter": f"creationdate:[{_ebay_timestamp(start)}..{_ebay_timestamp(end)}]",
        }

        records: List[SaleImportRecord] = []
        fetched_orders = 0

        for page in range(self.max_pages):
            try:
                response = await self._request(
                    "GET",
                    f"{self.fulfillment_api}/order",
                    headers=self._headers(access_token),
                    params=params,
                )
            except httpx.RequestError as e:
                logger.error(f"Network error fetching eBay orders page {page + 1}: {e}")
                break

            if response.status_code == 401 and not records:
                raise FetchError("eBay rejected the access token", platform=self.platform.value, status_code=401)
            if response.status_code != 200:
                logger.error(
                    f"eBay orders page {page + 1} failed ({response.status_code}): "
                    f"{self._error_message(response)}"
                )
                break

            orders = response.json().get("orders") or []
            fetched_orders += len(orders)
            for order in orders:
                if self._is_completed(order):
                    records.append(self._normalize_order(order))

            if len(orders) < limit:
                break
            params["offset"] += len(orders)
        else:
            logger.warning(f"eBay order pagination stopped at the {self.max_pages} page cap")

        label_costs = await self._get_shipping_label_costs(access_token, query.start_date)
        for record in records:
            label_cost = label_costs.get(record.external_id or "")
            if label_cost:
                record.shipping_cost = round_money(label_cost)

        logger.info(
            f"eBay get_sales: {fetched_orders} orders fetched, {len(records)} completed, "
            f"{len(label_costs)} shipping labels"
        )
        return records

    async def _get_shipping_label_costs(self, access_token: str, start_date: Optional[datetime]) -> Dict[str, float]:
        """Shipping label spend per order id. Failures only cost accuracy, never the sync."""
        costs: Dict[str, float] = {}
        filters = "transactionType:{SHIPPING_LABEL}"
        if start_date:
            filters += f",transactionDate:[{_ebay_timestamp(start_date)}..{_ebay_timestamp(utc_now())}]"
        params = {"limit": 200, "offset": 0, "filter": filters}

        for _ in range(self.max_pages):
            try:
                response = await self._request(
                    "GET",
                    f"{self.finances_base}/sell/finances/v1/transaction",
                    headers=self._headers(access_token),
                    params=params,
                )
            except httpx.RequestError as e:
                logger.warning(f"Could not fetch eBay shipping labels: {e}")
                break

            if response.status_code != 200:
                logger.warning(f"Could not fetch eBay shipping labels ({response.status_code})")
                break

            transactions = response.json().get("transactions") or []
            for tx in transactions:
                order_id = tx.get("orderId")
                if not order_id:
                    continue
                costs[order_id] = costs.get(order_id, 0.0) + abs(_amount(tx.get("amount")))

            if len(transactions) < params["limit"]:
                break
            params["offset"] += len(transactions)

        return costs

    # Listings

    async def create_listing(self, listing: ListingData, access_token: str, account_id: Optional[str] = None) -> PlatformListing:
        sku = f"SS-{int(utc_now().timestamp() * 1000)}"
        headers = self._headers(access_token)

        item_response = await self._request(
            "PUT",
            f"{self.inventory_api}/inventory_item/{sku}",
            headers=headers,
            json={
                "product": {
                    "title": listing.title[:80],
                    "description": listing.description or listing.title,
                    "imageUrls": listing.images,
                },
                "condition": self.map_condition(listing.condition),
                "availability": {"shipToLocationAvailability": {"quantity": 1}},
            },
        )
        if item_response.status_code not in (200, 201, 204):
            raise PlatformAPIError(
                f"Failed to create eBay inventory item: {self._error_message(item_response)}",
                platform=self.platform.value,
                status_code=item_response.status_code,
            )

        offer_response = await self._request(
            "POST",
            f"{self.inventory_api}/offer",
            headers=headers,
            json={
                "sku": sku,
                "marketplaceId": self.marketplace_id,
                "format": "FIXED_PRICE",
                "listingDescription": listing.description or listing.title,
                "pricingSummary": {"price": {"value": f"{listing.price:.2f}", "currency": "USD"}},
                "categoryId": listing.category or DEFAULT_CATEGORY_ID,
            },
        )
        if offer_response.status_code not in (200, 201):
            raise PlatformAPIError(
                f"Failed to create eBay offer: {self._error_message(offer_response)}",
                platform=self.platform.value,
                status_code=offer_response.status_code,
            )
        offer_id = offer_response.json().get("offerId")

        publish_response = await self._request(
            "POST",
            f"{self.inventory_api}/offer/{offer_id}/publish",
            headers=headers,
            json={},
        )
        if publish_response.status_code not in (200, 201):
            raise PlatformAPIError(
                f"Failed to publish eBay offer {offer_id}: {self._error_message(publish_response)}",
                platform=self.platform.value,
                status_code=publish_response.status_code,
            )
        listing_id = publish_response.json().get("listingId") or offer_id

        logger.info(f"Published eBay listing {listing_id} (offer {offer_id})")
        return PlatformListing(
            external_id=listing_id,
            url=f"https://www.ebay.com/itm/{listing_id}",
            title=listing.title,
            price=listing.price,
            images=listing.images,
            platform_data={"sku": sku, "offerId": offer_id},
        )

    async def update_listing(
        self,
        external_id: str,
        changes: Dict[str, Any],
        access_token: str,
        account_id: Optional[str] = None,
    ) -> PlatformListing:
        """external_id is the offer id; updateOffer replaces the whole offer, so merge first."""
        headers = self._headers(access_token)
        url = f"{self.inventory_api}/offer/{external_id}"

        current = await self._request("GET", url, headers=headers)
        if current.status_code != 200:
            raise PlatformAPIError(
                f"eBay offer {external_id} not found: {self._error_message(current)}",
                platform=self.platform.value,
                status_code=current.status_code,
            )
        offer = current.json()
        for read_only in ("offerId", "status", "listing"):
            offer.pop(read_only, None)

        if changes.get("price") is not None:
            offer["pricingSummary"] = {"price": {"value": f"{float(changes['price']):.2f}", "currency": "USD"}}
        if changes.get("description"):
            offer["listingDescription"] = changes["description"]

        response = await self._request("PUT", url, headers=headers, json=offer)
        if response.status_code not in (200, 204):
            raise PlatformAPIError(
                f"Failed to update eBay offer {external_id}: {self._error_message(response)}",
                platform=self.platform.value,
                status_code=response.status_code,
            )

        return PlatformListing(
            external_id=external_id,
            url=f"https://www.ebay.com/itm/{external_id}",
            price=changes.get("price"),
        )

    async def delete_listing(self, external_id: str, access_token: str, account_id: Optional[str] = None) -> None:
        response = await self._request(
            "DELETE",
            f"{self.inventory_api}/offer/{external_id}",
            headers=self._headers(access_token),
        )
        # Already gone counts as deleted
        if response.status_code not in (200, 204, 404):
            raise PlatformAPIError(
                f"eBay delist failed ({response.status_code}): {self._error_message(response)}",
                platform=self.platform.value,
                status_code=response.status_code,
            )

    async def get_listings(self, access_token: str, account_id: Optional[str] = None) -> List[PlatformListing]:
        listings: List[PlatformListing] = []
        page_number = 1
        total_pages = 1

        while page_number <= min(total_pages, self.max_pages):
            xml_request = f"""<?xml version="1.0" encoding="utf-8"?>
            <GetMyeBaySellingRequest xmlns="urn:ebay:apis:eBLBaseComponents">
                <ActiveList>
                    <Include>true</Include>
                    <Pagination>
                        <EntriesPerPage>200</EntriesPerPage>
                        <PageNumber>{page_number}</PageNumber>
                    </Pagination>
                </ActiveList>
                <DetailLevel>ReturnAll</DetailLevel>
            </GetMyeBaySellingRequest>"""

            response = await self._request(
                "POST",
                self.trading_url,
                content=xml_request.encode("utf-8"),
                headers={
                    "X-EBAY-API-CALL-NAME": "GetMyeBaySelling",
                    "X-EBAY-API-SITEID": "0",
                    "X-EBAY-API-COMPATIBILITY-LEVEL": "1155",
                    "X-EBAY-API-IAF-TOKEN": access_token,
                    "Content-Type": "text/xml",
                },
            )
            if response.status_code != 200:
                raise PlatformAPIError(
                    f"GetMyeBaySelling failed ({response.status_code})",
                    platform=self.platform.value,
                    status_code=response.status_code,
                )

            parsed = xmltodict.parse(response.text).get("GetMyeBaySellingResponse") or {}
            if parsed.get("Ack") == "Failure":
                errors = _as_list(parsed.get("Errors"))
                message = errors[0].get("LongMessage") if errors else "unknown error"
                raise PlatformAPIError(f"GetMyeBaySelling failed: {message}", platform=self.platform.value)

            active = parsed.get("ActiveList") or {}
            pagination = active.get("PaginationResult") or {}
            total_pages = int(pagination.get("TotalNumberOfPages") or 1)

            items = _as_list((active.get("ItemArray") or {}).get("Item"))
            if not items:
                break

            for item in items:
                pictures = item.get("PictureDetails") or {}
                images = [url for url in _as_list(pictures.get("PictureURL")) if url]
                if not images and pictures.get("GalleryURL"):
                    images = [pictures["GalleryURL"]]
                price_text = _text((item.get("SellingStatus") or {}).get("CurrentPrice"))

                listings.append(PlatformListing(
                    external_id=item.get("ItemID"),
                    url=(item.get("ListingDetails") or {}).get("ViewItemURL") or f"https://www.ebay.com/itm/{item.get('ItemID')}",
                    status=ListingStatus.ACTIVE,
                    title=item.get("Title") or "",
                    price=float(price_text) if price_text else None,
                    images=images,
                    platform_data={
                        "listingType": item.get("ListingType"),
                        "quantity": item.get("Quantity"),
                        "quantityAvailable": item.get("QuantityAvailable"),
                    },
                ))

            page_number += 1

        logger.info(f"eBay get_listings: {len(listings)} active listings")
        return listings

    # Helpers

    def calculate_fees(self, price: float) -> FeeBreakdown:
        return fee_breakdown(price, price * self.FEE_RATE, self.PER_ORDER_FEE)

    def map_condition(self, condition: str) -> str:
        return CONDITION_MAP.get((condition or "").lower(), "USED_EXCELLENT")
