"""
Etsy Open API v3 adapter.

Etsy is a public OAuth client: authorization uses PKCE (S256) and the token
endpoint takes the client id instead of a secret. Every API call carries the
client id in the x-api-key header.

Money is reported as {amount, divisor, currency_code}.
"""

import base64
import hashlib
import logging
import secrets
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from salesync.core.enums import PlatformName, ListingStatus
from salesync.core.exceptions import (
    AuthExchangeError,
    FetchError,
    PlatformAPIError,
    PlatformServiceError,
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

AUTH_URL = "https://www.etsy.com/oauth/connect"
TOKEN_URL = "https://api.etsy.com/v3/public/oauth/token"
API_BASE = "https://openapi.etsy.com/v3/application"

SCOPES = "listings_r listings_w transactions_r"

CONDITION_MAP = {
    "new": "is_not_vintage",
    "like new": "is_not_vintage",
    "very good": "is_not_vintage",
    "good": "is_not_vintage",
    "acceptable": "is_not_vintage",
    "vintage": "is_vintage",
}

CATEGORY_MAP = {
    "clothing": 69150367,
    "shoes": 69168382,
    "electronics": 69150391,
    "collectibles": 69150457,
    "home": 69150433,
    "toys": 69150441,
    "jewelry": 69150449,
    "art": 69150401,
}
DEFAULT_TAXONOMY_ID = 69150367


def money(node: Optional[Dict[str, Any]]) -> float:
    """Etsy Money object -> float."""
    if not node:
        return 0.0
    divisor = node.get("divisor") or 100
    return float(node.get("amount") or 0) / float(divisor)


def _code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class EtsyAdapter(MarketplaceAdapter):
    """Etsy shop receipts and listings via the v3 Open API."""

    platform = PlatformName.ETSY

    TRANSACTION_FEE_RATE = 0.065
    PROCESSING_RATE = 0.03
    PROCESSING_FIXED = 0.25
    LISTING_FEE = 0.20

    # Abandoned connect attempts never consume their verifier
    MAX_PENDING_VERIFIERS = 500

    def __init__(self, client_id: str, redirect_uri: str, **kwargs):
        super().__init__(**kwargs)
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        # state -> PKCE code verifier, consumed on exchange
        self._pending_verifiers: Dict[str, str] = {}

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "x-api-key": self.client_id,
            "Accept": "application/json",
        }

    # OAuth

    def get_auth_url(self, state: Optional[str] = None) -> str:
        if not self.client_id or not self.redirect_uri:
            raise PlatformAPIError("Etsy OAuth is not configured", platform=self.platform.value)

        state = state or secrets.token_urlsafe(16)
        verifier = secrets.token_urlsafe(32)
        self._pending_verifiers[state] = verifier
        while len(self._pending_verifiers) > self.MAX_PENDING_VERIFIERS:
            self._pending_verifiers.pop(next(iter(self._pending_verifiers)))

        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": SCOPES,
            "state": state,
            "code_challenge": _code_challenge(verifier),
            "code_challenge_method": "S256",
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, state: Optional[str] = None) -> TokenPair:
        verifier = self._pending_verifiers.pop(state, None) if state else None
        if not verifier:
            raise AuthExchangeError(
                "Missing PKCE code verifier for this authorization; start the Etsy connect again",
                platform=self.platform.value,
            )

        try:
            response = await self._request(
                "POST",
                TOKEN_URL,
                data={
                    "grant_type": "authorization_code",
                    "client_id": self.client_id,
                    "redirect_uri": self.redirect_uri,
                    "code": code,
                    "code_verifier": verifier,
                },
            )
        except httpx.RequestError as e:
            logger.error(f"Network error exchanging Etsy code: {e}")
            raise AuthExchangeError(f"Network error contacting Etsy: {e}", platform=self.platform.value)

        if response.status_code != 200:
            message = self._error_message(response)
            logger.error(f"Etsy code exchange failed ({response.status_code}): {message}")
            raise AuthExchangeError(message, platform=self.platform.value, status_code=response.status_code)

        return TokenPair.from_token_response(response.json(), default_expires_in=3600)

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        if not refresh_token:
            raise TokenRefreshError("No Etsy refresh token stored", platform=self.platform.value)

        try:
            response = await self._request(
                "POST",
                TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "client_id": self.client_id,
                    "refresh_token": refresh_token,
                },
            )
        except httpx.RequestError as e:
            logger.error(f"Network error refreshing Etsy token: {e}")
            raise PlatformAPIError(f"Network error refreshing Etsy token: {e}", platform=self.platform.value)

        if response.status_code != 200:
            message = self._error_message(response)
            logger.error(f"Etsy token refresh failed ({response.status_code}): {message}")
            raise TokenRefreshError(message, platform=self.platform.value, status_code=response.status_code)

        logger.info("Refreshed Etsy access token")
        return TokenPair.from_token_response(
            response.json(),
            fallback_refresh_token=refresh_token,
            default_expires_in=3600,
        )

    async def get_account_info(self, access_token: str) -> Dict[str, Optional[str]]:
        """Shop id for the connected user; listing and receipt endpoints are shop scoped."""
        response = await self._request("GET", f"{API_BASE}/users/me", headers=self._headers(access_token))
        if response.status_code != 200:
            logger.warning(f"Etsy users/me failed ({response.status_code}): {self._error_message(response)}")
            return {}

        data = response.json()
        shop_id = data.get("shop_id")
        return {
            "platform_account_id": str(shop_id) if shop_id else None,
            "platform_username": str(data["user_id"]) if data.get("user_id") else None,
        }

    def _require_shop(self, account_id: Optional[str]) -> str:
        if not account_id:
            raise PlatformServiceError(
                "Etsy shop id not found. Please reconnect Etsy.",
                platform=self.platform.value,
            )
        return account_id

    # Sales

    def _normalize_receipt(self, receipt: Dict[str, Any]) -> List[SaleImportRecord]:
        """One record per transaction; receipt shipping goes on the first one."""
        records = []
        transactions = receipt.get("transactions") or []
        receipt_shipping = money(receipt.get("total_shipping_cost"))
        sold_at = parse_timestamp(receipt.get("create_timestamp") or receipt.get("created_timestamp"))

        for index, tx in enumerate(transactions):
            quantity = tx.get("quantity") or 1
            price = money(tx.get("price")) * quantity
            external_id = tx.get("transaction_id") or tx.get("listing_id")
            listing_id = tx.get("listing_id")

            records.append(SaleImportRecord(
                platform=self.platform,
                title=tx.get("title") or "Unknown Item",
                price=round_money(price),
                sold_at=parse_timestamp(tx.get("paid_timestamp")) or sold_at,
                external_id=str(external_id) if external_id else None,
                shipping_cost=round_money(receipt_shipping) if index == 0 else 0.0,
                platform_fees=self.calculate_fees(price).total_fees,
                buyer_username=receipt.get("buyer_email") or receipt.get("name"),
                url=f"https://www.etsy.com/listing/{listing_id}" if listing_id else "",
            ))
        return records

    async def get_sales(
        self,
        query: SalesQuery,
        access_token: str,
        account_id: Optional[str] = None,
    ) -> List[SaleImportRecord]:
        shop_id = self._require_shop(account_id)
        limit = min(query.limit or self.page_limit, 100)
        params: Dict[str, Any] = {"limit": limit, "offset": 0, "was_paid": "true"}
        if query.start_date:
            params["min_created"] = int(ensure_utc(query.start_date).timestamp())
        if query.end_date:
            params["max_created"] = int(ensure_utc(query.end_date).timestamp())

        records: List[SaleImportRecord] = []
        receipt_count = 0

        for page in range(self.max_pages):
            try:
                response = await self._request(
                    "GET",
                    f"{API_BASE}/shops/{shop_id}/receipts",
                    headers=self._headers(access_token),
                    params=params,
                )
            except httpx.RequestError as e:
                logger.error(f"Network error fetching Etsy receipts page {page + 1}: {e}")
                break

            if response.status_code == 401 and not records:
                raise FetchError("Etsy rejected the access token", platform=self.platform.value, status_code=401)
            if response.status_code != 200:
                logger.error(
                    f"Etsy receipts page {page + 1} failed ({response.status_code}): "
                    f"{self._error_message(response)}"
                )
                break

            receipts = response.json().get("results") or []
            receipt_count += len(receipts)
            for receipt in receipts:
                records.extend(self._normalize_receipt(receipt))

            if len(receipts) < limit:
                break
            params["offset"] += len(receipts)
        else:
            logger.warning(f"Etsy receipt pagination stopped at the {self.max_pages} page cap")

        logger.info(f"Etsy get_sales: {receipt_count} receipts, {len(records)} transactions")
        return records

    # Listings

    async def create_listing(self, listing: ListingData, access_token: str, account_id: Optional[str] = None) -> PlatformListing:
        shop_id = self._require_shop(account_id)
        response = await self._request(
            "POST",
            f"{API_BASE}/shops/{shop_id}/listings",
            headers=self._headers(access_token),
            json={
                "title": listing.title[:140],
                "description": listing.description or listing.title,
                "price": listing.price,
                "quantity": 1,
                "taxonomy_id": CATEGORY_MAP.get((listing.category or "").lower(), DEFAULT_TAXONOMY_ID),
                "who_made": "someone_else",
                "when_made": "2020_2025",
                "is_supply": False,
                "tags": listing.tags[:13],
            },
        )
        if response.status_code not in (200, 201):
            raise PlatformAPIError(
                f"Failed to create Etsy listing: {self._error_message(response)}",
                platform=self.platform.value,
                status_code=response.status_code,
            )

        data = response.json()
        listing_id = str(data.get("listing_id"))
        return PlatformListing(
            external_id=listing_id,
            url=data.get("url") or f"https://www.etsy.com/listing/{listing_id}",
            title=listing.title,
            price=listing.price,
            platform_data={"shop_id": shop_id},
        )

    async def update_listing(
        self,
        external_id: str,
        changes: Dict[str, Any],
        access_token: str,
        account_id: Optional[str] = None,
    ) -> PlatformListing:
        shop_id = self._require_shop(account_id)
        body: Dict[str, Any] = {}
        if changes.get("title"):
            body["title"] = changes["title"][:140]
        if changes.get("description"):
            body["description"] = changes["description"]
        if changes.get("price") is not None:
            body["price"] = changes["price"]

        response = await self._request(
            "PATCH",
            f"{API_BASE}/shops/{shop_id}/listings/{external_id}",
            headers=self._headers(access_token),
            json=body,
        )
        if response.status_code != 200:
            raise PlatformAPIError(
                f"Failed to update Etsy listing {external_id}: {self._error_message(response)}",
                platform=self.platform.value,
                status_code=response.status_code,
            )

        return PlatformListing(
            external_id=external_id,
            url=f"https://www.etsy.com/listing/{external_id}",
            title=body.get("title", ""),
            price=body.get("price"),
        )

    async def delete_listing(self, external_id: str, access_token: str, account_id: Optional[str] = None) -> None:
        response = await self._request(
            "DELETE",
            f"{API_BASE}/listings/{external_id}",
            headers=self._headers(access_token),
        )
        if response.status_code not in (200, 204, 404):
            raise PlatformAPIError(
                f"Failed to delete Etsy listing {external_id}: {self._error_message(response)}",
                platform=self.platform.value,
                status_code=response.status_code,
            )

    async def get_listings(self, access_token: str, account_id: Optional[str] = None) -> List[PlatformListing]:
        if not account_id:
            logger.warning("No Etsy shop id, skipping listing sync")
            return []

        listings: List[PlatformListing] = []
        params = {"state": "active", "limit": 100, "offset": 0, "includes": "Images"}

        for _ in range(self.max_pages):
            response = await self._request(
                "GET",
                f"{API_BASE}/shops/{account_id}/listings",
                headers=self._headers(access_token),
                params=params,
            )
            if response.status_code == 401:
                raise PlatformAPIError("Etsy token expired", platform=self.platform.value, status_code=401)
            if response.status_code != 200:
                logger.error(f"Etsy get_listings failed ({response.status_code})")
                break

            results = response.json().get("results") or []
            for item in results:
                images = [
                    img.get("url_570xN") or img.get("url_fullxfull")
                    for img in item.get("images") or []
                ]
                listings.append(PlatformListing(
                    external_id=str(item.get("listing_id")),
                    url=item.get("url") or f"https://www.etsy.com/listing/{item.get('listing_id')}",
                    status=ListingStatus.ACTIVE,
                    title=item.get("title") or "",
                    price=round_money(money(item.get("price"))),
                    images=[url for url in images if url],
                ))

            if len(results) < params["limit"]:
                break
            params["offset"] += len(results)

        logger.info(f"Etsy get_listings: {len(listings)} active listings")
        return listings

    # Helpers

    def calculate_fees(self, price: float) -> FeeBreakdown:
        transaction_fee = price * self.TRANSACTION_FEE_RATE
        processing = price * self.PROCESSING_RATE + self.PROCESSING_FIXED
        return fee_breakdown(price, transaction_fee, processing + self.LISTING_FEE)

    def map_condition(self, condition: str) -> str:
        return CONDITION_MAP.get((condition or "").lower(), "is_not_vintage")
