# salesync/routes/platforms.py
"""
Marketplace connections: connect (OAuth or manual credentials), callback,
disconnect, fee calculator and live listing management.
"""

import logging
import secrets
from datetime import timedelta
from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.config import Settings, get_settings
from salesync.core.exceptions import (
    AuthExchangeError,
    PlatformServiceError,
    TokenRefreshError,
    UnknownPlatformError,
)
from salesync.core.security import get_current_user_id
from salesync.dependencies import get_db
from salesync.integrations.base import ListingData, MarketplaceAdapter, PlatformListing, TokenPair, utc_now
from salesync.integrations.platforms.depop import DepopAdapter
from salesync.integrations.registry import AdapterRegistry, get_adapter, get_registry, resolve_platform
from salesync.schemas.platform import (
    AuthUrlResponse,
    ConnectionRead,
    CredentialsCapture,
    FeeBreakdownRead,
    FeeRequest,
    ListingCreate,
    ListingRead,
    ListingUpdate,
)
from salesync.services.connection_repository import ConnectionData, SQLConnectionRepository
from salesync.services.token_service import TokenManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/platforms", tags=["platforms"])


def _resolve(platform: str, registry: AdapterRegistry):
    try:
        return resolve_platform(platform), get_adapter(platform, registry)
    except UnknownPlatformError as e:
        raise HTTPException(status_code=404, detail=str(e))


async def _account_info(adapter: MarketplaceAdapter, access_token: str) -> dict:
    """Optional lookup; a failure here should not lose freshly issued tokens."""
    try:
        return await adapter.get_account_info(access_token)
    except (httpx.HTTPError, PlatformServiceError) as e:
        logger.warning(f"Account lookup for {adapter.platform.value} failed: {e}")
        return {}


@router.get("", response_model=List[ConnectionRead])
async def list_connections(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    repository = SQLConnectionRepository(db, user_id)
    return [ConnectionRead.from_orm_model(c) for c in await repository.list_connections()]


@router.get("/{platform}/connect", response_model=AuthUrlResponse)
async def connect_platform(
    platform: str,
    user_id: str = Depends(get_current_user_id),
    registry: AdapterRegistry = Depends(get_registry),
):
    platform_name, adapter = _resolve(platform, registry)
    state = secrets.token_urlsafe(16)
    try:
        auth_url = adapter.get_auth_url(state)
    except PlatformServiceError as e:
        raise HTTPException(status_code=400, detail=e.message)

    logger.info(f"Issued {platform_name.value} auth URL for user {user_id}")
    return AuthUrlResponse(platform=platform_name.value, auth_url=auth_url, state=state)


@router.get("/{platform}/callback", response_model=ConnectionRead)
async def platform_callback(
    platform: str,
    code: str,
    state: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    registry: AdapterRegistry = Depends(get_registry),
):
    """Exchange the provider's authorization code and store the connection."""
    platform_name, adapter = _resolve(platform, registry)
    try:
        tokens = await adapter.exchange_code(code, state)
    except AuthExchangeError as e:
        raise HTTPException(
            status_code=502,
            detail=f"{platform_name.display_name} authorization failed: {e.message}",
        )

    account = await _account_info(adapter, tokens.access_token)
    repository = SQLConnectionRepository(db, user_id)
    connection = await repository.set_connection(
        platform_name,
        ConnectionData.from_token_pair(
            tokens,
            platform_account_id=account.get("platform_account_id"),
            platform_username=account.get("platform_username"),
        ),
    )
    return ConnectionRead.from_orm_model(connection)


@router.post("/{platform}/credentials", response_model=ConnectionRead)
async def capture_credentials(
    platform: str,
    credentials: CredentialsCapture,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    registry: AdapterRegistry = Depends(get_registry),
):
    """Manual connect: a login (Depop) or an already issued token set."""
    platform_name, adapter = _resolve(platform, registry)

    if credentials.username and credentials.password:
        if not isinstance(adapter, DepopAdapter):
            raise HTTPException(
                status_code=400,
                detail=f"{platform_name.display_name} does not support username/password login",
            )
        try:
            tokens = await adapter.login(credentials.username, credentials.password)
        except AuthExchangeError as e:
            raise HTTPException(status_code=502, detail=f"Depop login failed: {e.message}")
        except PlatformServiceError as e:
            raise HTTPException(status_code=400, detail=e.message)
    elif credentials.access_token:
        expires_at = utc_now() + timedelta(seconds=credentials.expires_in) if credentials.expires_in else None
        tokens = TokenPair(
            access_token=credentials.access_token,
            refresh_token=credentials.refresh_token or "",
            expires_at=expires_at,
        )
    else:
        raise HTTPException(status_code=422, detail="Provide username and password, or an access_token")

    account = {}
    if not credentials.platform_account_id:
        account = await _account_info(adapter, tokens.access_token)

    repository = SQLConnectionRepository(db, user_id)
    connection = await repository.set_connection(
        platform_name,
        ConnectionData.from_token_pair(
            tokens,
            platform_account_id=credentials.platform_account_id or account.get("platform_account_id"),
            platform_username=credentials.platform_username or credentials.username or account.get("platform_username"),
        ),
    )
    return ConnectionRead.from_orm_model(connection)


@router.delete("/{platform}", status_code=204)
async def disconnect_platform(
    platform: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    try:
        platform_name = resolve_platform(platform)
    except UnknownPlatformError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if not await SQLConnectionRepository(db, user_id).remove_connection(platform_name):
        raise HTTPException(status_code=404, detail=f"{platform_name.display_name} is not connected")


@router.post("/{platform}/fees", response_model=FeeBreakdownRead)
async def calculate_fees(
    platform: str,
    request: FeeRequest,
    registry: AdapterRegistry = Depends(get_registry),
):
    _, adapter = _resolve(platform, registry)
    fees = adapter.calculate_fees(request.price)
    return FeeBreakdownRead(
        final_value_fee=fees.final_value_fee,
        payment_processing_fee=fees.payment_processing_fee,
        total_fees=fees.total_fees,
        net_proceeds=fees.net_proceeds,
    )


async def _live_session(
    platform: str,
    user_id: str,
    db: AsyncSession,
    registry: AdapterRegistry,
    settings: Settings,
):
    """Adapter, connection and a valid access token for a live marketplace call."""
    platform_name, adapter = _resolve(platform, registry)
    repository = SQLConnectionRepository(db, user_id)
    connection = await repository.get_connection(platform_name)
    if connection is None:
        raise HTTPException(status_code=404, detail=f"{platform_name.display_name} is not connected")

    token_manager = TokenManager(repository, timedelta(minutes=settings.TOKEN_REFRESH_BUFFER_MINUTES))
    try:
        access_token = await token_manager.get_valid_token(adapter, connection)
    except TokenRefreshError as e:
        raise HTTPException(status_code=401, detail=e.message)
    except PlatformServiceError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return adapter, connection, access_token


def _listing_read(listing: PlatformListing) -> ListingRead:
    return ListingRead(
        external_id=listing.external_id,
        url=listing.url,
        status=listing.status.value,
        title=listing.title,
        price=listing.price,
        images=listing.images,
    )


@router.get("/{platform}/listings", response_model=List[ListingRead])
async def platform_listings(
    platform: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    registry: AdapterRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
):
    """Active listings on the marketplace, read live."""
    adapter, connection, access_token = await _live_session(platform, user_id, db, registry, settings)
    try:
        listings: List[PlatformListing] = await adapter.get_listings(access_token, connection.platform_account_id)
    except PlatformServiceError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return [_listing_read(listing) for listing in listings]


@router.post("/{platform}/listings", response_model=ListingRead, status_code=201)
async def create_platform_listing(
    platform: str,
    listing: ListingCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    registry: AdapterRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
):
    adapter, connection, access_token = await _live_session(platform, user_id, db, registry, settings)
    try:
        created = await adapter.create_listing(
            ListingData(**listing.model_dump()),
            access_token,
            connection.platform_account_id,
        )
    except PlatformServiceError as e:
        raise HTTPException(status_code=502, detail=e.message)

    logger.info(f"Created {adapter.platform.value} listing {created.external_id} for user {user_id}")
    return _listing_read(created)


@router.patch("/{platform}/listings/{external_id}", response_model=ListingRead)
async def update_platform_listing(
    platform: str,
    external_id: str,
    changes: ListingUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    registry: AdapterRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
):
    fields = changes.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=422, detail="Nothing to update")

    adapter, connection, access_token = await _live_session(platform, user_id, db, registry, settings)
    try:
        updated = await adapter.update_listing(external_id, fields, access_token, connection.platform_account_id)
    except PlatformServiceError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return _listing_read(updated)


@router.delete("/{platform}/listings/{external_id}", status_code=204)
async def delete_platform_listing(
    platform: str,
    external_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    registry: AdapterRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
):
    adapter, connection, access_token = await _live_session(platform, user_id, db, registry, settings)
    try:
        await adapter.delete_listing(external_id, access_token, connection.platform_account_id)
    except PlatformServiceError as e:
        raise HTTPException(status_code=502, detail=e.message)
    logger.info(f"Deleted {adapter.platform.value} listing {external_id} for user {user_id}")
