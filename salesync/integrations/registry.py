"""
Adapter registry.

The set of marketplaces is closed (PlatformName). build_registry wires one
adapter instance per marketplace from settings; adapters hold per-process
state (Etsy PKCE verifiers) so the app keeps a single registry for its
lifetime.
"""

import logging
from functools import lru_cache
from typing import Dict, Optional, Union

from salesync.core.config import Settings, get_settings
from salesync.core.enums import PlatformName
from salesync.core.exceptions import UnknownPlatformError
from salesync.integrations.base import MarketplaceAdapter
from salesync.integrations.platforms.depop import DepopAdapter
from salesync.integrations.platforms.ebay import EbayAdapter
from salesync.integrations.platforms.etsy import EtsyAdapter

logger = logging.getLogger(__name__)

AdapterRegistry = Dict[PlatformName, MarketplaceAdapter]


def build_registry(settings: Optional[Settings] = None) -> AdapterRegistry:
    settings = settings or get_settings()
    common = {
        "timeout": settings.HTTP_TIMEOUT_SECONDS,
        "page_limit": settings.SALES_PAGE_LIMIT,
        "max_pages": settings.SALES_MAX_PAGES,
    }

    registry: AdapterRegistry = {
        PlatformName.EBAY: EbayAdapter(
            client_id=settings.EBAY_CLIENT_ID,
            client_secret=settings.EBAY_CLIENT_SECRET,
            ru_name=settings.EBAY_RU_NAME,
            sandbox=settings.ebay_sandbox,
            marketplace_id=settings.EBAY_MARKETPLACE_ID,
            lookback_days=settings.SALES_DEFAULT_LOOKBACK_DAYS,
            **common,
        ),
        PlatformName.ETSY: EtsyAdapter(
            client_id=settings.ETSY_CLIENT_ID,
            redirect_uri=settings.ETSY_REDIRECT_URI,
            **common,
        ),
        PlatformName.DEPOP: DepopAdapter(
            api_url=settings.DEPOP_API_URL,
            auth_proxy_url=settings.DEPOP_AUTH_PROXY_URL,
            proxy_secret=settings.DEPOP_PROXY_SECRET,
            **common,
        ),
    }
    logger.info(f"Registered marketplace adapters: {', '.join(p.value for p in registry)}")
    return registry


@lru_cache()
def get_registry() -> AdapterRegistry:
    """Process-wide registry (FastAPI dependency)"""
    return build_registry()


def resolve_platform(platform: Union[str, PlatformName]) -> PlatformName:
    try:
        return PlatformName(platform)
    except ValueError:
        raise UnknownPlatformError(f"Unknown platform: {platform}")


def get_adapter(platform: Union[str, PlatformName], registry: AdapterRegistry) -> MarketplaceAdapter:
    adapter = registry.get(resolve_platform(platform))
    if adapter is None:
        raise UnknownPlatformError(f"No adapter registered for platform: {platform}")
    return adapter
