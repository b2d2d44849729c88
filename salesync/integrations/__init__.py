from .base import (
    MarketplaceAdapter,
    SaleImportRecord,
    SalesQuery,
    TokenPair,
    FeeBreakdown,
    ListingData,
    PlatformListing,
)
