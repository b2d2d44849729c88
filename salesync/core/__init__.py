"""
Core module exports.
"""
from .enums import (
    PlatformName,
    ListingStatus,
    SyncErrorKind
)

from .exceptions import (
    BaseServiceError,
    PlatformServiceError,
    PlatformAPIError,
    AuthExchangeError,
    TokenRefreshError,
    FetchError,
    PersistError,
    UnknownPlatformError,
    SyncError
)
