from typing import Optional


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class PlatformServiceError(BaseServiceError):
    """Base exception for marketplace errors. Carries the platform it came from."""

    def __init__(self, message: str, platform: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.platform = platform
        self.status_code = status_code

class PlatformAPIError(PlatformServiceError):
    """Raised when a marketplace API call outside the sales path fails."""
    pass

class AuthExchangeError(PlatformServiceError):
    """Raised when the provider rejects an authorization code exchange."""
    pass

class TokenRefreshError(PlatformServiceError):
    """Raised when a refresh token is rejected. The user has to reconnect."""
    pass

class FetchError(PlatformServiceError):
    """Raised when a sales page request fails and nothing could be collected."""
    pass

class PersistError(BaseServiceError):
    """Raised when a batch of imported sales cannot be written."""

    def __init__(self, message: str, fetched: int = 0):
        super().__init__(message)
        self.fetched = fetched

class UnknownPlatformError(BaseServiceError):
    """Raised for a platform identifier that has no adapter."""
    pass

class SyncError(BaseServiceError):
    """Raised when a sync run cannot start at all."""
    pass
