from .base import BaseSchema
from .sales import (
    SaleRead,
    SaleCreate,
    SaleCostUpdate,
    SalesStats,
    SyncErrorRead,
    PlatformSyncRead,
    SyncResultRead,
)
from .platform import (
    ConnectionRead,
    AuthUrlResponse,
    CredentialsCapture,
    FeeRequest,
    FeeBreakdownRead,
)
