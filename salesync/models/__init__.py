from .platform_connection import PlatformConnection
from .sale import Sale

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'PlatformConnection',
    'Sale',
]
