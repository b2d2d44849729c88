"""
Shared enums and constants used across the application.
"""

from enum import Enum

class PlatformName(str, Enum):
    EBAY = "ebay"
    ETSY = "etsy"
    DEPOP = "depop"

    @property
    def display_name(self) -> str:
        return {"ebay": "eBay", "etsy": "Etsy", "depop": "Depop"}[self.value]


class ListingStatus(str, Enum):
    """Listing status values reported back by the marketplaces"""
    ACTIVE = "active"
    SOLD = "sold"
    ENDED = "ended"
    ERROR = "error"


class SyncErrorKind(str, Enum):
    """Why a platform was left unsynced in a sync cycle."""
    REAUTH = "reauth"          # Refresh failed; the user has to reconnect
    FETCH = "fetch"            # Sales could not be fetched
    PERSIST = "persist"        # Batch insert failed; retried wholesale next cycle
    UNEXPECTED = "unexpected"
