# salesync/schemas/platform.py
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from .base import BaseSchema


class ConnectionRead(BaseSchema):
    """Connection as shown to the user. Tokens are never returned."""
    platform: str
    platform_account_id: Optional[str] = None
    platform_username: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    connected_at: datetime


class AuthUrlResponse(BaseSchema):
    platform: str
    auth_url: str
    state: Optional[str] = None


class CredentialsCapture(BaseSchema):
    """
    Manual credential capture for marketplaces without a browser OAuth flow.

    Either a username/password pair (exchanged through the platform's login
    proxy) or an already issued token set.
    """
    username: Optional[str] = None
    password: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = ""
    expires_in: Optional[int] = Field(default=None, gt=0)
    platform_account_id: Optional[str] = None
    platform_username: Optional[str] = None


class FeeRequest(BaseSchema):
    price: float = Field(ge=0)


class FeeBreakdownRead(BaseSchema):
    final_value_fee: float
    payment_processing_fee: float
    total_fees: float
    net_proceeds: float


class ListingCreate(BaseSchema):
    title: str = Field(min_length=1)
    price: float = Field(gt=0)
    description: str = ""
    category: str = ""
    condition: str = ""
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class ListingUpdate(BaseSchema):
    """Only the fields that are set are sent to the marketplace."""
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, gt=0)


class ListingRead(BaseSchema):
    external_id: str
    url: str
    status: str
    title: str = ""
    price: Optional[float] = None
    images: List[str] = Field(default_factory=list)
