# listing_aggregator/schemas.py
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional, Union
from datetime import datetime

from .models import ListingStatus


class CandidateListing(BaseModel):
    """A listing record as returned by a platform client, before acceptance."""
    external_id: str = Field(..., min_length=1, max_length=255)
    title: str
    price: Optional[Union[str, float]] = None
    url: Optional[str] = None
    description: Optional[str] = None
    status: Optional[ListingStatus] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ListingBase(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = Field(None, max_length=3)
    status: ListingStatus = ListingStatus.DRAFT
    url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

class ListingCreate(ListingBase):
    site_id: str
    external_id: Optional[str] = None

class ListingUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = Field(None, max_length=3)
    status: Optional[ListingStatus] = None
    url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("title", "status")
    @classmethod
    def not_null(cls, v, info):
        # may be omitted, but not cleared
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

class ListingOut(BaseModel):
    id: int
    site_id: str
    external_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    status: str
    url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="metadata_")
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    class Config:
        from_attributes = True
        populate_by_name = True

class ListingPage(BaseModel):
    total: int
    items: List[ListingOut]


class SiteOut(BaseModel):
    id: str
    name: str
    url: Optional[str] = None
    description: Optional[str] = None
    enabled: bool
    class Config:
        from_attributes = True

class ConnectRequest(BaseModel):
    site_id: str
    credentials: Optional[Dict[str, Any]] = None

class ConnectionOut(BaseModel):
    id: int
    site_id: str
    is_active: bool
    last_synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    site: Optional[SiteOut] = None
    class Config:
        from_attributes = True


class SyncRequest(BaseModel):
    platformId: Optional[str] = None

class ExtensionListing(BaseModel):
    title: str
    price: Optional[Union[str, float]] = None
    url: str
    external_id: Optional[str] = None
    description: Optional[str] = None
    status: Optional[ListingStatus] = None

class ExtensionSyncRequest(BaseModel):
    siteId: str
    listings: List[ExtensionListing] = Field(default_factory=list)


class UsageOut(BaseModel):
    plan: str
    usage: int
    limit: Union[int, str]
    percentage: int
