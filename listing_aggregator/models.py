# listing_aggregator/models.py
"""SQLAlchemy ORM models for persisted entities.

Users, the marketplace catalogue, per-user site connections, listings,
billing subscriptions and the webhook event log.
"""
import enum

from sqlalchemy import (
    Boolean, Column, ForeignKey, Index, Integer, JSON, Numeric, String, Text,
    TIMESTAMP, UniqueConstraint, func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from .db import Base

JSONType = JSON().with_variant(JSONB, "postgresql")


class PlanType(str, enum.Enum):
    FREE = "free"
    PRO = "pro"


class ListingStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    SOLD = "sold"
    PENDING = "pending"
    ARCHIVED = "archived"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    CANCELING = "canceling"
    CANCELED = "canceled"


class User(Base):
    __tablename__ = "users"
    # identity provider user id (e.g. "user_2abc...")
    id = Column(String(64), primary_key=True)
    email = Column(Text, default="")
    plan_type = Column(String(16), nullable=False, default=PlanType.FREE.value)
    listings_count = Column(Integer, nullable=False, default=0)
    stripe_customer_id = Column(Text, nullable=True, index=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    connections = relationship("ConnectedSite", back_populates="user", cascade="all, delete-orphan")
    listings = relationship("Listing", back_populates="user", cascade="all, delete-orphan")
    subscriptions = relationship("Subscription", back_populates="user", cascade="all, delete-orphan")


class Site(Base):
    __tablename__ = "sites"
    id = Column(String(32), primary_key=True)
    name = Column(Text, nullable=False)
    url = Column(Text)
    api_endpoint = Column(Text)
    description = Column(Text, default="")
    enabled = Column(Boolean, nullable=False, default=True)


class ConnectedSite(Base):
    __tablename__ = "connected_sites"
    __table_args__ = (UniqueConstraint("user_id", "site_id", name="uq_connected_user_site"),)
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id = Column(String(32), ForeignKey("sites.id"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    credentials = Column(JSONType)
    last_synced_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="connections")
    site = relationship("Site", lazy="joined")


class Listing(Base):
    __tablename__ = "listings"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    site_id = Column(String(32), ForeignKey("sites.id"), nullable=False)
    external_id = Column(Text, nullable=True)
    title = Column(Text, nullable=False)
    description = Column(Text, default="")
    price = Column(Numeric(12, 2), default=0)
    currency = Column(String(3), default="USD")
    status = Column(String(16), nullable=False, default=ListingStatus.ACTIVE.value)
    url = Column(Text)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSONType)
    published_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="listings")


class Subscription(Base):
    __tablename__ = "subscriptions"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=SubscriptionStatus.ACTIVE.value)
    plan_type = Column(String(16), nullable=False, default=PlanType.PRO.value)
    stripe_customer_id = Column(Text)
    stripe_subscription_id = Column(Text, unique=True, index=True)
    current_period_start = Column(TIMESTAMP(timezone=True), nullable=True)
    current_period_end = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="subscriptions")


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    source = Column(String(16), nullable=False)
    event_type = Column(String(100), nullable=False)
    processed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

Index("idx_listings_user_site", Listing.user_id, Listing.site_id)
Index("idx_listings_external_id", Listing.user_id, Listing.site_id, Listing.external_id)
Index("idx_listings_status", Listing.status)
