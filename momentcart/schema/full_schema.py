import enum
from uuid import UUID
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import JSON, Boolean, CheckConstraint, Enum, ForeignKey, Index, Integer, Uuid, text
from uuid6 import uuid7
from sqlmodel import Column, SQLModel, Field, String
from momentcart.common.utils import now
from momentcart.db.types import UTCDateTime


def _enum_column(enum_cls, **kwargs) -> Column:
    # stored as plain strings so the same schema runs on postgres and sqlite
    return Column(
        Enum(enum_cls, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        **kwargs,
    )


class SurfaceType(str, enum.Enum):
    LIVE = "live"
    REPLAY = "replay"
    CLIP = "clip"
    LINK_IN_BIO = "link_in_bio"
    DM = "dm"
    AGENT = "agent"
    DIRECT = "direct"


class OfferType(str, enum.Enum):
    PERCENTAGE_OFF = "percentage_off"
    FIXED_AMOUNT_OFF = "fixed_amount_off"
    FIXED_PRICE = "fixed_price"
    BUNDLE = "bundle"


class OfferStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    EXPIRED = "expired"
    ARCHIVED = "archived"


class CheckoutStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    EXPIRED = "expired"


class ReleaseReason(str, enum.Enum):
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


LIVE_RESERVATION_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)


# Catalog side (read-only inputs synced from the connected storefront)
class CommerceConnection(SQLModel, table=True):
    __tablename__ = "commerce_connections"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=Column(Uuid, unique=True, index=True, nullable=False))
    creator_id: str = Field(sa_column=Column(String(64), index=True, nullable=False))
    platform: str = Field(default="shopify", sa_column=Column(String(32), nullable=False, default="shopify"))
    shop_domain: str = Field(sa_column=Column(String(255), nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))


class Variant(SQLModel, table=True):
    """Purchasable SKU with the latest stock figure from the storefront."""
    __tablename__ = "variants"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=Column(Uuid, unique=True, index=True, nullable=False))
    connection_id: int = Field(sa_column=Column(ForeignKey("commerce_connections.id", ondelete="CASCADE"), index=True, nullable=False))
    external_id: str = Field(sa_column=Column(String(64), nullable=False))
    sku: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    unit_price: int = Field(sa_column=Column(Integer, nullable=False))  # minor units
    currency: str = Field(default="USD", sa_column=Column(String(3), nullable=False, default="USD"))
    stock_qty: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    stock_synced_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))

    __table_args__ = (
        Index("uq_variants_connection_external", "connection_id", "external_id", unique=True),
    )


class Offer(SQLModel, table=True):
    __tablename__ = "offers"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=Column(Uuid, unique=True, index=True, nullable=False))
    creator_id: str = Field(sa_column=Column(String(64), index=True, nullable=False))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    offer_type: OfferType = Field(sa_column=_enum_column(OfferType, nullable=False))
    # percent (0-100) for percentage_off, minor units for every other type
    value: int = Field(sa_column=Column(Integer, nullable=False))
    status: OfferStatus = Field(default=OfferStatus.DRAFT, sa_column=_enum_column(OfferStatus, nullable=False, default=OfferStatus.DRAFT))
    starts_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    ends_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now, onupdate=now))


class OfferProduct(SQLModel, table=True):
    """Variants an offer discounts; nothing else can be bought through it."""
    __tablename__ = "offer_products"

    id: Optional[int] = Field(default=None, primary_key=True)
    offer_id: int = Field(sa_column=Column(ForeignKey("offers.id", ondelete="CASCADE"), index=True, nullable=False))
    variant_id: int = Field(sa_column=Column(ForeignKey("variants.id", ondelete="CASCADE"), index=True, nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))

    __table_args__ = (
        Index("uq_offer_products_offer_variant", "offer_id", "variant_id", unique=True),
    )


# Attribution
class AttributionContext(SQLModel, table=True):
    """What caused a click. Written once, never updated."""
    __tablename__ = "attribution_contexts"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=Column(Uuid, unique=True, index=True, nullable=False))
    creator_id: str = Field(sa_column=Column(String(64), index=True, nullable=False))
    surface: SurfaceType = Field(sa_column=_enum_column(SurfaceType, nullable=False))
    platform: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))

    live_session_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    stream_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    replay_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    moment_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    platform_stream_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    platform_video_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))

    campaign: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    source: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    medium: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    meta: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON, nullable=False))

    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))


class ShortLink(SQLModel, table=True):
    __tablename__ = "short_links"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String(32), unique=True, index=True, nullable=False))
    creator_id: str = Field(sa_column=Column(String(64), index=True, nullable=False))
    offer_id: int = Field(sa_column=Column(ForeignKey("offers.id", ondelete="CASCADE"), index=True, nullable=False))
    attribution_context_id: int = Field(sa_column=Column(ForeignKey("attribution_contexts.id"), nullable=False))
    name: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))

    expires_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    is_revoked: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False, server_default=text("false")))
    revoked_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    max_clicks: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    click_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0, server_default=text("0")))
    last_clicked_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))

    meta: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON, nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))


# Checkout
class CheckoutSession(SQLModel, table=True):
    """Aggregate root of one checkout attempt. Rows are kept after expiry for audit."""
    __tablename__ = "checkout_sessions"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=Column(Uuid, unique=True, index=True, nullable=False))
    creator_id: str = Field(sa_column=Column(String(64), nullable=False))
    # globally unique: a key reused by another creator is a conflict, not a new session
    idempotency_key: str = Field(sa_column=Column(String(255), unique=True, nullable=False))

    short_link_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("short_links.id"), index=True, nullable=True))
    attribution_context_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("attribution_contexts.id"), nullable=True))
    offer_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("offers.id"), nullable=True))
    connection_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("commerce_connections.id"), nullable=True))

    status: CheckoutStatus = Field(default=CheckoutStatus.PENDING, sa_column=_enum_column(CheckoutStatus, nullable=False, default=CheckoutStatus.PENDING))

    # [{variant_id, external_variant_id, title, quantity, unit_price, offer_price}]
    line_items: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    subtotal: int = Field(sa_column=Column(Integer, nullable=False))
    discount: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    total: int = Field(sa_column=Column(Integer, nullable=False))
    currency: str = Field(sa_column=Column(String(3), nullable=False))

    expires_at: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False))
    external_checkout_url: Optional[str] = Field(default=None, sa_column=Column(String(2048), nullable=True))
    external_order_ref: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))

    visitor_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    user_agent: Optional[str] = Field(default=None, sa_column=Column(String(512), nullable=True))
    ip_address: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))

    confirmed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    cancel_reason: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    expired_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))

    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now, onupdate=now))

    __table_args__ = (
        Index("ix_checkout_sessions_creator_key", "creator_id", "idempotency_key"),
        Index("ix_checkout_sessions_status_expires", "status", "expires_at"),
        CheckConstraint("total >= 0 AND total = subtotal - discount", name="ck_checkout_sessions_total"),
    )


class Reservation(SQLModel, table=True):
    """Time-bounded hold on variant stock for one checkout session.

    checkout_session_id carries the session's public id: reservations are written
    before the session row inside the same transaction.
    """
    __tablename__ = "reservations"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=Column(Uuid, unique=True, index=True, nullable=False))
    variant_id: int = Field(sa_column=Column(ForeignKey("variants.id"), nullable=False))
    checkout_session_id: UUID = Field(sa_column=Column(Uuid, index=True, nullable=False))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    status: ReservationStatus = Field(default=ReservationStatus.PENDING, sa_column=_enum_column(ReservationStatus, nullable=False, default=ReservationStatus.PENDING))
    expires_at: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False))
    release_reason: Optional[ReleaseReason] = Field(default=None, sa_column=_enum_column(ReleaseReason, nullable=True))

    confirmed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    released_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))

    __table_args__ = (
        Index("ix_reservations_variant_status", "variant_id", "status"),
        Index("ix_reservations_status_expires", "status", "expires_at"),
        CheckConstraint("quantity > 0", name="ck_reservations_quantity_positive"),
    )
