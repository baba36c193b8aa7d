import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, Numeric,
    String, Text, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base
from .utils import utcnow

CAMPAIGN_STATUSES = ("draft", "active", "paused", "completed")
LOCATION_TYPES = ("supermarket", "openmarket", "retailstore", "other")
REDEMPTION_STATUSES = ("pending", "redeemed", "expired", "cancelled", "lossprize")
ADMIN_ROLES = ("admin", "superadmin")


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


class Admin(Base):
    __tablename__ = "admins"
    id: Mapped[uuid.UUID] = _uuid_pk()
    username: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    password_hash: Mapped[str] = mapped_column(String, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default="admin")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Campaign(Base):
    __tablename__ = "campaigns"
    __table_args__ = (
        CheckConstraint(
            "status in ('draft', 'active', 'paused', 'completed')", name="ck_campaign_status"
        ),
        Index("ix_campaigns_status_window", "status", "start_date", "end_date"),
    )
    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft")
    max_spins_per_user: Mapped[int] = mapped_column(Integer, default=1)
    spin_cooldown_days: Mapped[int] = mapped_column(Integer, default=7)
    total_budget: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    spent_budget: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    total_participants: Mapped[int] = mapped_column(Integer, default=0)
    total_spins: Mapped[int] = mapped_column(Integer, default=0)
    total_wins: Mapped[int] = mapped_column(Integer, default=0)
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("admins.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Location(Base):
    __tablename__ = "locations"
    __table_args__ = (
        CheckConstraint("radius_meters > 0", name="ck_location_radius_positive"),
        Index("ix_locations_region", "state", "city", "is_active"),
    )
    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String(20), default="other")
    address: Mapped[str] = mapped_column(Text, default="")
    city: Mapped[str] = mapped_column(String, default="")
    state: Mapped[str] = mapped_column(String, default="")
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    radius_meters: Mapped[int] = mapped_column(Integer, default=500)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    contact_person: Mapped[str | None] = mapped_column(String, nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    total_spins: Mapped[int] = mapped_column(Integer, default=0)
    total_participants: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class LocationCampaign(Base):
    """Plain location <-> campaign mapping; carries no attributes."""
    __tablename__ = "location_campaigns"
    __table_args__ = (UniqueConstraint("location_id", "campaign_id", name="uq_location_campaign"),)
    id: Mapped[uuid.UUID] = _uuid_pk()
    location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False
    )
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )


class Prize(Base):
    __tablename__ = "prizes"
    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    color: Mapped[str] = mapped_column(String(7), default="#FFD700")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class PrizeRule(Base):
    """Odds and caps of one prize inside one campaign."""
    __tablename__ = "prize_rules"
    __table_args__ = (
        UniqueConstraint("campaign_id", "prize_id", name="uq_prize_rule_campaign_prize"),
        CheckConstraint("probability >= 0 and probability <= 1", name="ck_prize_rule_probability"),
    )
    id: Mapped[uuid.UUID] = _uuid_pk()
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    prize_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("prizes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    probability: Mapped[float] = mapped_column(Numeric(5, 4, asdecimal=False), nullable=False)
    max_per_day: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = unlimited
    max_total: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = unlimited
    value: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class User(Base):
    __tablename__ = "users"
    id: Mapped[uuid.UUID] = _uuid_pk()
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    gender: Mapped[str | None] = mapped_column(String(10), nullable=True)
    state: Mapped[str | None] = mapped_column(String, nullable=True)
    city: Mapped[str | None] = mapped_column(String, nullable=True)
    store_outlet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("locations.id"), nullable=False, index=True
    )
    consent_given: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    phone_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    device_id: Mapped[str | None] = mapped_column(String, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    last_spin_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_spins: Mapped[int] = mapped_column(Integer, default=0)
    total_wins: Mapped[int] = mapped_column(Integer, default=0)
    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class SpinResult(Base):
    __tablename__ = "spin_results"
    __table_args__ = (
        Index("ix_spin_results_user_campaign", "user_id", "campaign_id"),
        Index("ix_spin_results_win_window", "campaign_id", "prize_id", "is_win", "spin_date"),
        Index("ix_spin_results_location_day", "campaign_id", "location_id", "is_win", "spin_date"),
    )
    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    campaign_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("campaigns.id"), nullable=False)
    prize_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("prizes.id"), nullable=False)
    location_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("locations.id"), nullable=False)
    is_win: Mapped[bool] = mapped_column(Boolean, nullable=False)
    redemption_code: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    redemption_status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    device_id: Mapped[str] = mapped_column(String, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    spin_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)


class OTP(Base):
    __tablename__ = "otps"
    id: Mapped[uuid.UUID] = _uuid_pk()
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(12), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    verified: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
