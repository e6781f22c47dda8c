from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from dealdesk.statuses import (
    AssetStatus,
    BrandStatus,
    DealStatus,
    PageStatus,
    PartnerStatus,
    PositionStatus,
    SubmissionStatus,
)
from dealdesk.utils import utc_now


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), default="")
    email: Mapped[str] = mapped_column(String(300), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


# ---------------------------------------------------------------------------
# Partners
# ---------------------------------------------------------------------------


class Partner(Base):
    __tablename__ = "partners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    website_domain: Mapped[str | None] = mapped_column(String(300), nullable=True)
    is_direct: Mapped[bool] = mapped_column(Boolean, default=False)
    has_license: Mapped[bool] = mapped_column(Boolean, default=False)
    has_contract: Mapped[bool] = mapped_column(Boolean, default=False)
    has_banking: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(30), default=PartnerStatus.LEAD)
    owner_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    brands: Mapped[list[Brand]] = relationship(back_populates="partner", cascade="all, delete-orphan")
    contacts: Mapped[list[Contact]] = relationship(back_populates="partner", cascade="all, delete-orphan")
    credentials: Mapped[list[Credential]] = relationship(back_populates="partner", cascade="all, delete-orphan")


class Brand(Base):
    __tablename__ = "brands"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    partner_id: Mapped[int] = mapped_column(ForeignKey("partners.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    brand_domain: Mapped[str | None] = mapped_column(String(300), nullable=True)
    tracking_domain: Mapped[str | None] = mapped_column(String(300), nullable=True)
    licenses: Mapped[list[str]] = mapped_column(JSON, default=list)
    target_geos: Mapped[list[str]] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(30), default=BrandStatus.ACTIVE)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    partner: Mapped[Partner] = relationship(back_populates="brands")
    deals: Mapped[list[Deal]] = relationship(back_populates="brand")


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    partner_id: Mapped[int] = mapped_column(ForeignKey("partners.id"), nullable=False)
    brand_id: Mapped[int | None] = mapped_column(ForeignKey("brands.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str | None] = mapped_column(String(300), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(100), nullable=True)
    telegram: Mapped[str | None] = mapped_column(String(100), nullable=True)
    preferred_contact: Mapped[str | None] = mapped_column(String(30), nullable=True)

    partner: Mapped[Partner] = relationship(back_populates="contacts")


class Credential(Base):
    __tablename__ = "credentials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    partner_id: Mapped[int] = mapped_column(ForeignKey("partners.id"), nullable=False)
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    username: Mapped[str] = mapped_column(String(300), default="")
    password: Mapped[str] = mapped_column(Text, default="")

    partner: Mapped[Partner] = relationship(back_populates="credentials")


# ---------------------------------------------------------------------------
# Inventory: Asset -> Page -> Position -> Deal
# ---------------------------------------------------------------------------


class Asset(Base):
    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    asset_domain: Mapped[str | None] = mapped_column(String(300), unique=True, nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(30), default=AssetStatus.ACTIVE)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    pages: Mapped[list[Page]] = relationship(back_populates="asset", cascade="all, delete-orphan")
    legacy_positions: Mapped[list[Position]] = relationship(
        back_populates="asset", foreign_keys="Position.asset_id",
    )


class Page(Base):
    __tablename__ = "pages"
    __table_args__ = (UniqueConstraint("asset_id", "name", name="uq_pages_asset_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    path: Mapped[str] = mapped_column(String(500), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(30), default=PageStatus.ACTIVE)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    asset: Mapped[Asset] = relationship(back_populates="pages")
    positions: Mapped[list[Position]] = relationship(back_populates="page", cascade="all, delete-orphan")


class Position(Base):
    __tablename__ = "positions"
    __table_args__ = (
        UniqueConstraint("page_id", "name", name="uq_positions_page_name"),
        UniqueConstraint("asset_id", "name", name="uq_positions_asset_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # page_id stays nullable until reconcile_legacy_hierarchy() has run
    page_id: Mapped[int | None] = mapped_column(ForeignKey("pages.id"), nullable=True)
    asset_id: Mapped[int | None] = mapped_column(ForeignKey("assets.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    details: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(30), default=PositionStatus.ACTIVE)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    page: Mapped[Page | None] = relationship(back_populates="positions")
    asset: Mapped[Asset | None] = relationship(back_populates="legacy_positions", foreign_keys=[asset_id])
    deals: Mapped[list[Deal]] = relationship(back_populates="position")


class Deal(Base):
    __tablename__ = "deals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    partner_id: Mapped[int] = mapped_column(ForeignKey("partners.id"), nullable=False)
    brand_id: Mapped[int] = mapped_column(ForeignKey("brands.id"), nullable=False)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id"), nullable=False)
    position_id: Mapped[int] = mapped_column(ForeignKey("positions.id"), nullable=False)
    page_id: Mapped[int | None] = mapped_column(ForeignKey("pages.id"), nullable=True)
    geo: Mapped[str | None] = mapped_column(String(8), nullable=True)
    status: Mapped[str] = mapped_column(String(30), default=DealStatus.UNSURE)
    affiliate_link: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="")
    is_direct: Mapped[bool] = mapped_column(Boolean, default=False)
    replaced_deal_id: Mapped[int | None] = mapped_column(ForeignKey("deals.id"), nullable=True)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    updated_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    partner: Mapped[Partner] = relationship()
    brand: Mapped[Brand] = relationship(back_populates="deals")
    asset: Mapped[Asset] = relationship()
    position: Mapped[Position] = relationship(back_populates="deals")


class ScanResult(Base):
    __tablename__ = "scan_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="Completed")
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    items: Mapped[list[ScanResultItem]] = relationship(back_populates="scan_result", cascade="all, delete-orphan")


class ScanResultItem(Base):
    __tablename__ = "scan_result_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scan_result_id: Mapped[int] = mapped_column(ForeignKey("scan_results.id"), nullable=False)
    url: Mapped[str] = mapped_column(String(1000), default="")
    matched_deal_id: Mapped[int | None] = mapped_column(ForeignKey("deals.id"), nullable=True)
    matched_brand_id: Mapped[int | None] = mapped_column(ForeignKey("brands.id"), nullable=True)

    scan_result: Mapped[ScanResult] = relationship(back_populates="items")


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------


class IntakeLink(Base):
    __tablename__ = "intake_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    submissions: Mapped[list[IntakeSubmission]] = relationship(back_populates="intake_link")


class IntakeSubmission(Base):
    __tablename__ = "intake_submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    intake_link_id: Mapped[int] = mapped_column(ForeignKey("intake_links.id"), nullable=False)
    company_name: Mapped[str] = mapped_column(String(300), nullable=False)
    website_domain: Mapped[str | None] = mapped_column(String(300), nullable=True)
    contact_name: Mapped[str] = mapped_column(String(300), nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(300), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(100), nullable=True)
    contact_telegram: Mapped[str | None] = mapped_column(String(100), nullable=True)
    preferred_contact: Mapped[str | None] = mapped_column(String(30), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    brands: Mapped[Any] = mapped_column(JSON, default=list)  # [{"name": ..., "licenses": [...], ...}]
    status: Mapped[str] = mapped_column(String(30), default=SubmissionStatus.PENDING)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    rejected_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    converted_partner_id: Mapped[int | None] = mapped_column(ForeignKey("partners.id"), nullable=True)
    converted_brand_id: Mapped[int | None] = mapped_column(ForeignKey("brands.id"), nullable=True)
    converted_contact_id: Mapped[int | None] = mapped_column(ForeignKey("contacts.id"), nullable=True)
    converted_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    intake_link: Mapped[IntakeLink] = relationship(back_populates="submissions")


# ---------------------------------------------------------------------------
# Side effects: audit trail and inbox
# ---------------------------------------------------------------------------


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    entity: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[Any] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    message: Mapped[str] = mapped_column(Text, default="")
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
