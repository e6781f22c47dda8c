"""Pydantic request/response schemas for the DealDesk API."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from dealdesk.statuses import DealStatus, PartnerStatus


class AssetCreate(BaseModel):
    name: str = Field(min_length=1)
    asset_domain: str | None = None
    description: str = ""


class AssetUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    asset_domain: str | None = None
    description: str | None = None


class PageCreate(BaseModel):
    name: str = Field(min_length=1)
    path: str = ""
    description: str = ""


class PageUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    path: str | None = None
    description: str | None = None


class PositionCreate(BaseModel):
    name: str = Field(min_length=1)
    details: str = ""


class PositionUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    details: str | None = None


class DealCreate(BaseModel):
    partner_id: int
    brand_id: int
    position_id: int
    geo: str | None = None
    status: DealStatus = DealStatus.UNSURE
    affiliate_link: str | None = None
    start_date: datetime | None = None
    notes: str = ""


class DealStatusUpdate(BaseModel):
    status: DealStatus


class DealReplace(BaseModel):
    existing_deal_id: int
    partner_id: int
    brand_id: int
    geo: str | None = None
    affiliate_link: str | None = None
    notes: str = ""


class PartnerCreate(BaseModel):
    name: str = Field(min_length=1)
    website_domain: str | None = None
    is_direct: bool = False
    status: PartnerStatus = PartnerStatus.LEAD

    @field_validator("name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class IntakeLinkCreate(BaseModel):
    expires_in_days: int | None = None
    note: str | None = None


class IntakeLinkOut(BaseModel):
    id: int
    token: str
    url: str
    expires_at: datetime
    note: str | None = None


class BrandProposal(BaseModel):
    name: str | None = None
    brand_domain: str | None = None
    tracking_domain: str | None = None
    licenses: list[str] = []
    target_geos: list[str] = []


class IntakeSubmit(BaseModel):
    company_name: str = Field(min_length=1)
    website_domain: str | None = None
    contact_name: str = Field(min_length=1)
    contact_email: str | None = None
    contact_phone: str | None = None
    contact_telegram: str | None = None
    preferred_contact: str | None = None
    notes: str | None = None
    brands: list[BrandProposal] = []

    @field_validator("company_name", "contact_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class SubmissionReject(BaseModel):
    reason: str | None = None


class SubmissionConvert(BaseModel):
    partner_status: PartnerStatus = PartnerStatus.LEAD
    is_direct: bool = False
    force: bool = False


class ConversionOut(BaseModel):
    partner_id: int
    contact_id: int
    brand_ids: list[int]


class NotificationsUpdate(BaseModel):
    notification_id: int | None = None
    mark_all: bool = False


class StatsOut(BaseModel):
    total_partners: int
    total_assets: int
    total_deals: int
    pipeline_deals: int
    live_deals: int
    deals_by_status: dict[str, int]
    pending_submissions: int
    unused_links: int


class AuditPage(BaseModel):
    items: list[dict[str, Any]]
    total: int
    page: int
    limit: int
