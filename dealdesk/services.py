"""Shared lookup, serialization, and stats helpers for the DealDesk API and CLI."""
from __future__ import annotations

from collections import Counter
from typing import Any, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dealdesk.errors import NotFound
from dealdesk.models import Asset, AuditLog, Deal, IntakeLink, IntakeSubmission, Notification, Page, Partner, Position
from dealdesk.statuses import DealStatus, SubmissionStatus, is_pipeline_status

ModelT = TypeVar("ModelT")

# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_entity(session: Session, model: type[ModelT], entity_id: int) -> ModelT | None:
    return session.execute(select(model).where(model.id == entity_id)).scalars().first()


def require_entity(session: Session, model: type[ModelT], entity_id: int, label: str | None = None) -> ModelT:
    obj = get_entity(session, model, entity_id)
    if obj is None:
        raise NotFound(f"{label or model.__name__} not found")
    return obj


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def partner_summary(partner: Partner) -> dict[str, Any]:
    return {
        "id": partner.id, "name": partner.name, "website_domain": partner.website_domain,
        "is_direct": partner.is_direct, "status": partner.status, "owner_user_id": partner.owner_user_id,
        "created_at": _iso(partner.created_at),
    }


def asset_summary(asset: Asset) -> dict[str, Any]:
    return {
        "id": asset.id, "name": asset.name, "asset_domain": asset.asset_domain,
        "description": asset.description, "status": asset.status,
    }


def page_summary(page: Page, position_count: int | None = None) -> dict[str, Any]:
    out = {
        "id": page.id, "asset_id": page.asset_id, "name": page.name, "path": page.path,
        "description": page.description, "status": page.status, "created_at": _iso(page.created_at),
    }
    if position_count is not None:
        out["position_count"] = position_count
    return out


def position_summary(position: Position, deal_count: int | None = None) -> dict[str, Any]:
    out = {
        "id": position.id, "page_id": position.page_id, "asset_id": position.asset_id,
        "name": position.name, "details": position.details, "status": position.status,
        "created_at": _iso(position.created_at),
    }
    if deal_count is not None:
        out["deal_count"] = deal_count
    return out


def deal_summary(deal: Deal) -> dict[str, Any]:
    return {
        "id": deal.id, "partner_id": deal.partner_id, "brand_id": deal.brand_id,
        "asset_id": deal.asset_id, "page_id": deal.page_id, "position_id": deal.position_id,
        "geo": deal.geo, "status": deal.status, "affiliate_link": deal.affiliate_link,
        "start_date": _iso(deal.start_date), "end_date": _iso(deal.end_date),
        "notes": deal.notes, "is_direct": deal.is_direct, "replaced_deal_id": deal.replaced_deal_id,
    }


def submission_summary(sub: IntakeSubmission) -> dict[str, Any]:
    return {
        "id": sub.id, "intake_link_id": sub.intake_link_id, "company_name": sub.company_name,
        "website_domain": sub.website_domain, "contact_name": sub.contact_name,
        "contact_email": sub.contact_email, "contact_phone": sub.contact_phone,
        "contact_telegram": sub.contact_telegram, "preferred_contact": sub.preferred_contact,
        "notes": sub.notes, "brands": sub.brands or [], "status": sub.status,
        "submitted_at": _iso(sub.submitted_at), "rejected_at": _iso(sub.rejected_at),
        "rejection_reason": sub.rejection_reason, "converted_partner_id": sub.converted_partner_id,
        "converted_at": _iso(sub.converted_at),
    }


def notification_summary(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id, "type": n.type, "title": n.title, "message": n.message,
        "entity_type": n.entity_type, "entity_id": n.entity_id, "is_read": n.is_read,
        "created_at": _iso(n.created_at),
    }


def audit_summary(entry: AuditLog) -> dict[str, Any]:
    return {
        "id": entry.id, "user_id": entry.user_id, "entity": entry.entity,
        "entity_id": entry.entity_id, "action": entry.action, "details": entry.details,
        "timestamp": _iso(entry.timestamp),
    }


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def compute_stats(session: Session) -> dict[str, Any]:
    """Simple counts for the dashboard."""
    by_status: Counter[str] = Counter(
        dict(session.execute(select(Deal.status, func.count()).group_by(Deal.status)).all())
    )
    pipeline = sum(n for status, n in by_status.items() if is_pipeline_status(status))
    return {
        "total_partners": session.execute(select(func.count()).select_from(Partner)).scalar_one(),
        "total_assets": session.execute(select(func.count()).select_from(Asset)).scalar_one(),
        "total_deals": sum(by_status.values()),
        "pipeline_deals": pipeline,
        "live_deals": by_status.get(DealStatus.LIVE, 0),
        "deals_by_status": dict(by_status),
        "pending_submissions": session.execute(
            select(func.count()).select_from(IntakeSubmission)
            .where(IntakeSubmission.status == SubmissionStatus.PENDING)
        ).scalar_one(),
        "unused_links": session.execute(
            select(func.count()).select_from(IntakeLink).where(IntakeLink.used_at.is_(None))
        ).scalar_one(),
    }
