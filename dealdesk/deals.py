"""Deal lifecycle: placing, status changes, and replacement.

At most one occupying deal per (position, geo) is expected but not
enforced by a constraint. Overlaps are logged and flagged in the audit
details so they can be cleaned up by a human.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from dealdesk import audit
from dealdesk.audit import AuditAction
from dealdesk.errors import Conflict, NotFound, ValidationFailed
from dealdesk.models import Brand, Deal, Partner, Position
from dealdesk.notifications import NotificationType, Notifier
from dealdesk.services import require_entity
from dealdesk.statuses import OCCUPYING_STATUSES, DealStatus, PositionStatus, is_occupying_status
from dealdesk.tokens import Clock
from dealdesk.utils import normalize_geo, utc_now

log = logging.getLogger(__name__)


def find_overlapping_deals(
    session: Session, position_id: int, geo: str | None, exclude_deal_id: int | None = None,
) -> list[Deal]:
    """Occupying deals already holding (position, geo). A null geo never overlaps."""
    if geo is None:
        return []
    query = select(Deal).where(
        Deal.position_id == position_id, Deal.geo == geo, Deal.status.in_(OCCUPYING_STATUSES),
    )
    if exclude_deal_id is not None:
        query = query.where(Deal.id != exclude_deal_id)
    return list(session.execute(query).scalars().all())


def list_deals(
    session: Session, *, status: DealStatus | str | None = None, partner_id: int | None = None,
    asset_id: int | None = None, geo: str | None = None,
) -> list[Deal]:
    query = select(Deal)
    if status:
        query = query.where(Deal.status == str(status))
    if partner_id is not None:
        query = query.where(Deal.partner_id == partner_id)
    if asset_id is not None:
        query = query.where(Deal.asset_id == asset_id)
    if normalize_geo(geo):
        query = query.where(Deal.geo == normalize_geo(geo))
    return list(session.execute(query.order_by(Deal.created_at.desc(), Deal.id.desc())).scalars().all())


def _load_parties(session: Session, partner_id: int, brand_id: int) -> tuple[Partner, Brand]:
    partner = require_entity(session, Partner, partner_id, "Partner")
    brand = require_entity(session, Brand, brand_id, "Brand")
    if brand.partner_id != partner.id:
        raise ValidationFailed("Brand does not belong to the specified partner")
    return partner, brand


def _load_position(session: Session, position_id: int) -> Position:
    position = require_entity(session, Position, position_id, "Position")
    if position.status != PositionStatus.ACTIVE:
        raise Conflict("Position is archived")
    if position.page is None:
        raise Conflict("Position is not attached to a page yet; run the page reconciliation first")
    return position


def create_deal(
    session: Session, user_id: int, *, partner_id: int, brand_id: int, position_id: int,
    geo: str | None = None, status: DealStatus = DealStatus.UNSURE, affiliate_link: str | None = None,
    start_date: datetime | None = None, notes: str = "", notifier: Notifier | None = None,
) -> Deal:
    partner, brand = _load_parties(session, partner_id, brand_id)
    position = _load_position(session, position_id)
    geo = normalize_geo(geo)

    overlaps = find_overlapping_deals(session, position.id, geo) if is_occupying_status(status) else []
    if overlaps:
        log.warning("Position %s already has occupying deal(s) %s for geo %s",
                    position.id, [d.id for d in overlaps], geo)

    deal = Deal(
        partner_id=partner.id, brand_id=brand.id, asset_id=position.page.asset_id,
        page_id=position.page_id, position_id=position.id, geo=geo, status=status,
        affiliate_link=affiliate_link, start_date=start_date, notes=notes,
        is_direct=partner.is_direct, created_by_id=user_id,
    )
    session.add(deal)
    session.commit()

    details: dict[str, Any] = {
        "partner_id": partner.id, "brand_id": brand.id, "asset_id": deal.asset_id,
        "position_id": position.id, "geo": geo, "status": str(status),
    }
    if overlaps:
        details["overlapping_deal_ids"] = [d.id for d in overlaps]
    audit.record(session, user_id, "Deal", deal.id, AuditAction.CREATE, details)

    if notifier is not None:
        notifier.broadcast(
            NotificationType.DEAL_CREATED, "New Deal Created",
            f"Deal created for {brand.name} on {position.page.asset.name} - {position.name}",
            entity_type="Deal", entity_id=deal.id,
        )
    return deal


def update_deal_status(
    session: Session, user_id: int, deal_id: int, status: DealStatus, *,
    now: Clock = utc_now, notifier: Notifier | None = None,
) -> Deal:
    deal = require_entity(session, Deal, deal_id, "Deal")
    previous = deal.status
    freed = is_occupying_status(previous) and not is_occupying_status(status)
    reoccupied = is_occupying_status(status) and not is_occupying_status(previous)

    overlaps = []
    if reoccupied:
        overlaps = find_overlapping_deals(session, deal.position_id, deal.geo, exclude_deal_id=deal.id)
    if overlaps:
        log.warning("Deal %s re-occupies position %s already held by deal(s) %s for geo %s",
                    deal.id, deal.position_id, [d.id for d in overlaps], deal.geo)

    deal.status = status
    deal.updated_by_id = user_id
    if freed:
        deal.end_date = now()
    elif reoccupied:
        deal.end_date = None
    session.commit()

    details: dict[str, Any] = {"updated_fields": ["status"], "previous_status": previous, "new_status": str(status)}
    if overlaps:
        details["overlapping_deal_ids"] = [d.id for d in overlaps]
    audit.record(session, user_id, "Deal", deal.id, AuditAction.UPDATE, details)

    if freed and notifier is not None:
        notifier.broadcast(
            NotificationType.POSITION_AVAILABLE, "Position Available",
            f"{deal.position.name} on {deal.asset.name} is now available (deal with {deal.brand.name} ended)",
            entity_type="Deal", entity_id=deal.id,
        )
    return deal


def replace_deal(
    session: Session, user_id: int, *, existing_deal_id: int, partner_id: int, brand_id: int,
    geo: str | None = None, affiliate_link: str | None = None, notes: str = "",
    now: Clock = utc_now, notifier: Notifier | None = None,
) -> tuple[Deal, Deal]:
    """End an occupying deal and place a new one on the same position.

    Both rows and both audit entries commit together.
    """
    existing = session.get(Deal, existing_deal_id)
    if existing is None:
        raise NotFound("Existing deal not found")
    if not is_occupying_status(existing.status):
        raise Conflict(f"Existing deal is {existing.status} and cannot be replaced")
    partner, brand = _load_parties(session, partner_id, brand_id)

    ended_at = now()
    try:
        existing.status = DealStatus.INACTIVE
        existing.end_date = ended_at
        existing.updated_by_id = user_id

        replacement = Deal(
            partner_id=partner.id, brand_id=brand.id, asset_id=existing.asset_id,
            page_id=existing.page_id, position_id=existing.position_id,
            geo=normalize_geo(geo) or existing.geo, status=DealStatus.UNSURE,
            affiliate_link=affiliate_link, start_date=ended_at, notes=notes,
            is_direct=partner.is_direct, replaced_deal_id=existing.id, created_by_id=user_id,
        )
        session.add(replacement)
        session.flush()
        session.add_all([
            audit.build_entry(user_id, "Deal", existing.id, AuditAction.ENDED_BY_REPLACEMENT, {
                "replaced_by_deal_id": replacement.id, "new_partner_id": partner.id, "new_brand_id": brand.id,
            }),
            audit.build_entry(user_id, "Deal", replacement.id, AuditAction.CREATE_REPLACEMENT, {
                "replaced_deal_id": existing.id, "previous_partner_id": existing.partner_id,
                "previous_brand_id": existing.brand_id, "status": str(replacement.status),
            }),
        ])
        session.commit()
    except Exception:
        session.rollback()
        raise

    if notifier is not None:
        notifier.broadcast(
            NotificationType.DEAL_REPLACED, "Deal Replaced",
            f"Deal on {existing.asset.name} - {existing.position.name} replaced with {brand.name}",
            entity_type="Deal", entity_id=replacement.id,
        )
    return existing, replacement
