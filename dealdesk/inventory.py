"""Asset -> Page -> Position hierarchy management.

Name uniqueness is enforced twice: an up-front lookup gives a friendly
Conflict in the common case, and the table's unique constraint catches the
race where two requests insert the same name concurrently.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy import exists, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dealdesk import audit
from dealdesk.audit import AuditAction
from dealdesk.errors import Conflict, NotFound, ValidationFailed
from dealdesk.models import Asset, Deal, Page, Position
from dealdesk.services import asset_summary, get_entity, page_summary, position_summary, require_entity
from dealdesk.statuses import OCCUPYING_STATUSES, AssetStatus, PageStatus, PositionStatus

log = logging.getLogger(__name__)

HOMEPAGE_NAME = "Homepage"
DEFAULT_POSITION_NAME = "N/A"


def _commit_or_conflict(session: Session, message: str) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise Conflict(message) from exc


def _apply(obj: Any, changes: dict[str, Any]) -> list[str]:
    """Set every non-None change on obj and return the names of the fields given."""
    given = [k for k, v in changes.items() if v is not None]
    for key in given:
        setattr(obj, key, changes[key])
    return given


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def create_asset(
    session: Session, user_id: int, name: str, asset_domain: str | None = None, description: str = "",
) -> Asset:
    """Create an asset with its Homepage page and that page's default position."""
    if asset_domain:
        taken = session.execute(select(Asset).where(Asset.asset_domain == asset_domain)).scalars().first()
        if taken is not None:
            raise Conflict(f"An asset with this domain already exists ({taken.name})")
    asset = Asset(name=name, asset_domain=asset_domain or None, description=description)
    session.add(asset)
    try:
        session.flush()
        homepage = Page(asset_id=asset.id, name=HOMEPAGE_NAME, path="/")
        session.add(homepage)
        session.flush()
        session.add(Position(page_id=homepage.id, name=DEFAULT_POSITION_NAME))
    except IntegrityError as exc:
        session.rollback()
        raise Conflict("An asset with this domain already exists") from exc
    _commit_or_conflict(session, "An asset with this domain already exists")
    audit.record(session, user_id, "Asset", asset.id, AuditAction.CREATE, {"name": asset.name})
    return asset


def create_page(
    session: Session, user_id: int, asset_id: int, name: str, path: str = "", description: str = "",
) -> Page:
    """Create a page and its "N/A" position in one transaction."""
    require_entity(session, Asset, asset_id, "Asset")
    conflict = "A page with this name already exists for this asset"
    duplicate = session.execute(
        select(Page.id).where(Page.asset_id == asset_id, Page.name == name)
    ).first()
    if duplicate is not None:
        raise Conflict(conflict)

    page = Page(asset_id=asset_id, name=name, path=path, description=description)
    session.add(page)
    try:
        session.flush()
        session.add(Position(page_id=page.id, name=DEFAULT_POSITION_NAME))
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise Conflict(conflict) from exc
    _commit_or_conflict(session, conflict)

    audit.record(session, user_id, "Page", page.id, AuditAction.CREATE, {"name": page.name, "asset_id": asset_id})
    return page


def create_position(
    session: Session, user_id: int, name: str, *, page_id: int | None = None,
    asset_id: int | None = None, details: str = "",
) -> Position:
    """Create a position under a page, or directly under an asset (legacy)."""
    if page_id is not None:
        page = get_entity(session, Page, page_id)
        if page is None or (asset_id is not None and page.asset_id != asset_id):
            raise NotFound("Page not found")
        scope = Position.page_id == page_id
        conflict = "A position with this name already exists for this page"
        position = Position(page_id=page_id, name=name, details=details)
        audit_details: dict[str, Any] = {"name": name, "page_id": page_id, "asset_id": page.asset_id}
    elif asset_id is not None:
        require_entity(session, Asset, asset_id, "Asset")
        scope = Position.asset_id == asset_id
        conflict = "A position with this name already exists for this asset"
        position = Position(asset_id=asset_id, name=name, details=details)
        audit_details = {"name": name, "asset_id": asset_id}
    else:
        raise ValidationFailed("A position needs a page or an asset")

    if session.execute(select(Position.id).where(scope, Position.name == name)).first() is not None:
        raise Conflict(conflict)
    session.add(position)
    _commit_or_conflict(session, conflict)

    audit.record(session, user_id, "Position", position.id, AuditAction.CREATE, audit_details)
    return position


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def list_assets(session: Session, search: str | None = None, include_archived: bool = False) -> list[dict]:
    """Assets newest first, with page counts and the number of occupying deals."""
    page_count = (
        select(func.count(Page.id))
        .where(Page.asset_id == Asset.id, Page.status == PageStatus.ACTIVE)
        .correlate(Asset).scalar_subquery()
    )
    occupied = (
        select(func.count(Deal.id))
        .where(Deal.asset_id == Asset.id, Deal.status.in_(OCCUPYING_STATUSES))
        .correlate(Asset).scalar_subquery()
    )
    query = select(Asset, page_count, occupied)
    if not include_archived:
        query = query.where(Asset.status == AssetStatus.ACTIVE)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.where(Asset.name.ilike(pattern) | Asset.asset_domain.ilike(pattern))
    rows = session.execute(query.order_by(Asset.created_at.desc(), Asset.id.desc())).all()
    return [
        {**asset_summary(asset), "page_count": pages, "occupying_deal_count": deals}
        for asset, pages, deals in rows
    ]



def list_pages(session: Session, asset_id: int, include_archived: bool = False) -> list[dict]:
    require_entity(session, Asset, asset_id, "Asset")
    position_count = (
        select(func.count(Position.id)).where(Position.page_id == Page.id).correlate(Page).scalar_subquery()
    )
    query = select(Page, position_count).where(Page.asset_id == asset_id)
    if not include_archived:
        query = query.where(Page.status == PageStatus.ACTIVE)
    rows = session.execute(query.order_by(Page.created_at, Page.id)).all()
    return [page_summary(page, count) for page, count in rows]


def list_positions(
    session: Session, *, page_id: int | None = None, asset_id: int | None = None,
    include_archived: bool = False,
) -> list[dict]:
    """List positions of a page (or legacy positions of an asset) with deal counts."""
    if page_id is not None:
        page = get_entity(session, Page, page_id)
        if page is None or (asset_id is not None and page.asset_id != asset_id):
            raise NotFound("Page not found")
        scope = Position.page_id == page_id
    elif asset_id is not None:
        require_entity(session, Asset, asset_id, "Asset")
        scope = Position.asset_id == asset_id
    else:
        raise ValidationFailed("A page or an asset is required")

    deal_count = (
        select(func.count(Deal.id)).where(Deal.position_id == Position.id).correlate(Position).scalar_subquery()
    )
    query = select(Position, deal_count).where(scope)
    if not include_archived:
        query = query.where(Position.status == PositionStatus.ACTIVE)
    rows = session.execute(query.order_by(Position.created_at.desc(), Position.id.desc())).all()
    return [position_summary(pos, count) for pos, count in rows]


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


def update_asset(
    session: Session, user_id: int, asset_id: int, *, name: str | None = None,
    asset_domain: str | None = None, description: str | None = None,
) -> Asset:
    asset = require_entity(session, Asset, asset_id, "Asset")
    conflict = "An asset with this domain already exists"
    if asset_domain and asset_domain != asset.asset_domain:
        taken = session.execute(
            select(Asset).where(Asset.asset_domain == asset_domain, Asset.id != asset_id)
        ).scalars().first()
        if taken is not None:
            raise Conflict(f"{conflict} ({taken.name})")
    updated = _apply(asset, {"name": name, "asset_domain": asset_domain, "description": description})
    _commit_or_conflict(session, conflict)
    audit.record(session, user_id, "Asset", asset.id, AuditAction.UPDATE, {"updated_fields": updated})
    return asset


def update_page(
    session: Session, user_id: int, asset_id: int, page_id: int, *, name: str | None = None,
    path: str | None = None, description: str | None = None,
) -> Page:
    page = get_entity(session, Page, page_id)
    if page is None or page.asset_id != asset_id:
        raise NotFound("Page not found")
    conflict = "A page with this name already exists for this asset"
    if name and name != page.name:
        duplicate = session.execute(
            select(Page.id).where(Page.asset_id == asset_id, Page.name == name)
        ).first()
        if duplicate is not None:
            raise Conflict(conflict)
    updated = _apply(page, {"name": name, "path": path, "description": description})
    _commit_or_conflict(session, conflict)
    audit.record(session, user_id, "Page", page.id, AuditAction.UPDATE,
                 {"updated_fields": updated, "asset_id": asset_id})
    return page


def update_position(
    session: Session, user_id: int, position_id: int, *, name: str | None = None, details: str | None = None,
) -> Position:
    position = require_entity(session, Position, position_id, "Position")
    if position.page_id is not None:
        scope = Position.page_id == position.page_id
        conflict = "A position with this name already exists for this page"
    else:
        scope = Position.asset_id == position.asset_id
        conflict = "A position with this name already exists for this asset"
    if name and name != position.name:
        if session.execute(select(Position.id).where(scope, Position.name == name)).first() is not None:
            raise Conflict(conflict)
    updated = _apply(position, {"name": name, "details": details})
    _commit_or_conflict(session, conflict)
    audit.record(session, user_id, "Position", position.id, AuditAction.UPDATE, {"updated_fields": updated})
    return position


# ---------------------------------------------------------------------------
# Archiving
# ---------------------------------------------------------------------------


def _has_occupying_deals(session: Session, *position_filter) -> bool:
    return session.execute(
        select(exists().where(Deal.position_id == Position.id, Deal.status.in_(OCCUPYING_STATUSES), *position_filter))
    ).scalar_one()


def archive_asset(session: Session, user_id: int, asset_id: int) -> Asset:
    """Retire an asset. Its positions drop out of the open-position search."""
    asset = require_entity(session, Asset, asset_id, "Asset")
    occupying = session.execute(
        select(func.count(Deal.id)).where(Deal.asset_id == asset_id, Deal.status.in_(OCCUPYING_STATUSES))
    ).scalar_one()
    if occupying:
        raise Conflict(f"Cannot archive an asset with {occupying} occupying deal(s); end or replace them first")
    previous = asset.status
    asset.status = AssetStatus.ARCHIVED
    session.commit()
    audit.record(session, user_id, "Asset", asset.id, AuditAction.ARCHIVE,
                 {"name": asset.name, "previous_status": previous})
    return asset


def archive_page(session: Session, user_id: int, asset_id: int, page_id: int) -> Page:
    page = get_entity(session, Page, page_id)
    if page is None or page.asset_id != asset_id:
        raise NotFound("Page not found")
    if _has_occupying_deals(session, Position.page_id == page_id):
        raise Conflict("Cannot archive a page with positions that have occupying deals")
    previous = page.status
    page.status = PageStatus.ARCHIVED
    session.commit()
    audit.record(session, user_id, "Page", page.id, AuditAction.ARCHIVE,
                 {"name": page.name, "asset_id": asset_id, "previous_status": previous})
    return page


def archive_position(session: Session, user_id: int, position_id: int) -> Position:
    position = require_entity(session, Position, position_id, "Position")
    if _has_occupying_deals(session, Position.id == position_id):
        raise Conflict("Cannot archive a position that has occupying deals")
    previous = position.status
    position.status = PositionStatus.ARCHIVED
    session.commit()
    audit.record(session, user_id, "Position", position.id, AuditAction.ARCHIVE,
                 {"name": position.name, "previous_status": previous})
    return position


# ---------------------------------------------------------------------------
# Legacy reconciliation
# ---------------------------------------------------------------------------


@dataclass
class ReconcileReport:
    pages_created: int = 0
    positions_attached: int = 0
    positions_skipped: int = 0
    deals_updated: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.pages_created or self.positions_attached or self.deals_updated)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def reconcile_legacy_hierarchy(session: Session) -> ReconcileReport:
    """Repair data created before pages existed. Safe to re-run.

    1. Every asset gets a Homepage page if it lacks one.
    2. Positions without a page move to their asset's Homepage.
    3. Deals without a page copy it from their position.
    """
    report = ReconcileReport()

    missing = session.execute(
        select(Asset).where(~exists().where(Page.asset_id == Asset.id, Page.name == HOMEPAGE_NAME))
    ).scalars().all()
    for asset in missing:
        session.add(Page(asset_id=asset.id, name=HOMEPAGE_NAME, path="/"))
        report.pages_created += 1
        log.info("Created Homepage for asset %r", asset.name)
    session.flush()

    homepages = dict(session.execute(select(Page.asset_id, Page.id).where(Page.name == HOMEPAGE_NAME)).all())
    taken = {
        (page_id, name)
        for page_id, name in session.execute(
            select(Position.page_id, Position.name).where(Position.page_id.in_(list(homepages.values())))
        ).all()
    }
    orphans = session.execute(
        select(Position).where(Position.page_id.is_(None), Position.asset_id.is_not(None)).order_by(Position.id)
    ).scalars().all()
    for position in orphans:
        homepage_id = homepages.get(position.asset_id)
        if homepage_id is None or (homepage_id, position.name) in taken:
            log.warning("Cannot attach position %s (%r) to a Homepage, name already used",
                        position.id, position.name)
            report.positions_skipped += 1
            continue
        position.page_id = homepage_id
        taken.add((homepage_id, position.name))
        report.positions_attached += 1
    session.flush()

    stale = session.execute(
        select(Deal, Position.page_id)
        .join(Position, Deal.position_id == Position.id)
        .where(Deal.page_id.is_(None), Position.page_id.is_not(None))
    ).all()
    for deal, page_id in stale:
        deal.page_id = page_id
        report.deals_updated += 1

    session.commit()
    log.info("Legacy reconciliation: %s", report.as_dict())
    return report
