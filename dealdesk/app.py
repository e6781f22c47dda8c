from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Generator

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from dealdesk import audit, deals, intake, inventory, notifications, occupancy, partners, services
from dealdesk.config import get_settings
from dealdesk.db import get_session, get_session_factory, init_db
from dealdesk.errors import DealDeskError, Unauthorized, ValidationFailed
from dealdesk.models import User
from dealdesk.notifications import Notifier
from dealdesk.schemas import (
    AssetCreate,
    AssetUpdate,
    AuditPage,
    ConversionOut,
    DealCreate,
    DealReplace,
    DealStatusUpdate,
    IntakeLinkCreate,
    IntakeLinkOut,
    IntakeSubmit,
    NotificationsUpdate,
    PageCreate,
    PageUpdate,
    PartnerCreate,
    PositionCreate,
    PositionUpdate,
    StatsOut,
    SubmissionConvert,
    SubmissionReject,
)
from dealdesk.statuses import DealStatus, SubmissionStatus

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    app.state.notifier = Notifier.with_workers(get_session_factory(), get_settings().notification_workers)
    yield
    app.state.notifier.shutdown()


app = FastAPI(
    title="DealDesk",
    version="0.1.0",
    description=(
        "Inventory, occupancy, and partner intake API for affiliate placements. "
        "All endpoints return JSON. Staff endpoints identify the caller with the X-User-Id header."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Inventory", "description": "Assets, pages, and positions."},
        {"name": "Deals", "description": "Place, update, and replace deals; find open positions."},
        {"name": "Intake", "description": "Single-use partner intake links and their submissions."},
        {"name": "Partners", "description": "Partners and their credentials."},
        {"name": "Activity", "description": "Audit log, notifications, and stats."},
    ],
)


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@app.exception_handler(DealDeskError)
async def dealdesk_error_handler(request: Request, exc: DealDeskError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'][1:]) or 'body'}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=ValidationFailed.status_code, content={"error": problems})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_notifier(request: Request) -> Notifier | None:
    return getattr(request.app.state, "notifier", None)


def current_user_id(
    x_user_id: int | None = Header(default=None), session: Session = Depends(db_session),
) -> int:
    if x_user_id is None or session.get(User, x_user_id) is None:
        raise Unauthorized("Unauthorized")
    return x_user_id


# ---------------------------------------------------------------------------
# Routes: Inventory
# ---------------------------------------------------------------------------


@app.get("/api/assets", tags=["Inventory"], summary="List assets with page and occupying deal counts")
async def list_assets(
    search: str | None = None, include_archived: bool = False,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    return inventory.list_assets(session, search, include_archived)


@app.post("/api/assets", status_code=201, tags=["Inventory"],
          summary="Create an asset with its Homepage and default position")
async def create_asset(
    body: AssetCreate, session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    asset = inventory.create_asset(session, user_id, body.name, body.asset_domain, body.description)
    return services.asset_summary(asset)


@app.put("/api/assets/{asset_id}", tags=["Inventory"], summary="Update an asset")
async def update_asset(
    asset_id: int, body: AssetUpdate,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    asset = inventory.update_asset(session, user_id, asset_id, **body.model_dump(exclude_unset=True))
    return services.asset_summary(asset)


@app.post("/api/assets/{asset_id}/archive", tags=["Inventory"], summary="Archive an asset without occupying deals")
async def archive_asset(
    asset_id: int, session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    return services.asset_summary(inventory.archive_asset(session, user_id, asset_id))


@app.get("/api/assets/{asset_id}/pages", tags=["Inventory"], summary="List an asset's pages")
async def list_pages(
    asset_id: int, include_archived: bool = False,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    return inventory.list_pages(session, asset_id, include_archived)


@app.post("/api/assets/{asset_id}/pages", status_code=201, tags=["Inventory"],
          summary="Create a page and its N/A position")
async def create_page(
    asset_id: int, body: PageCreate,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    page = inventory.create_page(session, user_id, asset_id, body.name, body.path, body.description)
    return services.page_summary(page)


@app.put("/api/assets/{asset_id}/pages/{page_id}", tags=["Inventory"], summary="Rename or edit a page")
async def update_page(
    asset_id: int, page_id: int, body: PageUpdate,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    page = inventory.update_page(session, user_id, asset_id, page_id, **body.model_dump(exclude_unset=True))
    return services.page_summary(page)


@app.post("/api/assets/{asset_id}/pages/{page_id}/archive", tags=["Inventory"], summary="Archive a page")
async def archive_page(
    asset_id: int, page_id: int,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    return services.page_summary(inventory.archive_page(session, user_id, asset_id, page_id))


@app.get("/api/assets/{asset_id}/pages/{page_id}/positions", tags=["Inventory"],
         summary="List a page's positions")
async def list_page_positions(
    asset_id: int, page_id: int, include_archived: bool = False,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    return inventory.list_positions(session, page_id=page_id, asset_id=asset_id, include_archived=include_archived)


@app.post("/api/assets/{asset_id}/pages/{page_id}/positions", status_code=201, tags=["Inventory"],
          summary="Create a position on a page")
async def create_page_position(
    asset_id: int, page_id: int, body: PositionCreate,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    position = inventory.create_position(
        session, user_id, body.name, page_id=page_id, asset_id=asset_id, details=body.details,
    )
    return services.position_summary(position)


@app.get("/api/assets/{asset_id}/positions", tags=["Inventory"],
         summary="List positions attached directly to an asset (legacy)")
async def list_asset_positions(
    asset_id: int, include_archived: bool = False,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    return inventory.list_positions(session, asset_id=asset_id, include_archived=include_archived)


@app.post("/api/assets/{asset_id}/positions", status_code=201, tags=["Inventory"],
          summary="Create a position directly on an asset (legacy)")
async def create_asset_position(
    asset_id: int, body: PositionCreate,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    position = inventory.create_position(session, user_id, body.name, asset_id=asset_id, details=body.details)
    return services.position_summary(position)


@app.put("/api/positions/{position_id}", tags=["Inventory"], summary="Rename or edit a position")
async def update_position(
    position_id: int, body: PositionUpdate,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    position = inventory.update_position(session, user_id, position_id, **body.model_dump(exclude_unset=True))
    return services.position_summary(position)


@app.post("/api/positions/{position_id}/archive", tags=["Inventory"], summary="Archive a position")
async def archive_position(
    position_id: int, session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    return services.position_summary(inventory.archive_position(session, user_id, position_id))


# ---------------------------------------------------------------------------
# Routes: Deals
# ---------------------------------------------------------------------------


@app.get("/api/open-positions", tags=["Deals"], summary="Positions open for a geo, with their occupying deals")
async def open_positions(
    geo: str | None = Query(default=None, max_length=8),
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    return [p.as_dict() for p in occupancy.find_positions(session, geo)]


@app.get("/api/deals", tags=["Deals"], summary="List deals, newest first")
async def list_deals(
    status: DealStatus | None = None, partner_id: int | None = None, asset_id: int | None = None,
    geo: str | None = Query(default=None, max_length=8),
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    rows = deals.list_deals(session, status=status, partner_id=partner_id, asset_id=asset_id, geo=geo)
    return [services.deal_summary(d) for d in rows]


@app.post("/api/deals", status_code=201, tags=["Deals"], summary="Place a deal on a position")
async def create_deal(
    body: DealCreate, session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
    notifier: Notifier | None = Depends(get_notifier),
):
    deal = deals.create_deal(
        session, user_id, partner_id=body.partner_id, brand_id=body.brand_id, position_id=body.position_id,
        geo=body.geo, status=body.status, affiliate_link=body.affiliate_link, start_date=body.start_date,
        notes=body.notes, notifier=notifier,
    )
    return services.deal_summary(deal)


@app.put("/api/deals/{deal_id}/status", tags=["Deals"], summary="Change a deal's status")
async def update_deal_status(
    deal_id: int, body: DealStatusUpdate,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
    notifier: Notifier | None = Depends(get_notifier),
):
    deal = deals.update_deal_status(session, user_id, deal_id, body.status, notifier=notifier)
    return services.deal_summary(deal)


@app.post("/api/deals/replace", status_code=201, tags=["Deals"],
          summary="End an occupying deal and place its replacement")
async def replace_deal(
    body: DealReplace, session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
    notifier: Notifier | None = Depends(get_notifier),
):
    ended, replacement = deals.replace_deal(
        session, user_id, existing_deal_id=body.existing_deal_id, partner_id=body.partner_id,
        brand_id=body.brand_id, geo=body.geo, affiliate_link=body.affiliate_link, notes=body.notes,
        notifier=notifier,
    )
    return {"ended": services.deal_summary(ended), "replacement": services.deal_summary(replacement)}


# ---------------------------------------------------------------------------
# Routes: Intake
# ---------------------------------------------------------------------------


@app.post("/api/intake-links", response_model=IntakeLinkOut, status_code=201, tags=["Intake"],
          summary="Issue a single-use intake link; the token is shown only once")
async def create_intake_link(
    body: IntakeLinkCreate, session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    issued = intake.issue_link(session, user_id, body.expires_in_days, body.note)
    return IntakeLinkOut(id=issued.link_id, token=issued.token, url=issued.url,
                         expires_at=issued.expires_at, note=issued.note)


@app.get("/api/intake-links", tags=["Intake"], summary="List intake links and their state")
async def list_intake_links(session: Session = Depends(db_session), user_id: int = Depends(current_user_id)):
    return intake.list_links(session)


@app.get("/api/intake/{token}", tags=["Intake"], summary="Check whether an intake link can be used")
async def validate_intake_token(token: str, session: Session = Depends(db_session)):
    validity = intake.validate_token(session, token)
    return {"valid": True, "expires_at": validity.expires_at.isoformat()}


@app.post("/api/intake/{token}", status_code=201, tags=["Intake"], summary="Submit partner details")
async def submit_intake(
    token: str, body: IntakeSubmit, session: Session = Depends(db_session),
    notifier: Notifier | None = Depends(get_notifier),
):
    submission = intake.submit(session, token, body.model_dump(), notifier=notifier)
    return services.submission_summary(submission)


@app.get("/api/intake-submissions", tags=["Intake"], summary="List submissions by status")
async def list_intake_submissions(
    status: SubmissionStatus = SubmissionStatus.PENDING,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    return [services.submission_summary(s) for s in intake.list_submissions(session, status)]


@app.post("/api/intake-submissions/{submission_id}/reject", tags=["Intake"], summary="Reject a pending submission")
async def reject_intake_submission(
    submission_id: int, body: SubmissionReject | None = None,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    reason = body.reason if body is not None else None
    return services.submission_summary(intake.reject_submission(session, user_id, submission_id, reason))


@app.post("/api/intake-submissions/{submission_id}/convert", response_model=ConversionOut, tags=["Intake"],
          summary="Convert a pending submission into Partner, Brand(s) and Contact")
async def convert_intake_submission(
    submission_id: int, body: SubmissionConvert | None = None,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
    notifier: Notifier | None = Depends(get_notifier),
):
    body = body or SubmissionConvert()
    result = intake.convert_submission(
        session, user_id, submission_id, partner_status=body.partner_status,
        is_direct=body.is_direct, force=body.force, notifier=notifier,
    )
    return ConversionOut(partner_id=result.partner_id, contact_id=result.contact_id, brand_ids=result.brand_ids)


# ---------------------------------------------------------------------------
# Routes: Partners
# ---------------------------------------------------------------------------


@app.post("/api/partners", status_code=201, tags=["Partners"], summary="Create a partner")
async def create_partner(
    body: PartnerCreate, session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    partner = partners.create_partner(
        session, user_id, body.name, website_domain=body.website_domain, is_direct=body.is_direct,
        status=body.status,
    )
    return services.partner_summary(partner)


@app.post("/api/partners/{partner_id}/credentials/{credential_id}/reveal", tags=["Partners"],
          summary="Reveal a stored credential password (audited)")
async def reveal_credential(
    partner_id: int, credential_id: int,
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    return {"password": partners.reveal_credential(session, user_id, partner_id, credential_id)}


# ---------------------------------------------------------------------------
# Routes: Activity
# ---------------------------------------------------------------------------


@app.get("/api/audit-log", response_model=AuditPage, tags=["Activity"], summary="Browse the audit trail")
async def list_audit_log(
    entity: str | None = None, entity_id: str | None = None, action: str | None = None,
    business_only: bool = True, date_from: datetime | None = None, date_to: datetime | None = None,
    page: int = Query(default=1, ge=1), limit: int = Query(default=50, ge=1, le=100),
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
):
    rows, total = audit.list_entries(
        session, entity=entity, entity_id=entity_id, action=action, business_only=business_only,
        date_from=date_from, date_to=date_to, page=page, limit=limit,
    )
    return AuditPage(items=[services.audit_summary(r) for r in rows], total=total, page=page, limit=limit)


@app.get("/api/notifications", tags=["Activity"], summary="The caller's notifications")
async def list_notifications(
    unread_only: bool = False, limit: int = Query(default=50, ge=1, le=100),
    session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
) -> dict[str, Any]:
    rows, unread = notifications.list_for_user(session, user_id, unread_only=unread_only, limit=limit)
    return {"notifications": [services.notification_summary(n) for n in rows], "unread_count": unread}


@app.put("/api/notifications", tags=["Activity"], summary="Mark one or all notifications read")
async def mark_notifications_read(
    body: NotificationsUpdate, session: Session = Depends(db_session), user_id: int = Depends(current_user_id),
) -> dict[str, Any]:
    if not body.mark_all and body.notification_id is None:
        raise ValidationFailed("Provide notification_id or mark_all")
    updated = notifications.mark_read(session, user_id, notification_id=body.notification_id, mark_all=body.mark_all)
    return {"success": True, "updated": updated}


@app.get("/api/stats", response_model=StatsOut, tags=["Activity"], summary="Dashboard counts")
async def get_stats(session: Session = Depends(db_session), user_id: int = Depends(current_user_id)):
    return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("dealdesk.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
