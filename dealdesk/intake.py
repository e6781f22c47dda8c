"""Partner intake: single-use expiring links and the submissions made through them.

Link lifecycle::

    Active (unused, unexpired) --submit--> Consumed   (used_at set)
    Active --time passes--> Expired                   (computed, never stored)

Submission lifecycle: Pending -> Converted | Rejected, exactly once.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from dealdesk import audit, tokens
from dealdesk.audit import AuditAction
from dealdesk.config import get_settings
from dealdesk.errors import Conflict, Gone, NotFound, ValidationFailed
from dealdesk.licenses import remap_codes
from dealdesk.models import Brand, Contact, IntakeLink, IntakeSubmission, Partner
from dealdesk.notifications import NotificationType, Notifier
from dealdesk.services import require_entity
from dealdesk.statuses import PartnerStatus, SubmissionStatus
from dealdesk.tokens import Clock, RandomSource
from dealdesk.utils import ensure_utc, normalize_company_name, normalize_domain, normalize_geo, utc_now

log = logging.getLogger(__name__)

SUBMISSION_FIELDS = (
    "company_name", "website_domain", "contact_name", "contact_email", "contact_phone",
    "contact_telegram", "preferred_contact", "notes",
)


@dataclass
class IssuedLink:
    """Returned once at issue time; the raw token is not recoverable afterwards."""

    link_id: int
    token: str
    url: str
    expires_at: datetime
    note: str | None


@dataclass
class LinkValidity:
    expires_at: datetime


@dataclass
class ConversionResult:
    partner_id: int
    contact_id: int
    brand_ids: list[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------


def issue_link(
    session: Session, user_id: int, expires_in_days: int | None = None, note: str | None = None, *,
    base_url: str | None = None, now: Clock = utc_now, random_bytes: RandomSource = secrets.token_bytes,
) -> IssuedLink:
    settings = get_settings()
    days = settings.intake_link_default_days if expires_in_days is None else expires_in_days
    if not 1 <= days <= settings.intake_link_max_days:
        raise ValidationFailed(f"expires_in_days must be between 1 and {settings.intake_link_max_days}")

    raw, handle = tokens.issue(random_bytes)
    issued_at = now()
    link = IntakeLink(
        token_hash=handle, created_by_user_id=user_id,
        expires_at=issued_at + timedelta(days=days), note=note, created_at=issued_at,
    )
    session.add(link)
    session.commit()
    audit.record(session, user_id, "IntakeLink", link.id, AuditAction.CREATE,
                 {"expires_at": link.expires_at.isoformat(), "note": note})

    base = (base_url if base_url is not None else settings.public_base_url).strip().rstrip("/")
    return IssuedLink(link_id=link.id, token=raw, url=f"{base}/intake/{raw}",
                      expires_at=link.expires_at, note=note)


def _live_link(session: Session, token: str, now: Clock) -> IntakeLink:
    link = session.execute(
        select(IntakeLink).where(IntakeLink.token_hash == tokens.hash_token(token))
    ).scalars().first()
    if link is None:
        raise NotFound("Invalid link")
    if link.used_at is not None:
        raise Gone("This link has already been used")
    if now() > ensure_utc(link.expires_at):
        raise Gone("This link has expired")
    return link


def validate_token(session: Session, token: str, now: Clock = utc_now) -> LinkValidity:
    """Read-only check; reveals nothing beyond the expiry."""
    link = _live_link(session, token, now)
    return LinkValidity(expires_at=ensure_utc(link.expires_at))


def list_links(session: Session, now: Clock = utc_now) -> list[dict[str, Any]]:
    submission_count = (
        select(func.count(IntakeSubmission.id))
        .where(IntakeSubmission.intake_link_id == IntakeLink.id)
        .correlate(IntakeLink).scalar_subquery()
    )
    rows = session.execute(
        select(IntakeLink, submission_count).order_by(IntakeLink.created_at.desc(), IntakeLink.id.desc())
    ).all()
    current = now()
    out = []
    for link, count in rows:
        if link.used_at is not None:
            state = "used"
        elif current > ensure_utc(link.expires_at):
            state = "expired"
        else:
            state = "active"
        out.append({
            "id": link.id, "created_by_user_id": link.created_by_user_id, "note": link.note,
            "expires_at": ensure_utc(link.expires_at).isoformat(),
            "used_at": ensure_utc(link.used_at).isoformat() if link.used_at else None,
            "state": state, "submission_count": count,
        })
    return out


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


def submit(
    session: Session, token: str, data: dict[str, Any], *, now: Clock = utc_now,
    notifier: Notifier | None = None,
) -> IntakeSubmission:
    """Consume a link and store the submission atomically."""
    link = _live_link(session, token, now)

    if not data.get("company_name") or not data.get("contact_name"):
        raise ValidationFailed("company_name and contact_name are required")
    brands = data.get("brands") or []
    if not isinstance(brands, list):
        raise ValidationFailed("brands must be a list")

    consumed_at = now()
    submission = IntakeSubmission(
        intake_link_id=link.id, brands=brands, submitted_at=consumed_at,
        **{f: data.get(f) for f in SUBMISSION_FIELDS},
    )
    try:
        session.add(submission)
        session.flush()
        # The used_at guard makes the consume step the arbiter between racing submits.
        consumed = session.execute(
            update(IntakeLink)
            .where(IntakeLink.id == link.id, IntakeLink.used_at.is_(None))
            .values(used_at=consumed_at)
        )
        if consumed.rowcount != 1:
            raise Gone("This link has already been used")
        session.commit()
    except Exception:
        session.rollback()
        raise

    audit.record(session, None, "IntakeSubmission", submission.id, AuditAction.CREATE,
                 {"source": "intake", "intake_link_id": link.id, "company_name": submission.company_name})
    if notifier is not None:
        notifier.broadcast(
            NotificationType.INTAKE_SUBMISSION, "New Intake Submission",
            f'New partner intake from "{submission.company_name}" ({submission.contact_name})',
            entity_type="IntakeSubmission", entity_id=submission.id,
        )
    return submission


def list_submissions(
    session: Session, status: SubmissionStatus | str = SubmissionStatus.PENDING,
) -> list[IntakeSubmission]:
    return list(session.execute(
        select(IntakeSubmission).where(IntakeSubmission.status == str(status))
        .order_by(IntakeSubmission.submitted_at.desc(), IntakeSubmission.id.desc())
    ).scalars().all())


def _decide(session: Session, submission: IntakeSubmission, **values: Any) -> None:
    """Move a Pending submission to its decided state, or raise Conflict."""
    decided = session.execute(
        update(IntakeSubmission)
        .where(IntakeSubmission.id == submission.id, IntakeSubmission.status == SubmissionStatus.PENDING)
        .values(**values)
    )
    if decided.rowcount != 1:
        session.rollback()
        session.refresh(submission)
        raise Conflict(f"Submission is already {submission.status}")


def reject_submission(
    session: Session, user_id: int, submission_id: int, reason: str | None = None, *,
    now: Clock = utc_now,
) -> IntakeSubmission:
    submission = require_entity(session, IntakeSubmission, submission_id, "Submission")
    if submission.status != SubmissionStatus.PENDING:
        raise Conflict(f"Submission is already {submission.status}")

    _decide(session, submission, status=SubmissionStatus.REJECTED, rejected_by_user_id=user_id,
            rejected_at=now(), rejection_reason=reason or None)
    session.commit()
    session.refresh(submission)

    audit.record(session, user_id, "IntakeSubmission", submission.id, AuditAction.REJECT,
                 {"company_name": submission.company_name, "reason": reason or None})
    return submission


def find_duplicate_partners(session: Session, name: str, website_domain: str | None = None) -> list[Partner]:
    """Partners whose normalized name or normalized website domain matches."""
    wanted_name = normalize_company_name(name)
    wanted_domain = normalize_domain(website_domain) if website_domain else None
    matches = []
    for partner in session.execute(select(Partner).order_by(Partner.id)).scalars():
        if normalize_company_name(partner.name) == wanted_name:
            matches.append(partner)
        elif wanted_domain and partner.website_domain and normalize_domain(partner.website_domain) == wanted_domain:
            matches.append(partner)
    return matches


def _brand_from_proposal(partner_id: int, proposal: Any, fallback_name: str) -> Brand:
    if not isinstance(proposal, dict):
        proposal = {}
    licenses = proposal.get("licenses")
    geos = proposal.get("target_geos")
    return Brand(
        partner_id=partner_id,
        name=proposal.get("name") or fallback_name,
        brand_domain=proposal.get("brand_domain") or proposal.get("domain"),
        tracking_domain=proposal.get("tracking_domain"),
        licenses=remap_codes(c for c in licenses if isinstance(c, str)) if isinstance(licenses, list) else [],
        target_geos=(
            [normalize_geo(g) for g in geos if isinstance(g, str) and g.strip()] if isinstance(geos, list) else []
        ),
    )


def convert_submission(
    session: Session, user_id: int, submission_id: int, *,
    partner_status: PartnerStatus = PartnerStatus.LEAD, is_direct: bool = False, force: bool = False,
    now: Clock = utc_now, notifier: Notifier | None = None,
) -> ConversionResult:
    """Turn a Pending submission into Partner + Brand(s) + Contact in one transaction."""
    submission = require_entity(session, IntakeSubmission, submission_id, "Submission")
    if submission.status != SubmissionStatus.PENDING:
        raise Conflict(f"Submission is already {submission.status}")
    if not force:
        duplicates = find_duplicate_partners(session, submission.company_name, submission.website_domain)
        if duplicates:
            names = ", ".join(p.name for p in duplicates)
            raise Conflict(f"Potential duplicate partner found: {names}")

    try:
        partner = Partner(
            name=submission.company_name, website_domain=submission.website_domain,
            is_direct=is_direct, status=partner_status,
            owner_user_id=submission.intake_link.created_by_user_id,
        )
        session.add(partner)
        session.flush()

        proposals = submission.brands if isinstance(submission.brands, list) and submission.brands else [{}]
        brands = [_brand_from_proposal(partner.id, p, submission.company_name) for p in proposals]
        session.add_all(brands)
        session.flush()

        contact = Contact(
            partner_id=partner.id, brand_id=brands[0].id, name=submission.contact_name,
            email=submission.contact_email, phone=submission.contact_phone,
            telegram=submission.contact_telegram, preferred_contact=submission.preferred_contact,
        )
        session.add(contact)
        session.flush()

        _decide(
            session, submission, status=SubmissionStatus.CONVERTED,
            converted_partner_id=partner.id, converted_brand_id=brands[0].id,
            converted_contact_id=contact.id, converted_by_user_id=user_id, converted_at=now(),
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    log.info("Converted submission %s into partner %s with %d brand(s)", submission.id, partner.id, len(brands))
    source = {"source": "intake", "submission_id": submission.id}
    audit.record(session, user_id, "Partner", partner.id, AuditAction.CREATE, {**source, "name": partner.name})
    for brand in brands:
        audit.record(session, user_id, "Brand", brand.id, AuditAction.CREATE, {**source, "name": brand.name})
    audit.record(session, user_id, "Contact", contact.id, AuditAction.CREATE, {**source, "name": contact.name})
    audit.record(session, user_id, "IntakeSubmission", submission.id, AuditAction.CONVERT,
                 {"partner_id": partner.id, "company_name": submission.company_name})

    if notifier is not None:
        notifier.broadcast(
            NotificationType.INTAKE_CONVERTED, "Intake Submission Converted",
            f'"{submission.company_name}" was converted to Partner + Brand + Contact',
            entity_type="Partner", entity_id=partner.id,
        )
    return ConversionResult(partner_id=partner.id, contact_id=contact.id, brand_ids=[b.id for b in brands])
