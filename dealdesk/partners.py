from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from dealdesk import audit
from dealdesk.audit import AuditAction
from dealdesk.errors import NotFound
from dealdesk.models import Credential, Partner
from dealdesk.services import require_entity
from dealdesk.statuses import PartnerStatus

log = logging.getLogger(__name__)


def create_partner(
    session: Session, user_id: int, name: str, *, website_domain: str | None = None,
    is_direct: bool = False, status: PartnerStatus = PartnerStatus.LEAD,
) -> Partner:
    partner = Partner(
        name=name.strip(), website_domain=website_domain or None, is_direct=is_direct,
        status=status, owner_user_id=user_id,
    )
    session.add(partner)
    session.commit()
    audit.record(session, user_id, "Partner", partner.id, AuditAction.CREATE,
                 {"name": partner.name, "status": str(status)})
    return partner


def reveal_credential(session: Session, user_id: int, partner_id: int, credential_id: int) -> str:
    """Return a stored password. Every reveal is audited."""
    require_entity(session, Partner, partner_id, "Partner")
    credential = session.get(Credential, credential_id)
    if credential is None or credential.partner_id != partner_id:
        raise NotFound("Credential not found")
    if not audit.record(session, user_id, "Credential", credential.id, AuditAction.CREDENTIAL_ACCESS,
                        {"label": credential.label, "partner_id": partner_id}):
        log.warning("Credential %s revealed to user %s without an audit row", credential.id, user_id)
    return credential.password
