"""Status vocabularies for every entity with a lifecycle.

The string values are persisted as-is and read back by audit-log and
dashboard consumers, so members must never be renamed without a data
migration.
"""
from __future__ import annotations

import logging
from enum import StrEnum

log = logging.getLogger(__name__)


class PartnerStatus(StrEnum):
    LEAD = "Lead"
    ESTABLISHED_CONTACT = "EstablishedContact"
    PLATFORM_SIGNED_UP = "PlatformSignedUp"
    AWAITING_KYC = "AwaitingKYC"
    AVAILABLE_FOR_ASSET = "AvailableForAsset"
    AWAITING_POSTBACK = "AwaitingPostback"
    ACTIVE = "Active"


class BrandStatus(StrEnum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    ARCHIVED = "Archived"


class AssetStatus(StrEnum):
    ACTIVE = "Active"
    ARCHIVED = "Archived"


class PageStatus(StrEnum):
    ACTIVE = "Active"
    ARCHIVED = "Archived"


class PositionStatus(StrEnum):
    ACTIVE = "Active"
    ARCHIVED = "Archived"


class DealStatus(StrEnum):
    UNSURE = "Unsure"
    IN_CONTACT = "InContact"
    APPROVED = "Approved"
    AWAITING_POSTBACK = "AwaitingPostback"
    FULLY_IMPLEMENTED = "FullyImplemented"
    LIVE = "Live"
    INACTIVE = "Inactive"


class SubmissionStatus(StrEnum):
    PENDING = "Pending"
    CONVERTED = "Converted"
    REJECTED = "Rejected"


def parse_deal_status(value: DealStatus | str | None) -> DealStatus | None:
    """Coerce a stored value to ``DealStatus``; ``None`` if unrecognized."""
    if isinstance(value, DealStatus):
        return value
    try:
        return DealStatus(value)
    except ValueError:
        log.warning("Unrecognized deal status %r; treating as non-occupying", value)
        return None


def is_pipeline_status(status: DealStatus | str | None) -> bool:
    """True for statuses preceding Live."""
    match parse_deal_status(status):
        case (DealStatus.UNSURE | DealStatus.IN_CONTACT | DealStatus.APPROVED
              | DealStatus.AWAITING_POSTBACK | DealStatus.FULLY_IMPLEMENTED):
            return True
        case DealStatus.LIVE | DealStatus.INACTIVE | None:
            return False


def is_occupying_status(status: DealStatus | str | None) -> bool:
    """True for statuses that hold a position (everything except Inactive)."""
    match parse_deal_status(status):
        case (DealStatus.UNSURE | DealStatus.IN_CONTACT | DealStatus.APPROVED
              | DealStatus.AWAITING_POSTBACK | DealStatus.FULLY_IMPLEMENTED | DealStatus.LIVE):
            return True
        case DealStatus.INACTIVE | None:
            return False


PIPELINE_STATUSES: tuple[DealStatus, ...] = tuple(s for s in DealStatus if is_pipeline_status(s))
OCCUPYING_STATUSES: tuple[DealStatus, ...] = tuple(s for s in DealStatus if is_occupying_status(s))

# ---------------------------------------------------------------------------
# Display labels
# ---------------------------------------------------------------------------

DEAL_STATUS_LABELS: dict[DealStatus, str] = {
    DealStatus.UNSURE: "Unsure",
    DealStatus.IN_CONTACT: "In Contact",
    DealStatus.APPROVED: "Approved",
    DealStatus.AWAITING_POSTBACK: "Awaiting Postback",
    DealStatus.FULLY_IMPLEMENTED: "Fully Implemented",
    DealStatus.LIVE: "Live",
    DealStatus.INACTIVE: "Inactive",
}

PARTNER_STATUS_LABELS: dict[PartnerStatus, str] = {
    PartnerStatus.LEAD: "Lead",
    PartnerStatus.ESTABLISHED_CONTACT: "Established Contact",
    PartnerStatus.PLATFORM_SIGNED_UP: "Platform Signed Up",
    PartnerStatus.AWAITING_KYC: "Awaiting KYC",
    PartnerStatus.AVAILABLE_FOR_ASSET: "Available for Asset",
    PartnerStatus.AWAITING_POSTBACK: "Awaiting Postback",
    PartnerStatus.ACTIVE: "Active",
}
