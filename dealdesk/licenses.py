"""Legacy license code migration.

Brands and intake proposals once stored regulator codes ("MGA", "UKGC");
they now store ISO country codes. The lookup table is closed: codes not in
it are assumed to be ISO already and pass through unchanged.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import asdict, dataclass
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from dealdesk.models import Brand, IntakeSubmission

log = logging.getLogger(__name__)

LEGACY_LICENSE_TO_COUNTRY: dict[str, str] = {
    "MGA": "MT",
    "UKGC": "GB",
    "CUR": "CW",
    "GIB": "GI",
    "ANJ": "FR",
    "KAN": "CA",
    "IOM": "IM",
    "ALG": "GB",
    "SWE": "SE",
    "DEN": "DK",
    "EST": "EE",
    "ITA": "IT",
    "ESP": "ES",
    "POR": "PT",
    "GRE": "GR",
    "ROM": "RO",
    "CRO": "HR",
    "CZE": "CZ",
    "LTU": "LT",
    "LVA": "LV",
    "PHI": "PH",
    "BRA": "BR",
}


def remap_codes(codes: Iterable[str]) -> list[str]:
    """Map legacy codes to ISO and drop duplicates, keeping first-seen order."""
    return list(dict.fromkeys(LEGACY_LICENSE_TO_COUNTRY.get(c, c) for c in codes))


def _is_code_list(value: Any) -> bool:
    return isinstance(value, list) and bool(value) and all(isinstance(c, str) for c in value)


def _remap_proposals(proposals: list[Any]) -> list[Any] | None:
    """Return migrated proposals, or None when nothing changed."""
    migrated = copy.deepcopy(proposals)
    changed = False
    for proposal in migrated:
        if not isinstance(proposal, dict):
            continue
        licenses = proposal.get("licenses")
        if not _is_code_list(licenses):
            continue
        new = remap_codes(licenses)
        if new != licenses:
            proposal["licenses"] = new
            changed = True
    return migrated if changed else None


def migrate_brand_licenses(session: Session) -> int:
    updated = 0
    for brand in session.execute(select(Brand)).scalars():
        if not _is_code_list(brand.licenses):
            continue
        migrated = remap_codes(brand.licenses)
        if migrated != brand.licenses:
            log.info("Brand %s: %s -> %s", brand.id, ",".join(brand.licenses), ",".join(migrated))
            brand.licenses = migrated
            updated += 1
    session.commit()
    return updated


def migrate_submission_licenses(session: Session) -> int:
    updated = 0
    for sub in session.execute(select(IntakeSubmission)).scalars():
        if not isinstance(sub.brands, list):
            continue
        migrated = _remap_proposals(sub.brands)
        if migrated is not None:
            log.info("Submission %s: brand licenses migrated", sub.id)
            sub.brands = migrated
            updated += 1
    session.commit()
    return updated


@dataclass
class MigrationReport:
    brands_updated: int
    submissions_updated: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def migrate_all(session: Session) -> MigrationReport:
    return MigrationReport(
        brands_updated=migrate_brand_licenses(session),
        submissions_updated=migrate_submission_licenses(session),
    )
