"""Shared utility functions used across DealDesk modules."""
from __future__ import annotations

import re
import unicodedata
from datetime import UTC, datetime

_COMPANY_SUFFIX_RE = re.compile(
    r"\s*(inc\.?|ltd\.?|llc\.?|corp\.?|corporation|gmbh|plc\.?|co\.?|company|limited|incorporated"
    r"|ag|sa|s\.?a\.?|s\.?r\.?l\.?|pty\.?|b\.?v\.?|n\.?v\.?)$",
    re.IGNORECASE,
)


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def normalize_geo(geo: str | None) -> str | None:
    """Upper-case an ISO country code; blank values become ``None``."""
    if geo is None:
        return None
    geo = geo.strip().upper()
    return geo or None


def normalize_company_name(value: str) -> str:
    """Comparable form of a company name: casefolded, accents and legal suffix removed."""
    normalized = unicodedata.normalize("NFKD", value)
    normalized = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    normalized = _COMPANY_SUFFIX_RE.sub("", normalized.strip().casefold())
    return re.sub(r"[.,\-_]+$", "", normalized).strip()


def normalize_domain(value: str) -> str:
    """``https://www.Example.com/`` -> ``example.com``."""
    domain = value.strip().lower()
    domain = re.sub(r"^https?://", "", domain)
    domain = re.sub(r"^www\.", "", domain)
    return domain.rstrip("/")
