"""Which inventory slots are open for a given geo.

A position is open for geo G when none of its occupying deals has
``geo == G``. Comparison is exact: a deal with no geo never matches any
query, so it neither blocks nor frees a specific market.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, contains_eager, selectinload

from dealdesk.models import Asset, Deal, Page, Position
from dealdesk.statuses import AssetStatus, PositionStatus, is_occupying_status
from dealdesk.utils import normalize_geo


@dataclass
class OccupyingDeal:
    deal_id: int
    geo: str | None
    status: str
    partner_id: int
    partner_name: str
    brand_id: int
    brand_name: str


@dataclass
class PositionOccupancy:
    position_id: int
    position_name: str
    page_id: int
    page_name: str
    asset_id: int
    asset_name: str
    asset_domain: str | None
    deals: list[OccupyingDeal] = field(default_factory=list)

    def is_open_for(self, geo: str) -> bool:
        return not any(d.geo == geo for d in self.deals)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.position_id,
            "name": self.position_name,
            "page": {"id": self.page_id, "name": self.page_name},
            "asset": {"id": self.asset_id, "name": self.asset_name, "asset_domain": self.asset_domain},
            "deals": [
                {
                    "id": d.deal_id, "geo": d.geo, "status": d.status,
                    "partner": {"id": d.partner_id, "name": d.partner_name},
                    "brand": {"id": d.brand_id, "name": d.brand_name},
                }
                for d in self.deals
            ],
        }


def _occupancy(position: Position) -> PositionOccupancy:
    page = position.page
    asset = page.asset
    return PositionOccupancy(
        position_id=position.id, position_name=position.name,
        page_id=page.id, page_name=page.name,
        asset_id=asset.id, asset_name=asset.name, asset_domain=asset.asset_domain,
        deals=[
            OccupyingDeal(
                deal_id=d.id, geo=d.geo, status=d.status,
                partner_id=d.partner_id, partner_name=d.partner.name,
                brand_id=d.brand_id, brand_name=d.brand.name,
            )
            for d in sorted(position.deals, key=lambda d: d.id)
            if is_occupying_status(d.status)
        ],
    )


def find_positions(session: Session, geo: str | None = None) -> list[PositionOccupancy]:
    """Active positions on active assets, with their occupying deals.

    With ``geo`` only the positions open for that geo are returned; without
    it every qualifying position is returned and the caller decides.
    """
    query = (
        select(Position)
        .join(Position.page)
        .join(Page.asset)
        .where(Position.status == PositionStatus.ACTIVE, Asset.status == AssetStatus.ACTIVE)
        .options(
            contains_eager(Position.page).contains_eager(Page.asset),
            selectinload(Position.deals).selectinload(Deal.partner),
            selectinload(Position.deals).selectinload(Deal.brand),
        )
        .order_by(Asset.name.asc(), Position.name.asc(), Position.id.asc())
        .execution_options(populate_existing=True)
    )
    positions = session.execute(query).unique().scalars().all()
    results = [_occupancy(p) for p in positions]

    geo = normalize_geo(geo)
    if geo is None:
        return results
    return [r for r in results if r.is_open_for(geo)]
