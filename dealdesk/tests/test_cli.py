from __future__ import annotations

import json

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from typer.testing import CliRunner

from dealdesk.cli import app
from dealdesk.models import Asset, Base, Brand, Page, Partner, Position

runner = CliRunner()


@pytest.fixture()
def legacy_db(tmp_path):
    """A file database holding pre-page data and legacy license codes."""
    url = f"sqlite:///{tmp_path / 'legacy.db'}"
    engine = create_engine(url)
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False)
    with Session() as session:
        asset = Asset(name="Legacy Site")
        partner = Partner(name="Old Partner")
        session.add_all([asset, partner])
        session.flush()
        session.add(Position(asset_id=asset.id, name="Banner"))
        session.add(Brand(partner_id=partner.id, name="OldBrand", licenses=["MGA", "UKGC"]))
        session.commit()
    yield url, Session
    engine.dispose()


def _run(*args: str) -> dict:
    result = runner.invoke(app, list(args))
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


class TestReconcilePages:
    def test_json_report_and_rerun(self, legacy_db):
        url, Session = legacy_db
        first = _run("--json", "--db-url", url, "reconcile-pages")
        assert first == {"pages_created": 1, "positions_attached": 1, "positions_skipped": 0, "deals_updated": 0}

        with Session() as session:
            homepage = session.execute(select(Page).where(Page.name == "Homepage")).scalar_one()
            assert session.execute(select(Position.page_id)).scalar_one() == homepage.id

        second = _run("--json", "--db-url", url, "reconcile-pages")
        assert second["pages_created"] == second["positions_attached"] == 0

    def test_table_output(self, legacy_db):
        url, _ = legacy_db
        result = runner.invoke(app, ["--db-url", url, "reconcile-pages"])
        assert result.exit_code == 0
        assert "reconcile-pages" in result.output
        assert "pages created" in result.output


class TestMigrateLicenses:
    def test_json_report(self, legacy_db):
        url, Session = legacy_db
        assert _run("--json", "--db-url", url, "migrate-licenses") == {
            "brands_updated": 1, "submissions_updated": 0,
        }
        with Session() as session:
            assert session.execute(select(Brand.licenses)).scalar_one() == ["MT", "GB"]
        assert _run("--json", "--db-url", url, "migrate-licenses")["brands_updated"] == 0
