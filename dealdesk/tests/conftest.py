from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dealdesk.models import Base, Brand, Partner, User

# ---------------------------------------------------------------------------
# Fixtures: in-memory SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    # StaticPool so the notifier's own sessions see the same in-memory database.
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def user(session: Session) -> User:
    u = User(name="Ops", email="ops@example.com")
    session.add(u)
    session.commit()
    return u


@pytest.fixture()
def partner(session: Session) -> Partner:
    p = Partner(name="Lucky Partners", website_domain="luckypartners.com")
    session.add(p)
    session.commit()
    return p


@pytest.fixture()
def brand(session: Session, partner: Partner) -> Brand:
    b = Brand(partner_id=partner.id, name="LuckySpin", licenses=["MT"])
    session.add(b)
    session.commit()
    return b


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 1, 12, 0, tzinfo=UTC))
