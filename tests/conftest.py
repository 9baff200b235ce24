"""
Shared pytest fixtures for the workflow engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - rfi: Request in draft raised by "raiser-a", assigned to "reviewer-b"
    - open_tender: Tender published by "issuer-i"
    - closed_tender_with_bids: Closed tender with bids of 100k, 120k and 90k
"""

import pytest

from app import create_app
from app.models import db as _db
from app.services import workflow_service


RAISER = "raiser-a"
REVIEWER = "reviewer-b"
ISSUER = "issuer-i"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def rfi():
    """A draft request raised by RAISER and assigned to REVIEWER."""
    return workflow_service.create_request(
        raised_by=RAISER,
        subject="Slab reinforcement detail at grid C4",
        question="Which bar spacing applies at the column head?",
        assigned_to=REVIEWER,
        priority="high",
    )


@pytest.fixture()
def open_tender():
    """A tender published by ISSUER."""
    tender = workflow_service.create_tender(
        issued_by=ISSUER,
        title="Facade package",
        budget=150000,
    )
    workflow_service.execute_action(tender.id, "publish", ISSUER)
    return workflow_service.get_entity(tender.id)


@pytest.fixture()
def closed_tender_with_bids(open_tender):
    """Closed tender with three bids; returns (tender, {amount: bid})."""
    bids = {}
    for bidder, amount in (("bidder-100", 100000), ("bidder-120", 120000), ("bidder-90", 90000)):
        bids[amount] = workflow_service.submit_bid(open_tender.id, bidder_id=bidder, amount=amount)
    workflow_service.execute_action(open_tender.id, "close", ISSUER)
    return workflow_service.get_entity(open_tender.id), bids
