"""
Shared pytest fixtures for the Research Proposal Workflow Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - proposal: Pre-submitted proposal at stage 1
    - implementing_proposal: Proposal approved through stage 7 (now at stage 8)
    - approve_through: Approves stages 1..N of a proposal
"""

import pytest

from app import create_app
from app.models import db as _db
from app.services import stage_catalog, workflow_gateway


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


# ── Workflow helpers ─────────────────────────────────────────────────────


def _submit_proposal(**overrides) -> dict:
    """Submit a proposal through the gateway and return its dict."""
    data = {
        "title": "Soil microbiome survey",
        "submitting_unit": "College of Agriculture",
        "budget": "150000.00",
        "proponent_id": "u-proponent",
    }
    data.update(overrides)
    return workflow_gateway.submit_proposal(
        data.pop("title"),
        data.pop("submitting_unit"),
        data.pop("budget"),
        **data,
    )


def _approve_stage(proposal_id: int, ordinal: int, issuer_id: str = "u-reviewer") -> dict:
    """Approve one stage with the role that authorizes it."""
    return workflow_gateway.record_endorsement(
        proposal_id,
        ordinal,
        stage_catalog.authorized_role(ordinal),
        issuer_id,
        "Approved",
    )


def _approve_through(proposal_id: int, last_ordinal: int) -> dict | None:
    """Approve stages 1..last_ordinal in order; returns the final result."""
    result = None
    for ordinal in range(1, last_ordinal + 1):
        result = _approve_stage(proposal_id, ordinal)
    return result


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def proposal():
    """A freshly submitted proposal (stage 1, UnderReview)."""
    return _submit_proposal()


@pytest.fixture()
def implementing_proposal(proposal):
    """The proposal approved through stage 7, so stage 8 is current."""
    _approve_through(proposal["id"], 7)
    return proposal


@pytest.fixture()
def approve_through():
    """Approve stages 1..N of a proposal with the authorizing roles."""
    return _approve_through
