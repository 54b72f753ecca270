"""
Proposal Workflow Blueprint.

HTTP adapter over the workflow gateway for proposal submission, review
decisions and progress tracking.

Endpoints:
    POST   /api/v1/proposals
           Body: { "title", "submitting_unit", "budget",
                   "description"?, "objectives"?, "research_agenda"? }
           Returns: 201 with the new proposal (stage 1, UnderReview).

    GET    /api/v1/proposals/<id>
           Returns: 200 { proposal, derived_progress, endorsement_history }.

    GET    /api/v1/proposals/<id>/progress
           Returns: 200 with the derived progress alone.

    POST   /api/v1/proposals/<id>/endorsements
           Body: { "stage_ordinal": int, "decision": "Approved|Rejected|RevisionRequested",
                   "comments"? }
           Issuer role and id come from the identity provider, never the body.
           Returns: 201 { endorsement, derived_progress }.

    GET    /api/v1/proposals/<id>/endorsements
           Returns: 200 with the chronological decision log.

    GET    /api/v1/endorsements/mine
           Returns: 200 with every decision the caller has issued.

    GET    /api/v1/stages
           Returns: 200 with the ten-stage pipeline definition.

Layer contract:
    - Blueprint: parse input, read identity, call the gateway, return JSON.
    - NO db.session calls here — all writes owned by workflow_gateway.
    - NO role checks here — role gating lives in the endorsement ledger.
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import current_identity, require_identity
from app.services import workflow_gateway
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

proposal_bp = Blueprint("proposal", __name__, url_prefix="/api/v1")

register_error_handlers(proposal_bp)


def _json_object():
    """Request body as a dict, or None when it is not a JSON object."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


# ── Routes ─────────────────────────────────────────────────────────────────────


@proposal_bp.route("/proposals", methods=["POST"])
def submit_proposal():
    """Submit a new proposal.  The caller's user id is recorded as proponent."""
    data = _json_object()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object.")
    _, user_id = current_identity()

    proposal = workflow_gateway.submit_proposal(
        data.get("title"),
        data.get("submitting_unit"),
        data.get("budget"),
        description=data.get("description"),
        objectives=data.get("objectives"),
        research_agenda=data.get("research_agenda"),
        proponent_id=user_id,
    )
    return jsonify(proposal), 201


@proposal_bp.route("/proposals/<int:proposal_id>", methods=["GET"])
def get_proposal(proposal_id: int):
    return jsonify(workflow_gateway.get_proposal_view(proposal_id)), 200


@proposal_bp.route("/proposals/<int:proposal_id>/progress", methods=["GET"])
def get_progress(proposal_id: int):
    return jsonify(workflow_gateway.get_progress(proposal_id)), 200


@proposal_bp.route("/proposals/<int:proposal_id>/endorsements", methods=["POST"])
@require_identity
def create_endorsement(proposal_id: int):
    """Record a decision at the proposal's current stage.

    Input shape is checked here; role gating and stage checks happen in the
    ledger.  Returns 201, 400, 403, 404 or 409 (with current_progress).
    """
    data = _json_object()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object.")

    stage_ordinal = data.get("stage_ordinal")
    if stage_ordinal is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'stage_ordinal' is required.")
    if isinstance(stage_ordinal, bool) or not isinstance(stage_ordinal, int):
        return api_error(E.VALIDATION_INVALID, "Field 'stage_ordinal' must be an integer.")

    decision = data.get("decision")
    if decision is None or (isinstance(decision, str) and not decision.strip()):
        return api_error(E.VALIDATION_REQUIRED, "Field 'decision' is required.")
    if not isinstance(decision, str):
        return api_error(E.VALIDATION_INVALID, "Field 'decision' must be a string.")

    role, user_id = current_identity()
    result = workflow_gateway.record_endorsement(
        proposal_id,
        stage_ordinal,
        role,
        user_id,
        decision.strip(),
        data.get("comments"),
    )
    return jsonify(result), 201


@proposal_bp.route("/proposals/<int:proposal_id>/endorsements", methods=["GET"])
def list_endorsements(proposal_id: int):
    """Return the immutable decision log, oldest first."""
    history = workflow_gateway.list_endorsements(proposal_id)
    return jsonify({"history": history, "total": len(history)}), 200


@proposal_bp.route("/endorsements/mine", methods=["GET"])
@require_identity
def my_endorsements():
    _, user_id = current_identity()
    items = workflow_gateway.list_issuer_endorsements(user_id)
    return jsonify({"items": items, "total": len(items)}), 200


@proposal_bp.route("/stages", methods=["GET"])
def list_stages():
    return jsonify({"stages": workflow_gateway.list_stages()}), 200
