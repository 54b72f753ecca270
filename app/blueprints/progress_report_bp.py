"""
Progress Report Blueprint.

Endpoints:
    POST   /api/v1/proposals/<id>/progress-reports
           Body: { "report_type": "Interim|Quarterly|Annual|Final",
                   "achievements": str (≤ 250 words), "next_milestone": str,
                   "attachments": [handle, ...],
                   "report_period"?, "progress_percentage"?, "budget_utilized"?,
                   "challenges"?, "additional_notes"? }
           Returns: 201 with the stored report.
                    409 NOT_YET_IMPLEMENTING before stage 8 (with current_progress).
                    400 ACHIEVEMENTS_TOO_LONG over the word limit.

    GET    /api/v1/proposals/<id>/progress-reports
           Returns: 200 with the proposal's reports, newest first.

    GET    /api/v1/progress-reports
           Returns: 200 with the reports the caller may see, newest first.
                    RDD sees all of them; anyone else sees their own.

    GET    /api/v1/progress-reports/<report_id>
           Returns: 200 with one report, 404 if missing or not visible.

    GET    /api/v1/progress-reports/units
           Returns: 200 [{unit, report_count, most_recent_report}] for dashboards.
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import current_identity, require_identity
from app.services import workflow_gateway
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

progress_report_bp = Blueprint("progress_report", __name__, url_prefix="/api/v1")

register_error_handlers(progress_report_bp)

_OPTIONAL_FIELDS = (
    "report_period",
    "progress_percentage",
    "budget_utilized",
    "challenges",
    "additional_notes",
)


@progress_report_bp.route("/proposals/<int:proposal_id>/progress-reports", methods=["POST"])
@require_identity
def submit_progress_report(proposal_id: int):
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object.")
    _, user_id = current_identity()

    optional = {k: data.get(k) for k in _OPTIONAL_FIELDS if k in data}
    report = workflow_gateway.submit_progress_report(
        proposal_id,
        data.get("report_type"),
        data.get("achievements"),
        data.get("next_milestone"),
        data.get("attachments"),
        submitted_by=user_id,
        **optional,
    )
    return jsonify(report), 201


@progress_report_bp.route("/proposals/<int:proposal_id>/progress-reports", methods=["GET"])
def list_proposal_reports(proposal_id: int):
    items = workflow_gateway.list_proposal_reports(proposal_id)
    return jsonify({"items": items, "total": len(items)}), 200


@progress_report_bp.route("/progress-reports", methods=["GET"])
@require_identity
def list_my_reports():
    role, user_id = current_identity()
    items = workflow_gateway.list_user_reports(role, user_id)
    return jsonify({"items": items, "total": len(items)}), 200


@progress_report_bp.route("/progress-reports/<int:report_id>", methods=["GET"])
@require_identity
def get_report(report_id: int):
    role, user_id = current_identity()
    return jsonify(workflow_gateway.get_report(report_id, role, user_id)), 200


@progress_report_bp.route("/progress-reports/units", methods=["GET"])
def list_unit_progress():
    units = workflow_gateway.list_unit_progress()
    return jsonify({"units": units, "total": len(units)}), 200
