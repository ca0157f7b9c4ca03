"""
Routes for the surveys blueprint — survey lifecycle, responses and
exports.
"""

from flask import jsonify, make_response, request
from flask_login import current_user, login_required

from readiness import rbac
from readiness.blueprints.surveys import bp
from readiness.decorators import permission_required
from readiness.errors import ValidationError
from readiness.services import export_service, survey_service
from readiness.utils import get_json_body, get_pagination, pagination_dict


@bp.route("", methods=["GET"])
@login_required
def list_surveys():
    """
    Surveys of one organization.

    Query Parameters:
        organizationId (int): Defaults to the caller's organization.
        status (str):         Optional status filter.
        page, limit.
    """
    page, limit = get_pagination()
    result = survey_service.list_surveys(
        current_user,
        organization_id=request.args.get("organizationId", type=int),
        status=request.args.get("status") or None,
        page=page,
        per_page=limit,
    )
    return jsonify(
        {
            "surveys": [s.to_dict(include_questions=False) for s in result.items],
            "pagination": pagination_dict(result),
        }
    )


@bp.route("", methods=["POST"])
@login_required
@permission_required(rbac.SURVEY_CREATE)
def create_survey():
    survey = survey_service.create_survey(current_user, get_json_body())
    return jsonify({"survey": survey.to_dict()}), 201


@bp.route("/<int:survey_id>", methods=["GET"])
@login_required
def get_survey(survey_id):
    survey = survey_service.get_survey(current_user, survey_id)
    return jsonify({"survey": survey.to_dict()})


@bp.route("/<int:survey_id>", methods=["PUT"])
@login_required
def update_survey(survey_id):
    survey = survey_service.update_survey(current_user, survey_id, get_json_body())
    return jsonify({"survey": survey.to_dict()})


@bp.route("/<int:survey_id>", methods=["DELETE"])
@login_required
def delete_survey(survey_id):
    survey_service.delete_survey(current_user, survey_id)
    return jsonify({"message": "Survey deleted."})


@bp.route("/<int:survey_id>/status", methods=["POST"])
@login_required
def change_status(survey_id):
    survey = survey_service.change_status(
        current_user, survey_id, get_json_body().get("status")
    )
    return jsonify({"survey": survey.to_dict(include_questions=False)})


# =========================================================================
# Responses
# =========================================================================


@bp.route("/<int:survey_id>/responses", methods=["POST"])
def submit_response(survey_id):
    """
    Record one response.

    Anonymous submissions are accepted only when the survey allows them.
    """
    user = current_user if current_user.is_authenticated else None
    response = survey_service.submit_response(user, survey_id, get_json_body())
    return jsonify({"response": response.to_dict()}), 201


@bp.route("/<int:survey_id>/responses", methods=["GET"])
@login_required
def list_responses(survey_id):
    page, limit = get_pagination(default_limit=50)
    result = survey_service.list_responses(
        current_user, survey_id, page=page, per_page=limit
    )
    return jsonify(
        {
            "responses": [r.to_dict() for r in result.items],
            "pagination": pagination_dict(result),
        }
    )


@bp.route("/<int:survey_id>/export/<fmt>")
@login_required
@permission_required(rbac.API_EXPORT_ACCESS)
def export_responses(survey_id, fmt):
    """Download all responses as CSV or XLSX."""
    if fmt not in export_service.EXPORT_FORMATS:
        raise ValidationError(
            f"Unsupported export format '{fmt}'. Use csv or xlsx.",
        )
    survey, headers, rows = survey_service.get_export_rows(current_user, survey_id)

    filename = f"survey_{survey.id}_responses.{fmt}"
    if fmt == "csv":
        buffer = export_service.export_csv(headers, rows)
        content_type = export_service.CSV_CONTENT_TYPE
    else:
        buffer = export_service.export_excel(headers, rows, survey.title)
        content_type = export_service.XLSX_CONTENT_TYPE

    response = make_response(buffer.read())
    response.headers["Content-Type"] = content_type
    response.headers["Content-Disposition"] = f"attachment; filename={filename}"
    return response
