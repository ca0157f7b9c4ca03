"""
Routes for the templates blueprint — survey templates, their questions
and version snapshots.

Visibility and edit rules live in ``template_service``; routes only
parse the request and shape the response.
"""

from flask import jsonify, request
from flask_login import current_user, login_required

from readiness import rbac
from readiness.blueprints.templates import bp
from readiness.decorators import permission_required
from readiness.services import template_service
from readiness.utils import get_json_body, get_pagination, pagination_dict


# =========================================================================
# Templates
# =========================================================================


@bp.route("", methods=["GET"])
@login_required
def list_templates():
    """
    Templates the caller may see.

    Query Parameters:
        category, status, search, page, limit.
    """
    page, limit = get_pagination()
    result = template_service.list_templates(
        current_user,
        category=request.args.get("category") or None,
        status=request.args.get("status") or None,
        search=(request.args.get("search") or "").strip() or None,
        page=page,
        per_page=limit,
    )
    return jsonify(
        {
            "templates": [t.to_dict() for t in result.items],
            "pagination": pagination_dict(result),
        }
    )


@bp.route("", methods=["POST"])
@login_required
@permission_required(rbac.SURVEY_CREATE)
def create_template():
    template = template_service.create_template(current_user, get_json_body())
    return jsonify({"template": template.to_dict(include_questions=True)}), 201


@bp.route("/<int:template_id>", methods=["GET"])
@login_required
def get_template(template_id):
    template = template_service.get_template(current_user, template_id)
    return jsonify({"template": template.to_dict(include_questions=True)})


@bp.route("/<int:template_id>", methods=["PUT"])
@login_required
def update_template(template_id):
    template = template_service.update_template(
        current_user, template_id, get_json_body()
    )
    return jsonify({"template": template.to_dict(include_questions=True)})


@bp.route("/<int:template_id>", methods=["DELETE"])
@login_required
def delete_template(template_id):
    template_service.delete_template(current_user, template_id)
    return jsonify({"message": "Template deleted."})


@bp.route("/<int:template_id>/publish", methods=["POST"])
@login_required
def publish_template(template_id):
    template = template_service.publish_template(current_user, template_id)
    return jsonify({"template": template.to_dict()})


@bp.route("/<int:template_id>/archive", methods=["POST"])
@login_required
def archive_template(template_id):
    template = template_service.archive_template(current_user, template_id)
    return jsonify({"template": template.to_dict()})


@bp.route("/<int:template_id>/duplicate", methods=["POST"])
@login_required
@permission_required(rbac.SURVEY_CREATE)
def duplicate_template(template_id):
    data = request.get_json(silent=True) or {}
    template = template_service.duplicate_template(
        current_user, template_id, title=data.get("title")
    )
    return jsonify({"template": template.to_dict(include_questions=True)}), 201


# =========================================================================
# Questions
# =========================================================================


@bp.route("/<int:template_id>/questions", methods=["GET"])
@login_required
def list_questions(template_id):
    questions = template_service.list_questions(current_user, template_id)
    return jsonify({"questions": [q.to_dict() for q in questions]})


@bp.route("/<int:template_id>/questions", methods=["POST"])
@login_required
def add_question(template_id):
    question = template_service.add_question(
        current_user, template_id, get_json_body()
    )
    return jsonify({"question": question.to_dict()}), 201


@bp.route("/<int:template_id>/questions", methods=["PUT"])
@login_required
def replace_questions(template_id):
    """Replace every question with the ``questions`` array in the body."""
    questions = template_service.replace_questions(
        current_user, template_id, get_json_body().get("questions")
    )
    return jsonify({"questions": [q.to_dict() for q in questions]})


@bp.route("/<int:template_id>/questions/reorder", methods=["POST"])
@login_required
def reorder_questions(template_id):
    questions = template_service.reorder_questions(
        current_user, template_id, get_json_body().get("order")
    )
    return jsonify({"questions": [q.to_dict() for q in questions]})


@bp.route("/<int:template_id>/questions/<int:question_id>", methods=["PUT"])
@login_required
def update_question(template_id, question_id):
    question = template_service.update_question(
        current_user, template_id, question_id, get_json_body()
    )
    return jsonify({"question": question.to_dict()})


@bp.route("/<int:template_id>/questions/<int:question_id>", methods=["DELETE"])
@login_required
def delete_question(template_id, question_id):
    template_service.delete_question(current_user, template_id, question_id)
    return jsonify({"message": "Question deleted."})


# =========================================================================
# Versions
# =========================================================================


@bp.route("/<int:template_id>/versions", methods=["GET"])
@login_required
def list_versions(template_id):
    versions = template_service.list_versions(current_user, template_id)
    return jsonify({"versions": [v.to_dict() for v in versions]})


@bp.route("/<int:template_id>/versions", methods=["POST"])
@login_required
def create_version(template_id):
    data = request.get_json(silent=True) or {}
    version = template_service.create_version(
        current_user, template_id, notes=data.get("notes")
    )
    return jsonify({"version": version.to_dict(include_snapshots=True)}), 201


@bp.route(
    "/<int:template_id>/versions/<int:version_id>/activate", methods=["POST"]
)
@login_required
def activate_version(template_id, version_id):
    version = template_service.activate_version(
        current_user, template_id, version_id
    )
    return jsonify({"version": version.to_dict()})
