"""
Survey service — organization surveys, status changes and responses.

Surveys keep their own copy of the question list (``Survey.questions``),
each question carrying a string ``id`` that response ``answers`` are
keyed by.
"""

import logging

from readiness import rbac
from readiness.errors import NotFoundError, PermissionDeniedError, ValidationError
from readiness.extensions import db
from readiness.models.survey import (
    QUESTION_TYPES,
    SURVEY_STATUSES,
    SURVEY_TRANSITIONS,
    Survey,
    SurveyResponse,
)
from readiness.models.user import User
from readiness.services import audit_service, organization_service, template_service
from readiness.utils import require_text, utcnow

logger = logging.getLogger(__name__)

_SNAPSHOT_KEYS = (
    "questionText",
    "questionType",
    "description",
    "helpText",
    "placeholderText",
    "options",
    "required",
    "groupId",
    "groupTitle",
    "jtbdCategory",
    "jtbdWeight",
    "validationRules",
)


# -- Access ----------------------------------------------------------------


def _can_view_org_surveys(user: User, org_id: int) -> bool:
    if user.is_system_admin:
        return True
    return user.has_permission(
        rbac.SURVEY_VIEW_ORG
    ) and organization_service.user_can_access_organization(user, org_id)


def can_view_survey(user: User, survey: Survey) -> bool:
    """Creators, members of the survey's organization, system admins."""
    if user.is_system_admin or survey.created_by == user.id:
        return True
    return organization_service.user_can_access_organization(
        user, survey.organization_id
    )


def can_edit_survey(user: User, survey: Survey) -> bool:
    if user.is_system_admin:
        return True
    if survey.created_by == user.id and user.has_permission(rbac.SURVEY_EDIT_OWN):
        return True
    return user.has_permission(
        rbac.SURVEY_EDIT_ORG
    ) and organization_service.user_can_access_organization(
        user, survey.organization_id
    )


def can_view_responses(user: User, survey: Survey) -> bool:
    if survey.created_by == user.id:
        return True
    return _can_view_org_surveys(user, survey.organization_id)


def _load(survey_id: int) -> Survey:
    survey = db.session.get(Survey, survey_id)
    if survey is None:
        raise NotFoundError("Survey not found.")
    return survey


def get_survey(user: User, survey_id: int) -> Survey:
    survey = _load(survey_id)
    if not can_view_survey(user, survey):
        raise PermissionDeniedError("Access denied to this survey.")
    return survey


def _get_editable(user: User, survey_id: int) -> Survey:
    survey = _load(survey_id)
    if not can_edit_survey(user, survey):
        raise PermissionDeniedError("You do not have permission to edit this survey.")
    return survey


# -- Listing ---------------------------------------------------------------


def list_surveys(
    user: User,
    organization_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    per_page: int = 20,
):
    """
    Paginated surveys of one organization, newest first.

    Users without ``survey:view:org`` only see surveys they created.

    Raises:
        ValidationError: No organization given and none on the user.
        PermissionDeniedError: The user cannot access the organization.
    """
    org_id = organization_id or user.home_organization_id
    if org_id is None:
        raise ValidationError("organizationId is required.")
    if status and status not in SURVEY_STATUSES:
        raise ValidationError(f"Invalid status '{status}'.")
    if not user.is_system_admin and not (
        organization_service.user_can_access_organization(user, org_id)
    ):
        raise PermissionDeniedError("Access denied to this organization.")

    query = Survey.query.filter(Survey.organization_id == org_id)
    if not _can_view_org_surveys(user, org_id):
        query = query.filter(Survey.created_by == user.id)
    if status:
        query = query.filter(Survey.status == status)
    query = query.order_by(Survey.created_at.desc(), Survey.id.desc())
    return query.paginate(page=page, per_page=per_page, error_out=False)


# -- Questions -------------------------------------------------------------


def _normalize_questions(questions) -> list[dict]:
    """
    Validate a survey question list and give each question a string id.

    Raises:
        ValidationError: Not a list, or an item lacks text or type.
    """
    if not isinstance(questions, list):
        raise ValidationError("Questions must be an array")
    normalized: list[dict] = []
    seen_ids: set[str] = set()
    for position, item in enumerate(questions):
        if not isinstance(item, dict):
            raise ValidationError("Each question must be an object.")
        if not item.get("questionText") or not item.get("questionType"):
            raise ValidationError("Missing required fields: questionText, questionType")
        if not isinstance(item["questionText"], str):
            raise ValidationError("questionText must be a string.")
        if item["questionType"] not in QUESTION_TYPES:
            raise ValidationError(f"Invalid questionType '{item['questionType']}'.")
        question_id = str(item.get("id") or f"q{position + 1}")
        if question_id in seen_ids:
            raise ValidationError(f"Duplicate question id '{question_id}'.")
        seen_ids.add(question_id)
        question = {key: item[key] for key in _SNAPSHOT_KEYS if key in item}
        question["id"] = question_id
        question["required"] = item.get("required", True) is not False
        question["orderIndex"] = position
        normalized.append(question)
    return normalized


def _questions_from_template(template) -> list[dict]:
    items = []
    for question in template.questions:
        data = question.to_dict()
        item = {key: data[key] for key in _SNAPSHOT_KEYS if key in data}
        item["id"] = question.id
        items.append(item)
    return _normalize_questions(items)


# -- Create / update -------------------------------------------------------


def create_survey(user: User, data: dict) -> Survey:
    """
    Create a draft survey, optionally from a template.

    With ``templateId`` the template's questions are copied and its
    usage count is incremented; ``title`` defaults to the template title.

    Raises:
        ValidationError, PermissionDeniedError, NotFoundError.
    """
    org_id = data.get("organizationId") or user.home_organization_id
    if org_id is None:
        raise ValidationError("organizationId is required.")
    organization_service.get_organization_or_404(org_id)
    if not user.is_system_admin and not (
        organization_service.user_can_access_organization(user, org_id)
    ):
        raise PermissionDeniedError("Access denied to this organization.")

    template = None
    if data.get("templateId") is not None:
        if not isinstance(data["templateId"], int) or isinstance(
            data["templateId"], bool
        ):
            raise ValidationError("templateId must be an integer.")
        template = template_service.get_template(user, data["templateId"])
        if template.status == "archived":
            raise ValidationError("Archived templates cannot be used.")

    title = data.get("title")
    if not title and template is not None:
        title = template.title
    title = require_text(title, "title")

    if "questions" in data:
        questions = _normalize_questions(data["questions"])
    elif template is not None:
        questions = _questions_from_template(template)
    else:
        questions = []

    allow_anonymous = data.get("allowAnonymous")
    if allow_anonymous is None and template is not None:
        allow_anonymous = (template.settings or {}).get("allowAnonymous", False)

    survey = Survey(
        organization_id=org_id,
        template_id=template.id if template else None,
        title=title,
        description=data.get("description")
        or (template.description if template else None),
        questions=questions,
        status="draft",
        allow_anonymous=bool(allow_anonymous),
        created_by=user.id,
    )
    db.session.add(survey)
    if template is not None:
        template_service.record_usage(template)
    db.session.flush()

    audit_service.log_change(
        user_id=user.id,
        action_type="CREATE",
        entity_type="survey",
        entity_id=survey.id,
        new_value={
            "title": survey.title,
            "template_id": survey.template_id,
            "question_count": len(questions),
        },
        organization_id=org_id,
    )
    db.session.commit()
    logger.info("Survey %s created in organization %s", survey.id, org_id)
    return survey


def update_survey(user: User, survey_id: int, data: dict) -> Survey:
    """
    Raises:
        ValidationError: Question changes outside draft status.
    """
    survey = _get_editable(user, survey_id)
    previous: dict = {}
    changed: dict = {}

    if "title" in data:
        changed["title"] = require_text(data.get("title"), "title")
    if "description" in data:
        changed["description"] = data.get("description") or None
    if "allowAnonymous" in data:
        changed["allow_anonymous"] = bool(data["allowAnonymous"])
    if "questions" in data:
        if survey.status != "draft":
            raise ValidationError(
                "Questions can only be changed while the survey is a draft."
            )
        changed["questions"] = _normalize_questions(data["questions"])

    for attr, value in list(changed.items()):
        if getattr(survey, attr) == value:
            del changed[attr]
            continue
        previous[attr] = getattr(survey, attr)
        setattr(survey, attr, value)

    if changed:
        audit_service.log_change(
            user_id=user.id,
            action_type="UPDATE",
            entity_type="survey",
            entity_id=survey.id,
            previous_value=previous,
            new_value=changed,
            organization_id=survey.organization_id,
        )
        db.session.commit()
    return survey


def change_status(user: User, survey_id: int, status: str) -> Survey:
    """
    Move a survey along its lifecycle.

    Allowed: draft -> active, active -> paused | closed,
    paused -> active | closed, closed -> archived.

    Raises:
        ValidationError: Unknown status or a disallowed transition.
    """
    survey = _get_editable(user, survey_id)
    if status not in SURVEY_STATUSES:
        raise ValidationError(f"Invalid status '{status}'.")
    if status not in SURVEY_TRANSITIONS[survey.status]:
        raise ValidationError(
            f"Cannot change survey status from {survey.status} to {status}."
        )
    if status == "active" and not survey.questions:
        raise ValidationError("A survey needs at least one question to go live.")

    previous = survey.status
    survey.status = status
    now = utcnow()
    if status == "active" and survey.published_at is None:
        survey.published_at = now
    if status == "closed":
        survey.closed_at = now

    audit_service.log_change(
        user_id=user.id,
        action_type="UPDATE",
        entity_type="survey",
        entity_id=survey.id,
        previous_value={"status": previous},
        new_value={"status": status},
        organization_id=survey.organization_id,
    )
    db.session.commit()
    logger.info("Survey %s moved from %s to %s", survey.id, previous, status)
    return survey


def delete_survey(user: User, survey_id: int) -> None:
    """
    Delete a survey and its responses.

    Creators need ``survey:delete:own``; others ``survey:delete:org``
    within the organization.
    """
    survey = _load(survey_id)
    allowed = user.is_system_admin or (
        survey.created_by == user.id and user.has_permission(rbac.SURVEY_DELETE_OWN)
    )
    if not allowed:
        allowed = user.has_permission(
            rbac.SURVEY_DELETE_ORG
        ) and organization_service.user_can_access_organization(
            user, survey.organization_id
        )
    if not allowed:
        raise PermissionDeniedError("You do not have permission to delete this survey.")

    audit_service.log_change(
        user_id=user.id,
        action_type="DELETE",
        entity_type="survey",
        entity_id=survey.id,
        previous_value={"title": survey.title, "status": survey.status},
        organization_id=survey.organization_id,
    )
    db.session.delete(survey)
    db.session.commit()


# -- Responses -------------------------------------------------------------


def submit_response(user: User | None, survey_id: int, data: dict) -> SurveyResponse:
    """
    Record one set of answers.

    ``user`` is None for anonymous submissions, which the survey must
    allow.  Every required question must have a non-empty answer.

    Raises:
        NotFoundError, ValidationError, PermissionDeniedError.
    """
    survey = _load(survey_id)
    if user is None:
        if not survey.allow_anonymous:
            raise PermissionDeniedError(
                "This survey does not accept anonymous responses."
            )
    elif not (user.is_system_admin or can_view_survey(user, survey)):
        raise PermissionDeniedError("Access denied to this survey.")
    if survey.status != "active":
        raise ValidationError("This survey is not accepting responses.")

    answers = data.get("answers")
    if not isinstance(answers, dict):
        raise ValidationError("answers must be an object keyed by question id.")
    answers = {str(key): value for key, value in answers.items()}

    known_ids = {q["id"] for q in survey.questions or []}
    unknown = sorted(set(answers) - known_ids)
    if unknown:
        raise ValidationError(f"Unknown question ids: {', '.join(unknown)}")
    missing = [
        q["id"]
        for q in survey.questions or []
        if q.get("required", True) and answers.get(q["id"]) in (None, "", [], {})
    ]
    if missing:
        raise ValidationError(
            "Required questions are unanswered.", details={"missing": missing}
        )

    completion_time = data.get("completionTime")
    if completion_time is not None and (
        isinstance(completion_time, bool)
        or not isinstance(completion_time, int)
        or completion_time < 0
    ):
        raise ValidationError(
            "completionTime must be a non-negative integer (seconds)."
        )
    session_id = data.get("sessionId")
    if session_id is not None and (
        not isinstance(session_id, str) or len(session_id) > 100
    ):
        raise ValidationError("sessionId must be a string of at most 100 characters.")

    response = SurveyResponse(
        survey_id=survey.id,
        respondent_id=user.id if user else None,
        session_id=session_id,
        answers=answers,
        completion_time=completion_time,
    )
    db.session.add(response)
    db.session.flush()

    audit_service.log_change(
        user_id=user.id if user else None,
        action_type="CREATE",
        entity_type="survey_response",
        entity_id=response.id,
        new_value={"survey_id": survey.id, "answer_count": len(answers)},
        organization_id=survey.organization_id,
    )
    db.session.commit()
    return response


def list_responses(user: User, survey_id: int, page: int = 1, per_page: int = 50):
    survey = _load(survey_id)
    if not can_view_responses(user, survey):
        raise PermissionDeniedError("You do not have permission to view responses.")
    return (
        SurveyResponse.query.filter_by(survey_id=survey.id)
        .order_by(SurveyResponse.submitted_at.desc(), SurveyResponse.id.desc())
        .paginate(page=page, per_page=per_page, error_out=False)
    )


def get_export_rows(user: User, survey_id: int) -> tuple[Survey, list[str], list[list]]:
    """
    Tabulate a survey's responses for export.

    Returns:
        ``(survey, headers, rows)``: one column per question after the
        response metadata columns.
    """
    survey = _load(survey_id)
    if not can_view_responses(user, survey):
        raise PermissionDeniedError("You do not have permission to export responses.")

    questions = survey.questions or []
    headers = ["Response ID", "Submitted At", "Respondent", "Completion Time (s)"]
    headers += [q.get("questionText", q["id"]) for q in questions]

    rows = []
    responses = (
        SurveyResponse.query.filter_by(survey_id=survey.id)
        .order_by(SurveyResponse.submitted_at, SurveyResponse.id)
        .all()
    )
    for response in responses:
        respondent = response.respondent.email if response.respondent else "anonymous"
        row = [
            response.id,
            response.submitted_at.isoformat() if response.submitted_at else "",
            respondent,
            response.completion_time if response.completion_time is not None else "",
        ]
        for question in questions:
            row.append(_format_answer((response.answers or {}).get(question["id"])))
        rows.append(row)
    return survey, headers, rows


def _format_answer(value) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return "; ".join(str(v) for v in value)
    if isinstance(value, dict):
        return "; ".join(f"{k}: {v}" for k, v in value.items())
    return str(value)
