"""
Template service — survey template CRUD, questions and versions.

Read access: the creator, anyone for public or marketplace templates,
members for organization-visible templates, and system admins.
Write access: the creator, admins and managers of the template's
organization, and system admins.

Every question change bumps the parent template's ``updated_at``.
"""

import logging

from sqlalchemy import and_, or_

from readiness import rbac
from readiness.errors import NotFoundError, PermissionDeniedError, ValidationError
from readiness.extensions import db
from readiness.models.survey import (
    JTBD_CATEGORIES,
    QUESTION_TYPES,
    TEMPLATE_CATEGORIES,
    TEMPLATE_STATUSES,
    TEMPLATE_VISIBILITIES,
    SurveyTemplate,
    SurveyTemplateQuestion,
    SurveyTemplateVersion,
)
from readiness.models.user import User
from readiness.services import audit_service, organization_service
from readiness.utils import require_text, utcnow

logger = logging.getLogger(__name__)

# Member roles allowed to edit organization templates.
_TEMPLATE_EDITOR_MEMBER_ROLES = ("owner", "admin", "manager")

# camelCase request key -> (column, default) for question fields.
_QUESTION_FIELDS = {
    "questionText": ("question_text", None),
    "questionType": ("question_type", None),
    "description": ("description", None),
    "placeholderText": ("placeholder_text", None),
    "helpText": ("help_text", None),
    "options": ("options", list),
    "validationRules": ("validation_rules", dict),
    "required": ("required", True),
    "groupId": ("group_id", None),
    "groupTitle": ("group_title", None),
    "jtbdCategory": ("jtbd_category", None),
    "jtbdWeight": ("jtbd_weight", 1.0),
    "tags": ("tags", list),
    "analyticsEnabled": ("analytics_enabled", True),
    "displayConditions": ("display_conditions", dict),
    "skipLogic": ("skip_logic", dict),
}


# -- Access ----------------------------------------------------------------


def can_view_template(user: User, template: SurveyTemplate) -> bool:
    if template.deleted_at is not None:
        return False
    if user.is_system_admin or template.created_by == user.id:
        return True
    if template.visibility == "public" or template.status == "marketplace":
        return True
    if template.is_system_template and template.status == "published":
        return True
    if template.visibility == "organization" and template.organization_id:
        return organization_service.user_can_access_organization(
            user, template.organization_id
        )
    return False


def can_edit_template(user: User, template: SurveyTemplate) -> bool:
    if user.is_system_admin:
        return True
    if template.created_by == user.id and user.has_permission(rbac.SURVEY_EDIT_OWN):
        return True
    org_id = template.organization_id
    if org_id is None or not user.api_key_allows_organization(org_id):
        return False
    if user.role == rbac.ORG_ADMIN and user.organization_id == org_id:
        return user.has_permission(rbac.SURVEY_EDIT_ORG)
    membership = organization_service.get_membership(user.id, org_id)
    return (
        membership is not None
        and membership.role in _TEMPLATE_EDITOR_MEMBER_ROLES
        and user.has_permission(rbac.SURVEY_EDIT_OWN)
    )


def get_template(user: User, template_id: int) -> SurveyTemplate:
    """
    Return a template the user may read.

    Raises:
        NotFoundError: Missing, deleted, or not visible to the user.
    """
    template = db.session.get(SurveyTemplate, template_id)
    if template is None or template.deleted_at is not None:
        raise NotFoundError("Template not found.")
    if not can_view_template(user, template):
        # Hidden templates are reported as missing.
        raise NotFoundError("Template not found.")
    return template


def get_editable_template(user: User, template_id: int) -> SurveyTemplate:
    template = get_template(user, template_id)
    if not can_edit_template(user, template):
        raise PermissionDeniedError("You do not have permission to edit this template.")
    return template


def list_templates(
    user: User,
    category: str | None = None,
    status: str | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int = 20,
):
    """
    Return a paginated list of templates readable by ``user``, most
    recently updated first.
    """
    query = SurveyTemplate.query.filter(SurveyTemplate.deleted_at.is_(None))

    if not user.is_system_admin:
        visible = [
            SurveyTemplate.created_by == user.id,
            SurveyTemplate.visibility == "public",
            SurveyTemplate.status == "marketplace",
            and_(
                SurveyTemplate.is_system_template.is_(True),
                SurveyTemplate.status == "published",
            ),
        ]
        org_ids = organization_service.accessible_organization_ids(user)
        if org_ids:
            visible.append(
                and_(
                    SurveyTemplate.visibility == "organization",
                    SurveyTemplate.organization_id.in_(org_ids),
                )
            )
        query = query.filter(or_(*visible))

    if category:
        query = query.filter(SurveyTemplate.category == category)
    if status:
        query = query.filter(SurveyTemplate.status == status)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                SurveyTemplate.title.ilike(pattern),
                SurveyTemplate.description.ilike(pattern),
            )
        )

    query = query.order_by(SurveyTemplate.updated_at.desc(), SurveyTemplate.id.desc())
    return query.paginate(page=page, per_page=per_page, error_out=False)


# -- Template validation ---------------------------------------------------


def _validate_template_fields(user: User, data: dict, partial: bool) -> dict:
    values: dict = {}

    if "title" in data or not partial:
        values["title"] = require_text(data.get("title"), "title")

    if "description" in data:
        values["description"] = data.get("description") or None

    if "category" in data:
        if data["category"] not in TEMPLATE_CATEGORIES:
            raise ValidationError(
                f"Invalid category. Valid categories: {', '.join(TEMPLATE_CATEGORIES)}"
            )
        values["category"] = data["category"]

    if "visibility" in data:
        if data["visibility"] not in TEMPLATE_VISIBILITIES:
            raise ValidationError(
                f"Invalid visibility. Valid values: {', '.join(TEMPLATE_VISIBILITIES)}"
            )
        values["visibility"] = data["visibility"]

    if "estimatedDuration" in data:
        duration = data["estimatedDuration"]
        if isinstance(duration, bool) or not isinstance(duration, int) or duration < 0:
            raise ValidationError("estimatedDuration must be a non-negative integer.")
        values["estimated_duration"] = duration

    if "difficultyLevel" in data:
        level = data["difficultyLevel"]
        if isinstance(level, bool) or not isinstance(level, int) or not 1 <= level <= 5:
            raise ValidationError("difficultyLevel must be between 1 and 5.")
        values["difficulty_level"] = level

    if "tags" in data:
        tags = data["tags"] or []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise ValidationError("tags must be a list of strings.")
        values["tags"] = tags

    for key, attr in (
        ("introductionText", "introduction_text"),
        ("conclusionText", "conclusion_text"),
    ):
        if key in data:
            values[attr] = data.get(key) or None

    if "settings" in data:
        settings = data["settings"] or {}
        if not isinstance(settings, dict):
            raise ValidationError("settings must be an object.")
        values["settings"] = settings

    if "organizationId" in data:
        org_id = data["organizationId"]
        if org_id is not None:
            if not isinstance(org_id, int) or isinstance(org_id, bool):
                raise ValidationError("organizationId must be an integer.")
            organization_service.get_organization_or_404(org_id)
            if not organization_service.user_can_access_organization(user, org_id):
                raise PermissionDeniedError("Access denied to this organization.")
        values["organization_id"] = org_id

    if "isSystemTemplate" in data:
        if not user.is_system_admin:
            raise PermissionDeniedError("Only system admins manage system templates.")
        values["is_system_template"] = bool(data["isSystemTemplate"])

    return values


def _snapshot(template: SurveyTemplate) -> dict:
    return {
        "title": template.title,
        "status": template.status,
        "visibility": template.visibility,
        "category": template.category,
    }


# -- Template CRUD ---------------------------------------------------------


def create_template(user: User, data: dict) -> SurveyTemplate:
    """
    Create a draft template, optionally with an initial question list.

    Raises:
        ValidationError, PermissionDeniedError, NotFoundError.
    """
    values = _validate_template_fields(user, data, partial=False)
    values.setdefault("organization_id", user.organization_id)
    values.setdefault("category", "custom")
    values.setdefault("visibility", "private")

    template = SurveyTemplate(
        created_by=user.id,
        status="draft",
        version=1,
        tags=values.pop("tags", []),
        settings=values.pop("settings", {}),
        **values,
    )
    db.session.add(template)
    db.session.flush()

    questions = data.get("questions")
    if questions is not None:
        if not isinstance(questions, list):
            raise ValidationError("Questions must be an array")
        for position, item in enumerate(questions):
            _add_question_row(template, item, position)

    audit_service.log_change(
        user_id=user.id,
        action_type="CREATE",
        entity_type="survey_template",
        entity_id=template.id,
        new_value=_snapshot(template),
        organization_id=template.organization_id,
    )
    db.session.commit()
    logger.info("Template %s created by user %s", template.id, user.id)
    return template


def update_template(user: User, template_id: int, data: dict) -> SurveyTemplate:
    template = get_editable_template(user, template_id)
    if template.status == "archived":
        raise ValidationError("Archived templates cannot be edited.")
    values = _validate_template_fields(user, data, partial=True)

    previous: dict = {}
    changed: dict = {}
    for attr, value in values.items():
        if getattr(template, attr) != value:
            previous[attr] = getattr(template, attr)
            changed[attr] = value
            setattr(template, attr, value)

    if changed:
        template.updated_at = utcnow()
        audit_service.log_change(
            user_id=user.id,
            action_type="UPDATE",
            entity_type="survey_template",
            entity_id=template.id,
            previous_value=previous,
            new_value=changed,
            organization_id=template.organization_id,
        )
        db.session.commit()
    return template


def delete_template(user: User, template_id: int) -> None:
    """Soft-delete a template."""
    template = get_editable_template(user, template_id)
    template.deleted_at = utcnow()
    audit_service.log_change(
        user_id=user.id,
        action_type="DELETE",
        entity_type="survey_template",
        entity_id=template.id,
        previous_value=_snapshot(template),
        organization_id=template.organization_id,
    )
    db.session.commit()


def _set_status(user: User, template: SurveyTemplate, status: str) -> SurveyTemplate:
    if status not in TEMPLATE_STATUSES:
        raise ValidationError(f"Invalid status '{status}'.")
    previous = template.status
    template.status = status
    template.updated_at = utcnow()
    if status == "published":
        template.published_at = template.updated_at
    elif status == "archived":
        template.archived_at = template.updated_at
    audit_service.log_change(
        user_id=user.id,
        action_type="UPDATE",
        entity_type="survey_template",
        entity_id=template.id,
        previous_value={"status": previous},
        new_value={"status": status},
        organization_id=template.organization_id,
    )
    db.session.commit()
    logger.info("Template %s moved from %s to %s", template.id, previous, status)
    return template


def publish_template(user: User, template_id: int) -> SurveyTemplate:
    """
    Raises:
        ValidationError: Not a draft, or the template has no questions.
    """
    template = get_editable_template(user, template_id)
    if template.status != "draft":
        raise ValidationError("Only draft templates can be published.")
    if not template.questions:
        raise ValidationError("Add at least one question before publishing.")
    return _set_status(user, template, "published")


def archive_template(user: User, template_id: int) -> SurveyTemplate:
    template = get_editable_template(user, template_id)
    if template.status == "archived":
        raise ValidationError("Template is already archived.")
    return _set_status(user, template, "archived")


def duplicate_template(
    user: User, template_id: int, title: str | None = None
) -> SurveyTemplate:
    """
    Copy a readable template and its questions into a new private draft
    owned by ``user``.
    """
    source = get_template(user, template_id)
    if title is not None and not isinstance(title, str):
        raise ValidationError("title must be a string.")
    title = (title or f"{source.title} (Copy)").strip()[:255]

    copy = SurveyTemplate(
        title=title,
        description=source.description,
        category=source.category,
        version=1,
        status="draft",
        visibility="private",
        estimated_duration=source.estimated_duration,
        difficulty_level=source.difficulty_level,
        tags=list(source.tags or []),
        introduction_text=source.introduction_text,
        conclusion_text=source.conclusion_text,
        settings=dict(source.settings or {}),
        created_by=user.id,
        organization_id=user.organization_id,
        parent_template_id=source.id,
    )
    db.session.add(copy)
    db.session.flush()
    for question in source.questions:
        copy.questions.append(_clone_question(question))

    audit_service.log_change(
        user_id=user.id,
        action_type="CREATE",
        entity_type="survey_template",
        entity_id=copy.id,
        new_value={"title": copy.title, "duplicated_from": source.id},
        organization_id=copy.organization_id,
    )
    db.session.commit()
    return copy


def _clone_question(question: SurveyTemplateQuestion) -> SurveyTemplateQuestion:
    clone = SurveyTemplateQuestion(order_index=question.order_index)
    for attr, _default in _QUESTION_FIELDS.values():
        value = getattr(question, attr)
        if isinstance(value, (list, dict)):
            value = type(value)(value)
        setattr(clone, attr, value)
    return clone


def record_usage(template: SurveyTemplate) -> None:
    """Count a survey created from this template; the caller commits."""
    template.usage_count = (template.usage_count or 0) + 1


# -- Questions -------------------------------------------------------------


def _question_values(data, partial: bool) -> dict:
    """Map a camelCase question body to column values."""
    if not isinstance(data, dict):
        raise ValidationError("Each question must be an object.")
    if not partial and (not data.get("questionText") or not data.get("questionType")):
        raise ValidationError("Missing required fields: questionText, questionType")

    values: dict = {}
    for key, (attr, default) in _QUESTION_FIELDS.items():
        if key in data:
            values[attr] = data[key]
        elif not partial:
            values[attr] = default() if callable(default) else default

    if "question_text" in values and not (
        isinstance(values["question_text"], str) and values["question_text"].strip()
    ):
        raise ValidationError("questionText cannot be empty.")
    if "question_type" in values and values["question_type"] not in QUESTION_TYPES:
        raise ValidationError(
            f"Invalid questionType. Valid types: {', '.join(QUESTION_TYPES)}"
        )
    category = values.get("jtbd_category")
    if category is not None and category not in JTBD_CATEGORIES:
        raise ValidationError(
            f"Invalid jtbdCategory. Valid values: {', '.join(JTBD_CATEGORIES)}"
        )
    if "jtbd_weight" in values:
        weight = values["jtbd_weight"]
        if weight is None:
            values["jtbd_weight"] = 1.0
        elif isinstance(weight, bool) or not isinstance(weight, (int, float)):
            raise ValidationError("jtbdWeight must be a number.")
    for attr in ("options", "tags"):
        if attr in values and values[attr] is None:
            values[attr] = []
        if attr in values and not isinstance(values[attr], list):
            raise ValidationError(f"{attr} must be a list.")
    for attr in ("validation_rules", "display_conditions", "skip_logic"):
        if attr in values and values[attr] is None:
            values[attr] = {}
        if attr in values and not isinstance(values[attr], dict):
            raise ValidationError(f"{attr} must be an object.")
    for attr in ("required", "analytics_enabled"):
        if attr in values:
            values[attr] = values[attr] is not False
    return values


def _parse_order_index(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError("orderIndex must be a non-negative integer.")
    return value


def _add_question_row(
    template: SurveyTemplate, data: dict, default_index: int
) -> SurveyTemplateQuestion:
    values = _question_values(data, partial=False)
    order_index = data.get("orderIndex")
    if order_index is None:
        order_index = default_index
    else:
        order_index = _parse_order_index(order_index)
    question = SurveyTemplateQuestion(order_index=order_index, **values)
    template.questions.append(question)
    return question


def _touch(template: SurveyTemplate) -> None:
    template.updated_at = utcnow()


def list_questions(user: User, template_id: int) -> list[SurveyTemplateQuestion]:
    template = get_template(user, template_id)
    return (
        SurveyTemplateQuestion.query.filter_by(template_id=template.id)
        .order_by(SurveyTemplateQuestion.order_index, SurveyTemplateQuestion.id)
        .all()
    )


def add_question(user: User, template_id: int, data: dict) -> SurveyTemplateQuestion:
    """
    Append a question.  Without ``orderIndex`` it goes after the current
    last question.

    Raises:
        ValidationError: ``questionText`` or ``questionType`` missing.
        NotFoundError: The template does not exist.
    """
    values = _question_values(data, partial=False)
    template = get_editable_template(user, template_id)

    order_index = data.get("orderIndex")
    if order_index is None:
        last = (
            db.session.query(db.func.max(SurveyTemplateQuestion.order_index))
            .filter(SurveyTemplateQuestion.template_id == template.id)
            .scalar()
        )
        order_index = (last or 0) + 1
    else:
        order_index = _parse_order_index(order_index)

    question = SurveyTemplateQuestion(order_index=order_index, **values)
    template.questions.append(question)
    _touch(template)
    db.session.flush()

    audit_service.log_change(
        user_id=user.id,
        action_type="CREATE",
        entity_type="survey_template_question",
        entity_id=question.id,
        new_value={"template_id": template.id, "question_type": question.question_type},
        organization_id=template.organization_id,
    )
    db.session.commit()
    return question


def replace_questions(
    user: User, template_id: int, questions
) -> list[SurveyTemplateQuestion]:
    """
    Replace every question of a template.  A question without
    ``orderIndex`` takes its position in the list.

    Raises:
        ValidationError: ``questions`` is not a list or an item is invalid.
        NotFoundError: The template does not exist.
    """
    if not isinstance(questions, list):
        raise ValidationError("Questions must be an array")
    template = get_editable_template(user, template_id)

    previous_count = len(template.questions)
    template.questions.clear()
    db.session.flush()
    for position, item in enumerate(questions):
        _add_question_row(template, item, position)
    _touch(template)

    audit_service.log_change(
        user_id=user.id,
        action_type="UPDATE",
        entity_type="survey_template",
        entity_id=template.id,
        previous_value={"question_count": previous_count},
        new_value={"question_count": len(questions)},
        organization_id=template.organization_id,
    )
    db.session.commit()
    return list_questions(user, template.id)


def _get_question(template: SurveyTemplate, question_id: int) -> SurveyTemplateQuestion:
    question = db.session.get(SurveyTemplateQuestion, question_id)
    if question is None or question.template_id != template.id:
        raise NotFoundError("Question not found.")
    return question


def update_question(
    user: User, template_id: int, question_id: int, data: dict
) -> SurveyTemplateQuestion:
    template = get_editable_template(user, template_id)
    question = _get_question(template, question_id)
    values = _question_values(data, partial=True)
    if "orderIndex" in data:
        values["order_index"] = _parse_order_index(data["orderIndex"])

    previous: dict = {}
    for attr, value in values.items():
        previous[attr] = getattr(question, attr)
        setattr(question, attr, value)
    _touch(template)

    audit_service.log_change(
        user_id=user.id,
        action_type="UPDATE",
        entity_type="survey_template_question",
        entity_id=question.id,
        previous_value=previous,
        new_value=values,
        organization_id=template.organization_id,
    )
    db.session.commit()
    return question


def delete_question(user: User, template_id: int, question_id: int) -> None:
    template = get_editable_template(user, template_id)
    question = _get_question(template, question_id)
    template.questions.remove(question)
    _touch(template)

    audit_service.log_change(
        user_id=user.id,
        action_type="DELETE",
        entity_type="survey_template_question",
        entity_id=question_id,
        previous_value={"question_text": question.question_text},
        organization_id=template.organization_id,
    )
    db.session.commit()


def reorder_questions(
    user: User, template_id: int, order
) -> list[SurveyTemplateQuestion]:
    """
    Set ``order_index`` from a list of question ids.

    The list must name every question of the template exactly once.
    """
    template = get_editable_template(user, template_id)
    if not isinstance(order, list) or not all(
        isinstance(qid, int) and not isinstance(qid, bool) for qid in order
    ):
        raise ValidationError("order must be a list of question ids.")
    current = {q.id: q for q in template.questions}
    if sorted(order) != sorted(current) or len(set(order)) != len(order):
        raise ValidationError("order must list every question id exactly once.")

    for position, question_id in enumerate(order):
        current[question_id].order_index = position
    _touch(template)

    audit_service.log_change(
        user_id=user.id,
        action_type="UPDATE",
        entity_type="survey_template",
        entity_id=template.id,
        new_value={"question_order": order},
        organization_id=template.organization_id,
    )
    db.session.commit()
    return list_questions(user, template.id)


# -- Versions --------------------------------------------------------------


def list_versions(user: User, template_id: int) -> list[SurveyTemplateVersion]:
    template = get_template(user, template_id)
    return (
        SurveyTemplateVersion.query.filter_by(template_id=template.id)
        .order_by(SurveyTemplateVersion.version_number.desc())
        .all()
    )


def create_version(
    user: User, template_id: int, notes: str | None = None
) -> SurveyTemplateVersion:
    """
    Snapshot the template and its questions as the next version number.

    The new version becomes the active one and the template's
    ``version`` follows it.
    """
    template = get_editable_template(user, template_id)
    last = (
        db.session.query(db.func.max(SurveyTemplateVersion.version_number))
        .filter(SurveyTemplateVersion.template_id == template.id)
        .scalar()
    )
    number = (last or 0) + 1

    SurveyTemplateVersion.query.filter_by(template_id=template.id).update(
        {"is_active": False}
    )
    version = SurveyTemplateVersion(
        template_id=template.id,
        version_number=number,
        template_snapshot=template.to_dict(),
        questions_snapshot=[q.to_dict() for q in template.questions],
        version_notes=notes,
        created_by=user.id,
        is_active=True,
    )
    db.session.add(version)
    template.version = number
    _touch(template)
    db.session.flush()

    audit_service.log_change(
        user_id=user.id,
        action_type="CREATE",
        entity_type="survey_template_version",
        entity_id=version.id,
        new_value={"template_id": template.id, "version_number": number},
        organization_id=template.organization_id,
    )
    db.session.commit()
    return version


def activate_version(
    user: User, template_id: int, version_id: int
) -> SurveyTemplateVersion:
    """Make one version active and deactivate all others."""
    template = get_editable_template(user, template_id)
    version = db.session.get(SurveyTemplateVersion, version_id)
    if version is None or version.template_id != template.id:
        raise NotFoundError("Version not found.")

    SurveyTemplateVersion.query.filter(
        SurveyTemplateVersion.template_id == template.id,
        SurveyTemplateVersion.id != version.id,
    ).update({"is_active": False})
    version.is_active = True
    template.version = version.version_number
    _touch(template)

    audit_service.log_change(
        user_id=user.id,
        action_type="UPDATE",
        entity_type="survey_template_version",
        entity_id=version.id,
        new_value={"is_active": True, "version_number": version.version_number},
        organization_id=template.organization_id,
    )
    db.session.commit()
    return version
