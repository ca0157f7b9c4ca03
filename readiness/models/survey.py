"""
Survey templates, template questions and versions, surveys and responses.

A ``SurveyTemplate`` is a reusable question set.  Creating a ``Survey``
from a template copies the template's questions into
``Survey.questions`` so later template edits never change a running
survey.
"""

from readiness.extensions import db
from readiness.utils import isoformat, utcnow

TEMPLATE_CATEGORIES = (
    "ai_readiness",
    "customer_feedback",
    "employee_engagement",
    "market_research",
    "product_evaluation",
    "training_assessment",
    "health_wellness",
    "event_feedback",
    "recruitment",
    "ux_research",
    "compliance",
    "satisfaction",
    "performance",
    "custom",
)

TEMPLATE_STATUSES = ("draft", "published", "archived", "marketplace")

TEMPLATE_VISIBILITIES = ("private", "organization", "public")

QUESTION_TYPES = (
    "text",
    "textarea",
    "multiple_choice",
    "single_choice",
    "scale",
    "boolean",
    "jtbd",
    "rating",
    "ranking",
    "matrix",
    "file_upload",
    "date",
    "time",
    "email",
    "number",
    "slider",
    "color",
    "signature",
)

JTBD_CATEGORIES = (
    "functional",
    "emotional",
    "social",
    "push_force",
    "pull_force",
    "habit_force",
    "anxiety_force",
)

SURVEY_STATUSES = ("draft", "active", "paused", "closed", "archived")

# Current status -> statuses it may move to.
SURVEY_TRANSITIONS = {
    "draft": ("active",),
    "active": ("paused", "closed"),
    "paused": ("active", "closed"),
    "closed": ("archived",),
    "archived": (),
}


class SurveyTemplate(db.Model):
    """
    Reusable survey definition.

    ``status`` values: draft, published, archived, marketplace.
    ``visibility`` controls who may read it: private (creator only),
    organization (members of ``organization_id``), public.
    """

    __tablename__ = "survey_template"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(50), nullable=False, default="custom")
    version = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(20), nullable=False, default="draft")
    visibility = db.Column(db.String(20), nullable=False, default="private")
    estimated_duration = db.Column(db.Integer, nullable=False, default=0)
    difficulty_level = db.Column(db.Integer, nullable=False, default=1)
    tags = db.Column(db.JSON, nullable=False, default=list)
    introduction_text = db.Column(db.Text, nullable=True)
    conclusion_text = db.Column(db.Text, nullable=True)
    settings = db.Column(db.JSON, nullable=False, default=dict)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organization.id"), nullable=True
    )
    is_system_template = db.Column(db.Boolean, nullable=False, default=False)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    parent_template_id = db.Column(
        db.Integer, db.ForeignKey("survey_template.id"), nullable=True
    )
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    published_at = db.Column(db.DateTime, nullable=True)
    archived_at = db.Column(db.DateTime, nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)

    # -- Relationships -----------------------------------------------------
    questions = db.relationship(
        "SurveyTemplateQuestion",
        back_populates="template",
        order_by="SurveyTemplateQuestion.order_index",
        cascade="all, delete-orphan",
    )
    versions = db.relationship(
        "SurveyTemplateVersion",
        back_populates="template",
        order_by="SurveyTemplateVersion.version_number",
        cascade="all, delete-orphan",
    )
    creator = db.relationship("User", foreign_keys=[created_by])
    parent = db.relationship("SurveyTemplate", remote_side=[id])

    def to_dict(self, include_questions: bool = False) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "version": self.version,
            "status": self.status,
            "visibility": self.visibility,
            "estimatedDuration": self.estimated_duration,
            "difficultyLevel": self.difficulty_level,
            "tags": self.tags or [],
            "introductionText": self.introduction_text,
            "conclusionText": self.conclusion_text,
            "settings": self.settings or {},
            "createdBy": self.created_by,
            "organizationId": self.organization_id,
            "isSystemTemplate": self.is_system_template,
            "usageCount": self.usage_count,
            "parentTemplateId": self.parent_template_id,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
            "publishedAt": isoformat(self.published_at),
            "archivedAt": isoformat(self.archived_at),
        }
        if include_questions:
            data["questions"] = [q.to_dict() for q in self.questions]
        return data

    def __repr__(self) -> str:
        return f"<SurveyTemplate {self.title} status={self.status}>"


class SurveyTemplateQuestion(db.Model):
    """One question of a template, positioned by ``order_index``."""

    __tablename__ = "survey_template_question"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("survey_template.id"), nullable=False
    )
    question_text = db.Column(db.Text, nullable=False)
    question_type = db.Column(db.String(30), nullable=False)
    description = db.Column(db.Text, nullable=True)
    placeholder_text = db.Column(db.Text, nullable=True)
    help_text = db.Column(db.Text, nullable=True)
    options = db.Column(db.JSON, nullable=False, default=list)
    validation_rules = db.Column(db.JSON, nullable=False, default=dict)
    required = db.Column(db.Boolean, nullable=False, default=True)
    group_id = db.Column(db.String(100), nullable=True)
    group_title = db.Column(db.String(255), nullable=True)
    order_index = db.Column(db.Integer, nullable=False)
    jtbd_category = db.Column(db.String(30), nullable=True)
    jtbd_weight = db.Column(db.Float, nullable=False, default=1.0)
    tags = db.Column(db.JSON, nullable=False, default=list)
    analytics_enabled = db.Column(db.Boolean, nullable=False, default=True)
    display_conditions = db.Column(db.JSON, nullable=False, default=dict)
    skip_logic = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    # -- Relationships -----------------------------------------------------
    template = db.relationship("SurveyTemplate", back_populates="questions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "templateId": self.template_id,
            "questionText": self.question_text,
            "questionType": self.question_type,
            "description": self.description,
            "placeholderText": self.placeholder_text,
            "helpText": self.help_text,
            "options": self.options or [],
            "validationRules": self.validation_rules or {},
            "required": self.required,
            "groupId": self.group_id,
            "groupTitle": self.group_title,
            "orderIndex": self.order_index,
            "jtbdCategory": self.jtbd_category,
            "jtbdWeight": self.jtbd_weight,
            "tags": self.tags or [],
            "analyticsEnabled": self.analytics_enabled,
            "displayConditions": self.display_conditions or {},
            "skipLogic": self.skip_logic or {},
        }

    def __repr__(self) -> str:
        return f"<SurveyTemplateQuestion {self.id} order={self.order_index}>"


class SurveyTemplateVersion(db.Model):
    """
    Point-in-time snapshot of a template and its questions.

    At most one version per template has ``is_active`` set.
    """

    __tablename__ = "survey_template_version"
    __table_args__ = (
        db.UniqueConstraint(
            "template_id",
            "version_number",
            name="UQ_survey_template_version_template_number",
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("survey_template.id"), nullable=False
    )
    version_number = db.Column(db.Integer, nullable=False)
    template_snapshot = db.Column(db.JSON, nullable=False)
    questions_snapshot = db.Column(db.JSON, nullable=False)
    version_notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    # -- Relationships -----------------------------------------------------
    template = db.relationship("SurveyTemplate", back_populates="versions")

    def to_dict(self, include_snapshots: bool = False) -> dict:
        data = {
            "id": self.id,
            "templateId": self.template_id,
            "versionNumber": self.version_number,
            "versionNotes": self.version_notes,
            "createdBy": self.created_by,
            "isActive": self.is_active,
            "createdAt": isoformat(self.created_at),
        }
        if include_snapshots:
            data["templateSnapshot"] = self.template_snapshot
            data["questionsSnapshot"] = self.questions_snapshot
        return data


class Survey(db.Model):
    """
    A survey run by an organization.

    ``questions`` is a JSON list of question dicts in display order.
    ``status`` moves only along ``SURVEY_TRANSITIONS``.
    """

    __tablename__ = "survey"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organization.id"), nullable=False
    )
    template_id = db.Column(
        db.Integer, db.ForeignKey("survey_template.id"), nullable=True
    )
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    questions = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(20), nullable=False, default="draft")
    allow_anonymous = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
    published_at = db.Column(db.DateTime, nullable=True)
    closed_at = db.Column(db.DateTime, nullable=True)

    # -- Relationships -----------------------------------------------------
    organization = db.relationship("Organization")
    template = db.relationship("SurveyTemplate")
    creator = db.relationship("User", foreign_keys=[created_by])
    responses = db.relationship(
        "SurveyResponse",
        back_populates="survey",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_questions: bool = True) -> dict:
        data = {
            "id": self.id,
            "organizationId": self.organization_id,
            "templateId": self.template_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "allowAnonymous": self.allow_anonymous,
            "createdBy": self.created_by,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
            "publishedAt": isoformat(self.published_at),
            "closedAt": isoformat(self.closed_at),
        }
        if include_questions:
            data["questions"] = self.questions or []
        return data

    def __repr__(self) -> str:
        return f"<Survey {self.title} status={self.status}>"


class SurveyResponse(db.Model):
    """One submitted set of answers; ``respondent_id`` is NULL when anonymous."""

    __tablename__ = "survey_response"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    survey_id = db.Column(db.Integer, db.ForeignKey("survey.id"), nullable=False)
    respondent_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    session_id = db.Column(db.String(100), nullable=True)
    answers = db.Column(db.JSON, nullable=False, default=dict)
    completion_time = db.Column(db.Integer, nullable=True)
    submitted_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    # -- Relationships -----------------------------------------------------
    survey = db.relationship("Survey", back_populates="responses")
    respondent = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "surveyId": self.survey_id,
            "respondentId": self.respondent_id,
            "sessionId": self.session_id,
            "answers": self.answers or {},
            "completionTime": self.completion_time,
            "submittedAt": isoformat(self.submitted_at),
        }
