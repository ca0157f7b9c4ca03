"""
Model package — imports all models so Alembic and SQLAlchemy can
discover them automatically when ``flask db`` commands are run.

  - user.py         -> user accounts
  - organization.py -> tenants, members, invitations, API keys
  - survey.py       -> templates, questions, versions, surveys, responses
  - audit.py        -> audit trail
"""

from readiness.models.user import User  # noqa: F401

from readiness.models.organization import (  # noqa: F401
    ApiKey,
    Organization,
    OrganizationInvitation,
    OrganizationMember,
)

from readiness.models.survey import (  # noqa: F401
    Survey,
    SurveyResponse,
    SurveyTemplate,
    SurveyTemplateQuestion,
    SurveyTemplateVersion,
)

from readiness.models.audit import AuditLog  # noqa: F401
