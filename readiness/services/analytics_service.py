"""
Analytics service — organization dashboard metrics computed from rows.

All rates are percentages rounded to one decimal place and are 0 when
their denominator is 0.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from readiness.errors import PermissionDeniedError, ValidationError
from readiness.extensions import db
from readiness.models.organization import OrganizationMember
from readiness.models.survey import Survey, SurveyResponse
from readiness.models.user import User
from readiness.services import organization_service
from readiness.utils import parse_datetime, utcnow

logger = logging.getLogger(__name__)

UNASSIGNED_DEPARTMENT = "Unassigned"


@dataclass
class DashboardFilters:
    """Filters accepted by the dashboard endpoints."""

    organization_id: int | None = None
    start: datetime | None = None
    end: datetime | None = None
    department: str | None = None
    survey_ids: list[int] = field(default_factory=list)

    @classmethod
    def from_query(cls, args) -> "DashboardFilters":
        """
        Build from a query string: ``organizationId``, ``start``, ``end``,
        ``department`` and comma-separated ``surveyIds``.
        """
        raw_ids = args.get("surveyIds", "")
        try:
            survey_ids = [int(s) for s in raw_ids.split(",") if s.strip()]
        except ValueError as exc:
            raise ValidationError(
                "surveyIds must be comma-separated integers."
            ) from exc
        org_id = args.get("organizationId")
        if org_id is not None:
            try:
                org_id = int(org_id)
            except ValueError as exc:
                raise ValidationError("organizationId must be an integer.") from exc
        return cls._build(
            org_id,
            args.get("start"),
            args.get("end"),
            args.get("department"),
            survey_ids,
        )

    @classmethod
    def from_body(cls, data: dict) -> "DashboardFilters":
        """Build from a JSON body with a nested ``dateRange`` object."""
        date_range = data.get("dateRange") or {}
        if not isinstance(date_range, dict):
            raise ValidationError("dateRange must be an object with start and end.")
        survey_ids = data.get("surveyIds") or []
        if not isinstance(survey_ids, list) or not all(
            isinstance(s, int) and not isinstance(s, bool) for s in survey_ids
        ):
            raise ValidationError("surveyIds must be a list of integers.")
        org_id = data.get("organizationId")
        if org_id is not None and (
            isinstance(org_id, bool) or not isinstance(org_id, int)
        ):
            raise ValidationError("organizationId must be an integer.")
        return cls._build(
            org_id,
            date_range.get("start"),
            date_range.get("end"),
            data.get("department"),
            survey_ids,
        )

    @classmethod
    def _build(cls, org_id, start, end, department, survey_ids) -> "DashboardFilters":
        start_dt = parse_datetime(start, "start")
        end_dt = parse_datetime(end, "end")
        # A bare end date includes that whole day.
        if end_dt is not None and isinstance(end, str) and len(end) == 10:
            end_dt = end_dt + timedelta(days=1) - timedelta(microseconds=1)
        if start_dt and end_dt and start_dt > end_dt:
            raise ValidationError("start must be before end.")
        return cls(
            organization_id=org_id,
            start=start_dt,
            end=end_dt,
            department=(department or None),
            survey_ids=survey_ids,
        )

    def to_dict(self) -> dict:
        return {
            "organizationId": self.organization_id,
            "dateRange": {
                "start": self.start.isoformat() if self.start else None,
                "end": self.end.isoformat() if self.end else None,
            },
            "department": self.department,
            "surveyIds": self.survey_ids,
        }


def _rate(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return round(numerator / denominator * 100, 1)


def _average(values: list[int]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 1)


def resolve_organization(user: User, filters: DashboardFilters) -> int:
    """
    Pick the organization to report on and check access.

    Raises:
        ValidationError: No organization given and none on the user.
        PermissionDeniedError: The user cannot access it.
    """
    org_id = filters.organization_id or user.home_organization_id
    if org_id is None:
        raise ValidationError("organizationId is required.")
    organization_service.get_organization_or_404(org_id)
    if not organization_service.user_can_access_organization(user, org_id):
        raise PermissionDeniedError("Access denied to this organization.")
    return org_id


def get_dashboard(user: User, filters: DashboardFilters) -> dict:
    """
    Compute the dashboard for one organization.

    Returns:
        A dict with ``totalSurveys``, ``activeSurveys``,
        ``totalResponses``, ``completionRate``,
        ``averageCompletionTime``, ``participationRate``,
        ``departmentBreakdown``, ``responsesByMonth``,
        ``surveyPerformance``, ``questionTypeDistribution``,
        ``filters`` and ``generatedAt``.
    """
    org_id = resolve_organization(user, filters)

    survey_query = Survey.query.filter(Survey.organization_id == org_id)
    if filters.survey_ids:
        survey_query = survey_query.filter(Survey.id.in_(filters.survey_ids))
    surveys = survey_query.order_by(Survey.created_at, Survey.id).all()
    survey_ids = [s.id for s in surveys]

    member_query = (
        db.session.query(User)
        .join(OrganizationMember, OrganizationMember.user_id == User.id)
        .filter(OrganizationMember.organization_id == org_id)
    )
    if filters.department:
        member_query = member_query.filter(User.department == filters.department)
    members = member_query.all()
    member_count = len(members)

    responses: list[SurveyResponse] = []
    if survey_ids:
        response_query = SurveyResponse.query.filter(
            SurveyResponse.survey_id.in_(survey_ids)
        )
        if filters.start:
            response_query = response_query.filter(
                SurveyResponse.submitted_at >= filters.start
            )
        if filters.end:
            response_query = response_query.filter(
                SurveyResponse.submitted_at <= filters.end
            )
        if filters.department:
            response_query = response_query.join(
                User, User.id == SurveyResponse.respondent_id
            ).filter(User.department == filters.department)
        responses = response_query.order_by(SurveyResponse.submitted_at).all()

    total_responses = len(responses)
    # Rates count each member at most once per survey.
    member_ids = {m.id for m in members}
    completed = {
        (r.survey_id, r.respondent_id)
        for r in responses
        if r.respondent_id in member_ids
    }
    respondents = {respondent_id for _, respondent_id in completed}
    times = [r.completion_time for r in responses if r.completion_time is not None]

    # -- Department breakdown ----------------------------------------------
    department_breakdown: dict[str, int] = {}
    for member in members:
        department_breakdown.setdefault(member.department or UNASSIGNED_DEPARTMENT, 0)
    for response in responses:
        department = (
            response.respondent.department
            if response.respondent is not None
            else None
        ) or UNASSIGNED_DEPARTMENT
        department_breakdown[department] = department_breakdown.get(department, 0) + 1

    # -- Responses by month ------------------------------------------------
    by_month: dict[tuple[int, int], int] = {}
    for response in responses:
        key = (response.submitted_at.year, response.submitted_at.month)
        by_month[key] = by_month.get(key, 0) + 1
    responses_by_month = [
        {"month": datetime(year, month, 1).strftime("%b %Y"), "responses": count}
        for (year, month), count in sorted(by_month.items())
    ]

    # -- Per-survey performance --------------------------------------------
    per_survey: dict[int, list[SurveyResponse]] = {sid: [] for sid in survey_ids}
    for response in responses:
        per_survey[response.survey_id].append(response)
    survey_performance = []
    for survey in surveys:
        rows = per_survey[survey.id]
        survey_respondents = sum(1 for sid, _ in completed if sid == survey.id)
        survey_performance.append(
            {
                "surveyId": survey.id,
                "title": survey.title,
                "status": survey.status,
                "responses": len(rows),
                "completionRate": _rate(survey_respondents, member_count),
                "averageCompletionTime": _average(
                    [r.completion_time for r in rows if r.completion_time is not None]
                ),
            }
        )

    # -- Question types ----------------------------------------------------
    question_types: Counter = Counter()
    for survey in surveys:
        for question in survey.questions or []:
            question_types[question.get("questionType", "unknown")] += 1

    dashboard = {
        "organizationId": org_id,
        "totalSurveys": len(surveys),
        "activeSurveys": sum(1 for s in surveys if s.status == "active"),
        "totalResponses": total_responses,
        "totalMembers": member_count,
        "completionRate": _rate(len(completed), len(surveys) * member_count),
        "averageCompletionTime": _average(times),
        "participationRate": _rate(len(respondents), member_count),
        "departmentBreakdown": department_breakdown,
        "responsesByMonth": responses_by_month,
        "surveyPerformance": survey_performance,
        "questionTypeDistribution": dict(sorted(question_types.items())),
        "filters": filters.to_dict(),
        "generatedAt": utcnow().isoformat(),
    }
    logger.debug(
        "Dashboard for org %s: %d surveys, %d responses",
        org_id,
        len(surveys),
        total_responses,
    )
    return dashboard


def summary_rows(dashboard: dict) -> list[list]:
    """Flatten headline metrics into ``[metric, value]`` rows for export."""
    return [
        ["Total Surveys", dashboard["totalSurveys"]],
        ["Active Surveys", dashboard["activeSurveys"]],
        ["Total Responses", dashboard["totalResponses"]],
        ["Total Members", dashboard["totalMembers"]],
        ["Completion Rate (%)", dashboard["completionRate"]],
        ["Average Completion Time (s)", dashboard["averageCompletionTime"]],
        ["Participation Rate (%)", dashboard["participationRate"]],
        ["Generated At", dashboard["generatedAt"]],
    ]
