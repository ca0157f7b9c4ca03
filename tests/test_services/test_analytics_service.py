"""
Tests for analytics_service: dashboard filters and the metrics computed
from surveys, responses and members.
"""

from datetime import datetime

import pytest
from werkzeug.datastructures import MultiDict

from conftest import create_organization, create_user
from readiness.errors import PermissionDeniedError, ValidationError
from readiness.models.survey import Survey, SurveyResponse
from readiness.services import analytics_service
from readiness.services.analytics_service import DashboardFilters


class TestDashboardFilters:
    """Parsing of query strings and JSON bodies."""

    def test_from_query(self):
        filters = DashboardFilters.from_query(
            MultiDict(
                {
                    "organizationId": "4",
                    "start": "2026-01-01",
                    "end": "2026-01-31",
                    "surveyIds": "1, 2",
                }
            )
        )
        assert filters.organization_id == 4
        assert filters.survey_ids == [1, 2]
        assert filters.start == datetime(2026, 1, 1)
        # A bare end date covers the whole day.
        assert filters.end.date() == datetime(2026, 1, 31).date()
        assert filters.end.hour == 23

    def test_from_body(self):
        filters = DashboardFilters.from_body(
            {
                "dateRange": {"start": "2026-01-01T00:00:00Z"},
                "department": "Sales",
                "surveyIds": [3],
            }
        )
        assert filters.start == datetime(2026, 1, 1)
        assert filters.end is None
        assert filters.department == "Sales"

    @pytest.mark.parametrize(
        "args",
        [
            {"surveyIds": "1,x"},
            {"organizationId": "abc"},
            {"start": "yesterday"},
            {"start": "2026-02-01", "end": "2026-01-01"},
        ],
    )
    def test_invalid_query_is_rejected(self, args):
        with pytest.raises(ValidationError):
            DashboardFilters.from_query(MultiDict(args))

    def test_invalid_body_survey_ids(self):
        with pytest.raises(ValidationError):
            DashboardFilters.from_body({"surveyIds": ["1"]})


class TestDashboard:
    """Metrics over a small, hand-built organization."""

    @pytest.fixture(autouse=True)
    def _setup(self, db_session):
        self.db = db_session
        self.org = create_organization()
        self.admin = create_user(
            "admin@example.com",
            role="org_admin",
            organization_id=self.org.id,
            department="IT",
            member_role="owner",
        )
        self.sales = create_user(
            "sales@example.com",
            organization_id=self.org.id,
            department="Sales",
            member_role="member",
        )
        self.other = create_user(
            "nodept@example.com", organization_id=self.org.id, member_role="member"
        )
        self.stranger = create_user("stranger@example.com")

        questions = [{"id": "q1", "questionText": "Score", "questionType": "scale"}]
        self.active = Survey(
            organization_id=self.org.id,
            title="Active survey",
            questions=questions,
            status="active",
            created_by=self.admin.id,
        )
        self.draft = Survey(
            organization_id=self.org.id,
            title="Draft survey",
            questions=questions,
            status="draft",
            created_by=self.admin.id,
        )
        db_session.add_all([self.active, self.draft])
        db_session.flush()

        for respondent, submitted_at, seconds in (
            (self.admin, datetime(2026, 1, 10), 60),
            (self.sales, datetime(2026, 1, 20), 120),
            (self.sales, datetime(2026, 2, 5), None),
        ):
            db_session.add(
                SurveyResponse(
                    survey_id=self.active.id,
                    respondent_id=respondent.id,
                    answers={"q1": 3},
                    completion_time=seconds,
                    submitted_at=submitted_at,
                )
            )
        db_session.commit()

    def test_headline_metrics(self):
        dashboard = analytics_service.get_dashboard(self.admin, DashboardFilters())

        assert dashboard["organizationId"] == self.org.id
        assert dashboard["totalSurveys"] == 2
        assert dashboard["activeSurveys"] == 1
        assert dashboard["totalResponses"] == 3
        assert dashboard["totalMembers"] == 3
        # 2 distinct member responses / (2 surveys * 3 members)
        assert dashboard["completionRate"] == 33.3
        assert dashboard["averageCompletionTime"] == 90.0
        # 2 distinct respondents / 3 members
        assert dashboard["participationRate"] == 66.7
        assert dashboard["questionTypeDistribution"] == {"scale": 2}

    def test_breakdowns(self):
        dashboard = analytics_service.get_dashboard(self.admin, DashboardFilters())

        assert dashboard["departmentBreakdown"] == {
            "IT": 1,
            "Sales": 2,
            "Unassigned": 0,
        }
        assert dashboard["responsesByMonth"] == [
            {"month": "Jan 2026", "responses": 2},
            {"month": "Feb 2026", "responses": 1},
        ]
        performance = {p["title"]: p for p in dashboard["surveyPerformance"]}
        assert performance["Active survey"]["responses"] == 3
        assert performance["Active survey"]["completionRate"] == 66.7
        assert performance["Draft survey"]["responses"] == 0
        assert performance["Draft survey"]["averageCompletionTime"] == 0.0

    def test_date_range_filter(self):
        filters = DashboardFilters.from_body(
            {"dateRange": {"start": "2026-02-01", "end": "2026-02-28"}}
        )
        dashboard = analytics_service.get_dashboard(self.admin, filters)
        assert dashboard["totalResponses"] == 1

    def test_department_filter(self):
        filters = DashboardFilters(department="Sales")
        dashboard = analytics_service.get_dashboard(self.admin, filters)

        assert dashboard["totalMembers"] == 1
        assert dashboard["totalResponses"] == 2
        assert dashboard["participationRate"] == 100.0

    def test_survey_filter(self):
        filters = DashboardFilters(survey_ids=[self.draft.id])
        dashboard = analytics_service.get_dashboard(self.admin, filters)

        assert dashboard["totalSurveys"] == 1
        assert dashboard["totalResponses"] == 0
        assert dashboard["completionRate"] == 0.0

    def test_outsider_is_denied(self):
        filters = DashboardFilters(organization_id=self.org.id)
        with pytest.raises(PermissionDeniedError):
            analytics_service.get_dashboard(self.stranger, filters)

    def test_organization_is_required(self):
        with pytest.raises(ValidationError):
            analytics_service.get_dashboard(self.stranger, DashboardFilters())

    def test_summary_rows(self):
        dashboard = analytics_service.get_dashboard(self.admin, DashboardFilters())
        rows = dict(analytics_service.summary_rows(dashboard))
        assert rows["Total Responses"] == 3
        assert rows["Participation Rate (%)"] == 66.7

    def test_repeat_and_outside_responses_keep_rates_in_range(self):
        root = create_user("root@example.com", role="system_admin")
        for respondent in (self.admin, self.other, self.other, root, self.stranger):
            self.db.add(
                SurveyResponse(
                    survey_id=self.draft.id,
                    respondent_id=respondent.id,
                    answers={"q1": 5},
                    submitted_at=datetime(2026, 3, 1),
                )
            )
        self.db.commit()

        dashboard = analytics_service.get_dashboard(self.admin, DashboardFilters())

        assert dashboard["totalResponses"] == 8
        # (2 active + 2 draft) distinct member responses / (2 surveys * 3 members)
        assert dashboard["completionRate"] == 66.7
        assert dashboard["participationRate"] == 100.0
        performance = {p["title"]: p for p in dashboard["surveyPerformance"]}
        assert performance["Draft survey"]["completionRate"] == 66.7
        for rate in [dashboard["completionRate"], dashboard["participationRate"]]:
            assert 0 <= rate <= 100
