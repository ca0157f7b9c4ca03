"""
Tests for survey_service: creating surveys from templates, status
transitions, response submission and export rows.
"""

import pytest

from conftest import create_organization, create_user
from readiness.errors import NotFoundError, PermissionDeniedError, ValidationError
from readiness.models.survey import SurveyResponse
from readiness.seed_templates import seed_default_template
from readiness.services import survey_service

QUESTIONS = [
    {"questionText": "Team name", "questionType": "text", "required": False},
    {"questionText": "Readiness score", "questionType": "scale"},
    {"questionText": "Tools in use", "questionType": "multiple_choice"},
]


class SurveyTestBase:
    """An organization with an admin, an analyst, a plain user and a stranger."""

    @pytest.fixture(autouse=True)
    def _setup(self, db_session):
        self.db = db_session
        self.org = create_organization()
        self.admin = create_user(
            "admin@example.com",
            role="org_admin",
            organization_id=self.org.id,
            member_role="owner",
        )
        self.analyst = create_user(
            "analyst@example.com", role="analyst", organization_id=self.org.id
        )
        self.member = create_user("member@example.com", organization_id=self.org.id)
        self.stranger = create_user("stranger@example.com")

    def _survey(self, user=None, **overrides):
        data = {"title": "Q3 pulse", "questions": QUESTIONS}
        data.update(overrides)
        return survey_service.create_survey(user or self.admin, data)

    def _active_survey(self, **overrides):
        survey = self._survey(**overrides)
        return survey_service.change_status(self.admin, survey.id, "active")


class TestCreateSurvey(SurveyTestBase):
    def test_questions_get_string_ids(self):
        survey = self._survey()

        assert survey.status == "draft"
        assert survey.organization_id == self.org.id
        assert [q["id"] for q in survey.questions] == ["q1", "q2", "q3"]
        assert survey.questions[0]["required"] is False
        assert survey.questions[1]["required"] is True

    def test_create_from_template_copies_questions(self):
        template, _ = seed_default_template()
        survey = survey_service.create_survey(
            self.admin, {"templateId": template.id}
        )

        assert survey.title == template.title
        assert survey.template_id == template.id
        assert len(survey.questions) == len(template.questions)
        assert template.usage_count == 1

    def test_duplicate_question_ids_are_rejected(self):
        questions = [
            {"id": "a", "questionText": "One", "questionType": "text"},
            {"id": "a", "questionText": "Two", "questionType": "text"},
        ]
        with pytest.raises(ValidationError):
            self._survey(questions=questions)

    def test_outsider_cannot_create_in_organization(self):
        with pytest.raises(PermissionDeniedError):
            self._survey(user=self.stranger, organizationId=self.org.id)

    def test_organization_is_required(self):
        with pytest.raises(ValidationError):
            survey_service.create_survey(self.stranger, {"title": "Nowhere"})


class TestStatusTransitions(SurveyTestBase):
    """draft -> active -> paused/closed -> archived."""

    def test_full_lifecycle(self):
        survey = self._survey()
        for status in ("active", "paused", "active", "closed", "archived"):
            survey_service.change_status(self.admin, survey.id, status)
            assert survey.status == status

        assert survey.published_at is not None
        assert survey.closed_at is not None

    @pytest.mark.parametrize(
        "path",
        [("closed",), ("active", "draft"), ("active", "closed", "active")],
    )
    def test_disallowed_transitions(self, path):
        survey = self._survey()
        *allowed, rejected = path
        for status in allowed:
            survey_service.change_status(self.admin, survey.id, status)
        with pytest.raises(ValidationError):
            survey_service.change_status(self.admin, survey.id, rejected)

    def test_cannot_activate_without_questions(self):
        survey = self._survey(questions=[])
        with pytest.raises(ValidationError):
            survey_service.change_status(self.admin, survey.id, "active")

    def test_questions_locked_after_draft(self):
        survey = self._active_survey()
        with pytest.raises(ValidationError):
            survey_service.update_survey(
                self.admin, survey.id, {"questions": QUESTIONS[:1]}
            )

    def test_analyst_cannot_change_status(self):
        survey = self._survey()
        with pytest.raises(PermissionDeniedError):
            survey_service.change_status(self.analyst, survey.id, "active")


class TestResponses(SurveyTestBase):
    """Submitting and listing responses."""

    def _answers(self, **overrides):
        answers = {"q2": 4, "q3": ["ChatGPT", "Copilot"]}
        answers.update(overrides)
        return answers

    def test_member_submits_response(self):
        survey = self._active_survey()
        response = survey_service.submit_response(
            self.member,
            survey.id,
            {"answers": self._answers(), "completionTime": 95},
        )

        assert response.respondent_id == self.member.id
        assert response.answers["q2"] == 4
        assert response.completion_time == 95

    def test_required_answers_are_enforced(self):
        survey = self._active_survey()
        with pytest.raises(ValidationError) as excinfo:
            survey_service.submit_response(
                self.member, survey.id, {"answers": {"q2": 3}}
            )
        assert excinfo.value.details == {"missing": ["q3"]}

    def test_unknown_question_ids_are_rejected(self):
        survey = self._active_survey()
        with pytest.raises(ValidationError):
            survey_service.submit_response(
                self.member, survey.id, {"answers": self._answers(q9="?")}
            )

    def test_draft_survey_rejects_responses(self):
        survey = self._survey()
        with pytest.raises(ValidationError):
            survey_service.submit_response(
                self.member, survey.id, {"answers": self._answers()}
            )

    def test_anonymous_response_requires_opt_in(self):
        closed = self._active_survey()
        with pytest.raises(PermissionDeniedError):
            survey_service.submit_response(
                None, closed.id, {"answers": self._answers()}
            )

        open_survey = self._active_survey(allowAnonymous=True)
        response = survey_service.submit_response(
            None, open_survey.id, {"answers": self._answers()}
        )
        assert response.respondent_id is None

    def test_stranger_cannot_respond(self):
        survey = self._active_survey()
        with pytest.raises(PermissionDeniedError):
            survey_service.submit_response(
                self.stranger, survey.id, {"answers": self._answers()}
            )

    def test_responses_visible_to_analyst_not_member(self):
        survey = self._active_survey()
        survey_service.submit_response(
            self.member, survey.id, {"answers": self._answers()}
        )

        result = survey_service.list_responses(self.analyst, survey.id)
        assert result.total == 1
        with pytest.raises(PermissionDeniedError):
            survey_service.list_responses(self.member, survey.id)

    def test_delete_survey_removes_responses(self):
        survey = self._active_survey()
        survey_service.submit_response(
            self.member, survey.id, {"answers": self._answers()}
        )
        survey_service.delete_survey(self.admin, survey.id)

        assert SurveyResponse.query.count() == 0
        with pytest.raises(NotFoundError):
            survey_service.get_survey(self.admin, survey.id)


class TestExportRows(SurveyTestBase):
    def test_rows_follow_question_columns(self):
        survey = self._active_survey()
        survey_service.submit_response(
            self.member,
            survey.id,
            {"answers": {"q1": "Platform", "q2": 5, "q3": ["A", "B"]}},
        )
        survey_service.submit_response(
            self.admin,
            survey.id,
            {"answers": {"q2": 2, "q3": ["C"]}},
        )

        _, headers, rows = survey_service.get_export_rows(self.admin, survey.id)

        assert headers[4:] == ["Team name", "Readiness score", "Tools in use"]
        assert rows[0][2] == "member@example.com"
        assert rows[0][4:] == ["Platform", "5", "A; B"]
        assert rows[1][4:] == ["", "2", "C"]
