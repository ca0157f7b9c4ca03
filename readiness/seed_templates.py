"""
Seed data — the default AI Readiness Assessment template.

Registers a ``flask seed-templates`` CLI command that creates the
published system template used as the starting point for most
organizations.  Running it again is a no-op once the template exists.

Usage::

    flask seed-templates
"""

import click
from flask.cli import with_appcontext

from readiness.extensions import db
from readiness.models.survey import SurveyTemplate, SurveyTemplateQuestion
from readiness.utils import utcnow

DEFAULT_TEMPLATE_TITLE = "AI Readiness Assessment"

_DEFAULT_TEMPLATE = {
    "title": DEFAULT_TEMPLATE_TITLE,
    "description": (
        "Comprehensive assessment to evaluate your organization's readiness "
        "for AI adoption using the Jobs-to-be-Done framework."
    ),
    "category": "ai_readiness",
    "estimated_duration": 20,
    "difficulty_level": 2,
    "tags": ["ai", "readiness", "jtbd"],
    "introduction_text": (
        "Please answer each question thoughtfully. Your responses help us "
        "understand your organization's current state and readiness for AI."
    ),
    "conclusion_text": "Thank you for completing the assessment.",
}

# (question text, type, JTBD category or None, help text)
_DEFAULT_QUESTIONS = [
    (
        "Tell us about your role and organization. What is your position, "
        "and what type of organization do you work for?",
        "textarea",
        None,
        "This helps us understand your perspective and organizational context.",
    ),
    (
        "What are the biggest operational challenges or inefficiencies your "
        "organization faces that you believe AI could help solve?",
        "textarea",
        "push_force",
        "Current problems and frustrations that motivate change.",
    ),
    (
        "How much time or resources does your organization spend on tasks "
        "that could be automated or enhanced with AI?",
        "textarea",
        "push_force",
        "Quantifying waste and inefficiency in current processes.",
    ),
    (
        "What specific benefits or improvements do you hope AI will bring "
        "to your organization?",
        "textarea",
        "pull_force",
        "Desired benefits and positive outcomes from AI adoption.",
    ),
    (
        "Have you seen similar organizations successfully implement AI? "
        "What outcomes did they achieve that you find compelling?",
        "textarea",
        "pull_force",
        "Inspiration from successful AI implementations by others.",
    ),
    (
        "Imagine your organization in 3 years with AI successfully "
        "integrated. How are things different?",
        "textarea",
        "pull_force",
        "Vision of the transformed future state with AI.",
    ),
    (
        "What existing systems, processes, or investments would be difficult "
        "or expensive to change when implementing AI?",
        "textarea",
        "habit_force",
        "Existing investments and systems that resist change.",
    ),
    (
        "What aspects of your current operations are working well and should "
        "be preserved during any AI implementation?",
        "textarea",
        "habit_force",
        "Successful current practices worth preserving.",
    ),
    (
        "What concerns or fears do you have about implementing AI in your "
        "organization?",
        "textarea",
        "anxiety_force",
        "Fears and concerns about AI implementation.",
    ),
    (
        "What could go wrong with an AI implementation in your organization?",
        "textarea",
        "anxiety_force",
        "Worst-case scenarios about AI.",
    ),
    (
        "How would you rate your organization's technical infrastructure, "
        "data quality, and team capabilities for AI implementation?",
        "scale",
        "anxiety_force",
        "1 = not ready at all, 5 = fully ready.",
    ),
    (
        "What would be your ideal next steps for AI exploration or "
        "implementation? What timeline feels realistic?",
        "textarea",
        "pull_force",
        "Preferred implementation approach and timeline.",
    ),
]


def seed_default_template() -> tuple[SurveyTemplate, bool]:
    """
    Create the default template if it does not exist.

    Returns:
        ``(template, created)``.
    """
    existing = SurveyTemplate.query.filter_by(
        title=DEFAULT_TEMPLATE_TITLE, is_system_template=True
    ).first()
    if existing is not None:
        return existing, False

    now = utcnow()
    template = SurveyTemplate(
        status="published",
        visibility="public",
        is_system_template=True,
        settings={"allowAnonymous": False},
        published_at=now,
        **_DEFAULT_TEMPLATE,
    )
    for index, (text, question_type, category, help_text) in enumerate(
        _DEFAULT_QUESTIONS
    ):
        question = SurveyTemplateQuestion(
            question_text=text,
            question_type=question_type,
            help_text=help_text,
            jtbd_category=category,
            order_index=index,
            required=True,
        )
        if question_type == "scale":
            question.validation_rules = {"min": 1, "max": 5}
        template.questions.append(question)

    db.session.add(template)
    db.session.commit()
    return template, True


@click.command("seed-templates")
@with_appcontext
def seed_templates_command():
    """Load the default AI Readiness Assessment template."""
    template, created = seed_default_template()
    if created:
        click.secho(
            f"  ✓ Created '{template.title}' (id={template.id}) "
            f"with {len(template.questions)} questions.",
            fg="green",
        )
    else:
        click.secho(
            f"  ✓ '{template.title}' already exists (id={template.id}).",
            fg="green",
        )


def register_seed_commands(app):
    """Register seed-related CLI commands with the Flask application."""
    app.cli.add_command(seed_templates_command)
