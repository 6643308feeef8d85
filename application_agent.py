# application_agent.py
"""
Bursary application intake.

START -> AWAIT_FULL_NAME -> AWAIT_EMAIL -> AWAIT_PROVINCE -> AWAIT_CITIZENSHIP
-> AWAIT_ACADEMIC_LEVEL -> AWAIT_FIELD_OF_STUDY -> AWAIT_ACADEMIC_AVERAGE
-> AWAIT_HOUSEHOLD_INCOME -> AWAIT_MOTIVATION -> AWAIT_REVIEW -> COMPLETE

Backward moves are limited to two: a non-citizen exits to START with status
"ineligible", and "edit" at review goes back to AWAIT_FULL_NAME. Scoring,
matching and the reference number are computed on the way into review.
Submission is persisted before the funder email goes out, so a retry never
submits twice; at worst it finds the application already complete.
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from agent_protocol import AgentName, LOAD_ERROR_TEXT, SAVE_ERROR_TEXT, Turn, TurnFailed
from bursary_matching import (
    calculate_score,
    format_matches,
    format_rands,
    generate_ref,
    income_bracket_label,
    match_bursaries,
    performance_badge,
)
from db_io import ApplicationStore, BursaryApplication, StoreError, iso_timestamp
from email_service import ResendEmailClient
from stage_machine import StageMachine, StageResult, is_yes, numbered_menu, pick

logger = logging.getLogger("application_agent")


class ApplicationStep(str, Enum):
    START = "START"
    AWAIT_FULL_NAME = "AWAIT_FULL_NAME"
    AWAIT_EMAIL = "AWAIT_EMAIL"
    AWAIT_PROVINCE = "AWAIT_PROVINCE"
    AWAIT_CITIZENSHIP = "AWAIT_CITIZENSHIP"
    AWAIT_ACADEMIC_LEVEL = "AWAIT_ACADEMIC_LEVEL"
    AWAIT_FIELD_OF_STUDY = "AWAIT_FIELD_OF_STUDY"
    AWAIT_ACADEMIC_AVERAGE = "AWAIT_ACADEMIC_AVERAGE"
    AWAIT_HOUSEHOLD_INCOME = "AWAIT_HOUSEHOLD_INCOME"
    AWAIT_MOTIVATION = "AWAIT_MOTIVATION"
    AWAIT_REVIEW = "AWAIT_REVIEW"
    COMPLETE = "COMPLETE"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ApplicationStep":
        try:
            return cls(value)
        except ValueError:
            logger.warning("Unknown application step %r; restarting", value)
            return cls.START


PROVINCES = {"1": "Gauteng", "2": "Western Cape", "3": "KwaZulu-Natal", "4": "Eastern Cape", "5": "Other"}
ACADEMIC_LEVELS = {"1": "high_school", "2": "university", "3": "postgrad"}
FIELDS_OF_STUDY = {"1": "STEM", "2": "Commerce", "3": "Health Sciences", "4": "Humanities", "5": "Other"}
INCOME_BRACKETS = {"1": 200000, "2": 475000, "3": 700000}
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PROMPTS = {
    ApplicationStep.AWAIT_FULL_NAME: "What's your full name?",
    ApplicationStep.AWAIT_EMAIL: "What's your email address?",
    ApplicationStep.AWAIT_PROVINCE: "Which province do you live in?\n\n" + numbered_menu(list(PROVINCES.values())),
    ApplicationStep.AWAIT_CITIZENSHIP: "Are you a South African citizen or permanent resident?\n\n" + numbered_menu(["Yes", "No"]),
    ApplicationStep.AWAIT_ACADEMIC_LEVEL: "What's your current academic level?\n\n" + numbered_menu(["High school", "University", "Postgrad"]),
    ApplicationStep.AWAIT_FIELD_OF_STUDY: (
        "What is your intended field of study?\n\n"
        + numbered_menu(["STEM", "Commerce/Business", "Health Sciences", "Humanities", "Other"])
    ),
    ApplicationStep.AWAIT_ACADEMIC_AVERAGE: "What is your academic average?\n(Please enter a percentage, e.g., 75)",
    ApplicationStep.AWAIT_HOUSEHOLD_INCOME: (
        "What is your total household annual income?\n\n" + numbered_menu(["R0 - R350k", "R350k - R600k", "Above R600k"])
    ),
    ApplicationStep.AWAIT_MOTIVATION: "Lastly, why do you need this bursary?\n(1-2 sentences is fine!)",
}
REVIEW_CHOICES = "Ready to submit?\n\n" + numbered_menu(["Submit Application ✅", "Edit Details ✏️", "Save as Draft 💾"])

INVALID_EMAIL = "That doesn't look like a valid email. Please try again (e.g., student@gmail.com)"
INVALID_AVERAGE = "Please enter a valid percentage number (e.g., 75)"
INELIGIBLE = (
    "😔 Most SA bursaries require citizenship or permanent residency.\n\n"
    "Try:\n• International scholarships\n• Study loans\n• Part-time work\n\n"
    "If you'd like, we can explore career guidance instead?"
)
EDIT = "No problem, let's edit your details. " + PROMPTS[ApplicationStep.AWAIT_FULL_NAME]
DRAFT_SAVED = "Your application has been saved as a draft! ✅\n\nYou can continue anytime by saying 'continue application'."
CANCELLED = "Your bursary application has been cancelled. You can start a new one anytime by saying 'apply for bursary'."
NO_APPLICATION = "You don't have an open bursary application. Say 'apply for bursary' to start one!"
MISSING_FIELDS = "Some details are missing ({fields}), so let's go through them again. " + PROMPTS[ApplicationStep.AWAIT_FULL_NAME]
ALREADY_COMPLETE = (
    "✅ Your application (Ref: {ref}) is already complete!\n\n"
    "You'll hear back in 2-3 weeks.\n\nNeed anything else? I can also help with Career Guidance."
)
SUBMITTED_WITH_EMAIL = (
    "🎉 Application submitted successfully!\n\nReference: {ref}\n📧 Email sent to funders\n📬 Copy sent to: {email}\n\n"
    "Matched Bursaries:\n{matches}\n\n📧 Check your email for confirmation!"
)
SUBMITTED_EMAIL_PENDING = "🎉 Application submitted!\n\nReference: {ref}\n\n⚠️ Email delivery pending - we'll send it shortly."


class SubmittedApplication(BaseModel):
    """Fields that must be present before an application can be submitted."""

    full_name: str = Field(min_length=1)
    email: str = Field(pattern=EMAIL_RE.pattern)
    province: str
    is_sa_citizen: bool
    academic_level: str
    field_of_study: str
    academic_average: float = Field(ge=0, le=100)
    household_income: int = Field(ge=0)
    motivation_text: str = Field(min_length=1)


def missing_fields(app: BursaryApplication) -> List[str]:
    try:
        SubmittedApplication(**{name: getattr(app, name) for name in SubmittedApplication.model_fields})
    except ValidationError as exc:
        return sorted({str(err["loc"][0]) for err in exc.errors()})
    return []


# ---------------------------------------------------------------------------
# Stage handlers
# ---------------------------------------------------------------------------

def handle_start(text: str, app: BursaryApplication) -> StageResult:
    reply = "Let's start your bursary application! 🎯\n\nFirst, " + PROMPTS[ApplicationStep.AWAIT_FULL_NAME].lower()
    return StageResult(reply, app, ApplicationStep.AWAIT_FULL_NAME)

def handle_full_name(text: str, app: BursaryApplication) -> StageResult:
    name = " ".join(text.split())[:120]
    if not name:
        return StageResult(PROMPTS[ApplicationStep.AWAIT_FULL_NAME], app, ApplicationStep.AWAIT_FULL_NAME)
    app.full_name = name
    reply = f"Thanks {name.split(' ')[0]}! ✅\n\n" + PROMPTS[ApplicationStep.AWAIT_EMAIL]
    return StageResult(reply, app, ApplicationStep.AWAIT_EMAIL)

def handle_email(text: str, app: BursaryApplication) -> StageResult:
    email = text.strip().lower()
    if not EMAIL_RE.match(email):
        return StageResult(INVALID_EMAIL, app, ApplicationStep.AWAIT_EMAIL)
    app.email = email
    app.phone_number = app.wa_id
    return StageResult("Perfect! ✅\n\n" + PROMPTS[ApplicationStep.AWAIT_PROVINCE], app, ApplicationStep.AWAIT_PROVINCE)

def handle_province(text: str, app: BursaryApplication) -> StageResult:
    app.province = pick(PROVINCES, text, "Other")
    return StageResult("Got it. ✅\n\n" + PROMPTS[ApplicationStep.AWAIT_CITIZENSHIP], app, ApplicationStep.AWAIT_CITIZENSHIP)

def handle_citizenship(text: str, app: BursaryApplication) -> StageResult:
    app.is_sa_citizen = is_yes(text)
    if not app.is_sa_citizen:
        app.status = "ineligible"
        return StageResult(INELIGIBLE, app, ApplicationStep.START, events=("ineligible",))
    return StageResult("Great! ✅\n\n" + PROMPTS[ApplicationStep.AWAIT_ACADEMIC_LEVEL], app, ApplicationStep.AWAIT_ACADEMIC_LEVEL)

def handle_academic_level(text: str, app: BursaryApplication) -> StageResult:
    app.academic_level = pick(ACADEMIC_LEVELS, text, "high_school")
    return StageResult("Okay. ✅\n\n" + PROMPTS[ApplicationStep.AWAIT_FIELD_OF_STUDY], app, ApplicationStep.AWAIT_FIELD_OF_STUDY)

def handle_field_of_study(text: str, app: BursaryApplication) -> StageResult:
    app.field_of_study = pick(FIELDS_OF_STUDY, text, "Other")
    return StageResult("Understood. ✅\n\n" + PROMPTS[ApplicationStep.AWAIT_ACADEMIC_AVERAGE], app, ApplicationStep.AWAIT_ACADEMIC_AVERAGE)

def handle_academic_average(text: str, app: BursaryApplication) -> StageResult:
    try:
        average = float(text.strip().rstrip("%"))
    except ValueError:
        return StageResult(INVALID_AVERAGE, app, ApplicationStep.AWAIT_ACADEMIC_AVERAGE)
    if not 0 <= average <= 100:
        return StageResult(INVALID_AVERAGE, app, ApplicationStep.AWAIT_ACADEMIC_AVERAGE)
    app.academic_average = average
    return StageResult("Great. ✅\n\n" + PROMPTS[ApplicationStep.AWAIT_HOUSEHOLD_INCOME], app, ApplicationStep.AWAIT_HOUSEHOLD_INCOME)

def handle_household_income(text: str, app: BursaryApplication) -> StageResult:
    app.household_income = INCOME_BRACKETS.get(text.strip(), INCOME_BRACKETS["1"])
    return StageResult("Almost done! ✅\n\n" + PROMPTS[ApplicationStep.AWAIT_MOTIVATION], app, ApplicationStep.AWAIT_MOTIVATION)

def handle_motivation(text: str, app: BursaryApplication) -> StageResult:
    motivation = text.strip()
    if not motivation:
        return StageResult(PROMPTS[ApplicationStep.AWAIT_MOTIVATION], app, ApplicationStep.AWAIT_MOTIVATION)
    app.motivation_text = motivation
    app.eligibility_score = calculate_score(app)
    app.matched_bursaries = match_bursaries(app)
    if not app.application_ref:
        app.application_ref = generate_ref(app)
    return StageResult(review_summary(app), app, ApplicationStep.AWAIT_REVIEW)

def handle_review(text: str, app: BursaryApplication) -> StageResult:
    choice = text.strip().lower()
    if choice == "1" or "submit" in choice:
        missing = missing_fields(app)
        if missing:
            return StageResult(MISSING_FIELDS.format(fields=", ".join(missing)), app, ApplicationStep.AWAIT_FULL_NAME)
        app.status = "submitted"
        app.submitted_at = iso_timestamp()
        if not app.application_ref:
            app.application_ref = generate_ref(app)
        # final text depends on the email outcome; the agent fills it in
        return StageResult("", app, ApplicationStep.COMPLETE, events=("submitted",))
    if choice == "2" or "edit" in choice:
        return StageResult(EDIT, app, ApplicationStep.AWAIT_FULL_NAME)
    if choice == "3" or "save" in choice:
        return StageResult(DRAFT_SAVED, app, ApplicationStep.AWAIT_REVIEW, events=("draft_saved",))
    return StageResult("Please choose:\n\n" + numbered_menu(["Submit ✅", "Edit ✏️", "Save Draft 💾"]), app, ApplicationStep.AWAIT_REVIEW)

def handle_complete(text: str, app: BursaryApplication) -> StageResult:
    return StageResult(ALREADY_COMPLETE.format(ref=app.application_ref), app, ApplicationStep.COMPLETE)


APPLICATION_MACHINE = StageMachine(
    order=list(ApplicationStep),
    handlers={
        ApplicationStep.START: handle_start,
        ApplicationStep.AWAIT_FULL_NAME: handle_full_name,
        ApplicationStep.AWAIT_EMAIL: handle_email,
        ApplicationStep.AWAIT_PROVINCE: handle_province,
        ApplicationStep.AWAIT_CITIZENSHIP: handle_citizenship,
        ApplicationStep.AWAIT_ACADEMIC_LEVEL: handle_academic_level,
        ApplicationStep.AWAIT_FIELD_OF_STUDY: handle_field_of_study,
        ApplicationStep.AWAIT_ACADEMIC_AVERAGE: handle_academic_average,
        ApplicationStep.AWAIT_HOUSEHOLD_INCOME: handle_household_income,
        ApplicationStep.AWAIT_MOTIVATION: handle_motivation,
        ApplicationStep.AWAIT_REVIEW: handle_review,
        ApplicationStep.COMPLETE: handle_complete,
    },
    rewinds=[
        (ApplicationStep.AWAIT_CITIZENSHIP, ApplicationStep.START),
        (ApplicationStep.AWAIT_REVIEW, ApplicationStep.AWAIT_FULL_NAME),
    ],
)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

ACADEMIC_LEVEL_LABELS = {"high_school": "High School", "university": "University", "postgrad": "Postgraduate"}

def review_summary(app: BursaryApplication) -> str:
    motivation = app.motivation_text or ""
    if len(motivation) > 80:
        motivation = motivation[:80] + "..."
    average = f"{app.academic_average:g}%" if app.academic_average is not None else "?"
    return (
        "━━━━━━━━━━━━━━━━━━━━━\n📋 REVIEW YOUR APPLICATION\n━━━━━━━━━━━━━━━━━━━━━\n\n"
        f"🔖 Ref: {app.application_ref}\n"
        f"👤 {app.full_name}\n📧 {app.email}\n🗺️ {app.province}\n"
        f"🎓 {app.field_of_study} ({ACADEMIC_LEVEL_LABELS.get(app.academic_level, app.academic_level)})\n"
        f"📊 {average} average {performance_badge(app.academic_average)}\n"
        f"💰 {format_rands(app.household_income)}/year ({income_bracket_label(app.household_income)})\n\n"
        f'✍️ Motivation:\n"{motivation}"\n\n'
        f"🎯 Match Score: {app.eligibility_score}/100\n\n"
        f"🎁 Matched Bursaries:\n{format_matches(app.matched_bursaries)}\n\n"
        "━━━━━━━━━━━━━━━━━━━━━\n\n" + REVIEW_CHOICES
    )

def status_summary(app: BursaryApplication) -> str:
    if app.status == "submitted":
        return f"Your application (Ref: {app.application_ref}) is submitted! ✅\n\nMatched bursaries:\n{format_matches(app.matched_bursaries)}"
    step = ApplicationStep.parse(app.current_step)
    progress = round(APPLICATION_MACHINE.position(step) / APPLICATION_MACHINE.position(ApplicationStep.AWAIT_REVIEW) * 100)
    return f"Your application is {min(progress, 100)}% complete.\n\nSay 'continue application' to pick up where you left off."


class ApplicationAgent:
    name = AgentName.APPLICATION

    def __init__(self, applications: ApplicationStore, email_client: ResendEmailClient):
        self.applications = applications
        self.email_client = email_client
        self.machine = APPLICATION_MACHINE

    def process(self, turn: Turn) -> str:
        state = turn.session.state
        application = self._load(turn)
        command = turn.text.strip().lower()

        if "check status" in command:
            return status_summary(application) if application else NO_APPLICATION
        if "cancel application" in command:
            if application is None:
                return NO_APPLICATION
            if application.status == "submitted":
                return ALREADY_COMPLETE.format(ref=application.application_ref)
            application.status = "cancelled"
            self._save(application, turn)
            state.active_agent = None
            return CANCELLED
        if application is None:
            application = self._create(turn)

        step = ApplicationStep.parse(application.current_step)
        resuming = state.active_agent != self.name.value and step not in (ApplicationStep.START, ApplicationStep.COMPLETE)
        if resuming:
            state.active_agent = self.name.value
            return self._resume_prompt(application, step)

        result = self.machine.handle(step, turn.text, application)
        updated: BursaryApplication = result.record
        updated.current_step = result.next_stage.value
        if not self.machine.is_terminal(step):
            self._save(updated, turn)

        ended = updated.status != "draft" or "draft_saved" in result.events
        state.active_agent = None if ended else self.name.value
        if "submitted" in result.events:
            return self._deliver(updated)
        return result.text

    def _load(self, turn: Turn) -> Optional[BursaryApplication]:
        try:
            return self.applications.get_current(turn.wa_id)
        except StoreError as exc:
            logger.exception("Failed to load application for %s", turn.wa_id)
            raise TurnFailed(LOAD_ERROR_TEXT) from exc

    def _create(self, turn: Turn) -> BursaryApplication:
        try:
            return self.applications.create(BursaryApplication(wa_id=turn.wa_id, current_step=ApplicationStep.START.value))
        except StoreError as exc:
            logger.exception("Failed to create application for %s", turn.wa_id)
            raise TurnFailed(LOAD_ERROR_TEXT) from exc

    def _save(self, application: BursaryApplication, turn: Turn) -> None:
        try:
            self.applications.save(application)
        except StoreError as exc:
            logger.exception("Failed to save application for %s", turn.wa_id)
            raise TurnFailed(SAVE_ERROR_TEXT) from exc

    def _resume_prompt(self, app: BursaryApplication, step: ApplicationStep) -> str:
        if step == ApplicationStep.AWAIT_REVIEW:
            return "Welcome back! 👋 Here's your application so far.\n\n" + review_summary(app)
        return "Welcome back! 👋 Let's continue your bursary application.\n\n" + PROMPTS[step]

    def _deliver(self, app: BursaryApplication) -> str:
        result = self.email_client.send_application(app)
        app.email_status = "sent" if result.success else "pending"
        try:
            self.applications.save(app)
        except StoreError:
            # the submission itself is already committed
            logger.exception("Failed to record email status for %s", app.application_ref)
        if result.success:
            return SUBMITTED_WITH_EMAIL.format(ref=app.application_ref, email=app.email, matches=format_matches(app.matched_bursaries))
        return SUBMITTED_EMAIL_PENDING.format(ref=app.application_ref)
