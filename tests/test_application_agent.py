import re

import pytest

from agent_protocol import SAVE_ERROR_TEXT, Turn, TurnFailed
from application_agent import (
    CANCELLED,
    DRAFT_SAVED,
    INELIGIBLE,
    INVALID_AVERAGE,
    INVALID_EMAIL,
    NO_APPLICATION,
    ApplicationAgent,
    ApplicationStep,
    handle_complete,
    missing_fields,
)
from conftest import StubEmailClient
from db_io import BursaryApplication, Session

WA_ID = "27820000001"

ANSWERS = [
    ("Lerato Mokoena", ApplicationStep.AWAIT_EMAIL),
    ("Lerato@Example.com", ApplicationStep.AWAIT_PROVINCE),
    ("1", ApplicationStep.AWAIT_CITIZENSHIP),
    ("yes", ApplicationStep.AWAIT_ACADEMIC_LEVEL),
    ("2", ApplicationStep.AWAIT_FIELD_OF_STUDY),
    ("1", ApplicationStep.AWAIT_ACADEMIC_AVERAGE),
    ("78", ApplicationStep.AWAIT_HOUSEHOLD_INCOME),
    ("1", ApplicationStep.AWAIT_MOTIVATION),
    ("I want to study engineering but my family cannot afford fees.", ApplicationStep.AWAIT_REVIEW),
]


class Conversation:
    def __init__(self, applications, email_client):
        self.agent = ApplicationAgent(applications, email_client)
        self.applications = applications
        self.session = Session(wa_id=WA_ID)

    def send(self, text):
        return self.agent.process(Turn(wa_id=WA_ID, text=text, session=self.session, profile=None))

    @property
    def current(self):
        return self.applications.get_current(WA_ID)


@pytest.fixture
def convo(applications, email_client):
    return Conversation(applications, email_client)


def _fill_to_review(convo):
    convo.send("apply")
    for text, expected in ANSWERS:
        convo.send(text)
        assert convo.current.current_step == expected.value


def test_start_creates_draft_and_asks_name(convo):
    reply = convo.send("I want a bursary")
    assert "full name" in reply
    assert convo.current.status == "draft"
    assert convo.current.current_step == ApplicationStep.AWAIT_FULL_NAME.value
    assert convo.session.state.active_agent == "application"


def test_invalid_average_reprompts_without_advancing(convo):
    convo.send("apply")
    for text, _ in ANSWERS[:6]:
        convo.send(text)
    assert convo.current.current_step == ApplicationStep.AWAIT_ACADEMIC_AVERAGE.value
    assert convo.send("abc") == INVALID_AVERAGE
    assert convo.send("101") == INVALID_AVERAGE
    assert convo.current.current_step == ApplicationStep.AWAIT_ACADEMIC_AVERAGE.value
    assert convo.current.academic_average is None


def test_invalid_email_reprompts(convo):
    convo.send("apply")
    convo.send("Lerato Mokoena")
    assert convo.send("not-an-email") == INVALID_EMAIL
    assert convo.current.current_step == ApplicationStep.AWAIT_EMAIL.value


def test_review_summary_has_score_and_matches(convo):
    convo.send("apply")
    for text, _ in ANSWERS[:-1]:
        convo.send(text)
    reply = convo.send(ANSWERS[-1][0])
    app = convo.current
    assert app.eligibility_score == 100
    assert [m.name for m in app.matched_bursaries] == ["Siemens Bursary"]
    assert re.fullmatch(r"FME-LM-[0-9A-Z]+", app.application_ref)
    assert app.application_ref in reply
    assert "Ready to submit?" in reply
    assert app.email == "lerato@example.com"
    assert app.phone_number == WA_ID


def test_submit_sends_email_and_completes(convo, email_client):
    _fill_to_review(convo)
    ref = convo.current.application_ref
    reply = convo.send("1")

    app = convo.current
    assert app.status == "submitted"
    assert app.submitted_at is not None
    assert app.current_step == ApplicationStep.COMPLETE.value
    assert app.email_status == "sent"
    assert app.application_ref == ref
    assert len(email_client.sent) == 1
    assert ref in reply
    assert convo.session.state.active_agent is None


def test_complete_is_idempotent(convo, email_client):
    _fill_to_review(convo)
    convo.send("submit")
    before = convo.current
    first = convo.send("hello")
    second = convo.send("hello")
    assert first == second
    assert first.startswith("✅ Your application (Ref: ")
    after = convo.current
    assert after.application_ref == before.application_ref
    assert after.matched_bursaries == before.matched_bursaries
    assert len(email_client.sent) == 1


def test_complete_handler_does_not_mutate():
    app = BursaryApplication(wa_id=WA_ID, status="submitted", application_ref="FME-X-1")
    result = handle_complete("anything", app)
    assert result.record == app
    assert result.next_stage == ApplicationStep.COMPLETE


def test_email_failure_is_recorded_as_pending(applications):
    convo = Conversation(applications, StubEmailClient(success=False))
    _fill_to_review(convo)
    reply = convo.send("1")
    assert "Email delivery pending" in reply
    assert convo.current.status == "submitted"
    assert convo.current.email_status == "pending"


def test_non_citizen_exits_as_ineligible(convo, applications):
    convo.send("apply")
    for text, _ in ANSWERS[:3]:
        convo.send(text)
    assert convo.send("no") == INELIGIBLE
    assert convo.current is None
    assert convo.session.state.active_agent is None

    assert "full name" in convo.send("apply again")
    assert convo.current.status == "draft"


def test_edit_rewinds_to_full_name(convo):
    _fill_to_review(convo)
    reply = convo.send("2")
    assert "full name" in reply
    assert convo.current.current_step == ApplicationStep.AWAIT_FULL_NAME.value


def test_save_draft_releases_conversation_and_resumes(convo):
    _fill_to_review(convo)
    assert convo.send("3") == DRAFT_SAVED
    assert convo.session.state.active_agent is None
    assert convo.current.status == "draft"

    reply = convo.send("continue application")
    assert reply.startswith("Welcome back!")
    assert "Ready to submit?" in reply
    assert convo.session.state.active_agent == "application"


def test_cancel_application(convo):
    convo.send("apply")
    convo.send("Lerato Mokoena")
    assert convo.send("cancel application") == CANCELLED
    assert convo.current is None
    assert convo.session.state.active_agent is None


def test_check_status_reports_progress(convo):
    convo.send("apply")
    convo.send("Lerato Mokoena")
    reply = convo.send("check status")
    assert "% complete" in reply
    assert convo.current.current_step == ApplicationStep.AWAIT_EMAIL.value


def test_submit_with_missing_fields_rewinds(applications, convo):
    draft = applications.create(
        BursaryApplication(wa_id=WA_ID, current_step=ApplicationStep.AWAIT_REVIEW.value, full_name="Lerato Mokoena")
    )
    convo.session.state.active_agent = "application"
    reply = convo.send("1")
    assert "Some details are missing" in reply
    assert "email" in reply
    loaded = applications.get_current(WA_ID)
    assert loaded.id == draft.id
    assert loaded.status == "draft"
    assert loaded.current_step == ApplicationStep.AWAIT_FULL_NAME.value


def test_missing_fields_lists_absent_values():
    app = BursaryApplication(wa_id=WA_ID, full_name="A", email="a@b.co")
    missing = missing_fields(app)
    assert "full_name" not in missing
    assert "motivation_text" in missing
    assert "household_income" in missing


def test_save_failure_keeps_stage(convo, supabase):
    convo.send("apply")
    supabase.failing.add("update")
    with pytest.raises(TurnFailed) as exc:
        convo.send("Lerato Mokoena")
    assert exc.value.reply == SAVE_ERROR_TEXT
    supabase.failing.clear()
    assert convo.current.current_step == ApplicationStep.AWAIT_FULL_NAME.value
    assert convo.current.full_name is None


def test_cancel_after_submit_keeps_submission(convo, supabase, email_client):
    _fill_to_review(convo)
    convo.send("1")
    ref = convo.current.application_ref

    reply = convo.send("cancel application")

    assert reply.startswith("✅ Your application (Ref: ")
    rows = supabase.rows("bursary_applications")
    assert [row["status"] for row in rows] == ["submitted"]
    assert rows[0]["application_ref"] == ref
    assert len(email_client.sent) == 1


def test_commands_without_application_leave_no_rows(convo, supabase):
    assert convo.send("check status") == NO_APPLICATION
    assert convo.send("cancel application") == NO_APPLICATION
    assert supabase.rows("bursary_applications") == []
    assert convo.session.state.active_agent is None
