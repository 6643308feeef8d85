import pytest

from agent_protocol import LOAD_ERROR_TEXT, Turn, TurnFailed
from conftest import StubResponder
from conversation_agents import (
    CAREER_FALLBACK,
    SMALL_TALK_APOLOGY,
    WELCOME_MENU,
    CareerAgent,
    ConversationAgent,
    ProfileAgent,
)
from db_io import BursaryApplication, Session
from intent_analyzer import Intent

WA_ID = "27820000001"


def _turn(text, intent=Intent.UNKNOWN, history=None, profile=None):
    session = Session(wa_id=WA_ID, history=list(history or []))
    return Turn(wa_id=WA_ID, text=text, session=session, profile=profile, intent=intent)


def test_greeting_or_empty_history_gets_welcome_menu():
    responder = StubResponder(["should not be used"])
    agent = ConversationAgent(responder)
    assert agent.process(_turn("hi", Intent.GREETING, history=[{"role": "user", "content": "x"}])) == WELCOME_MENU
    assert agent.process(_turn("random")) == WELCOME_MENU
    assert responder.calls == []


def test_small_talk_uses_recent_history():
    responder = StubResponder(["Glad to hear it!"])
    history = [{"role": "user", "content": f"m{i}"} for i in range(10)]
    reply = ConversationAgent(responder).process(_turn("I'm good", history=history))
    assert reply == "Glad to hear it!"
    messages = responder.calls[0]["messages"]
    assert messages[0]["role"] == "system"
    assert [m["content"] for m in messages[1:-1]] == ["m4", "m5", "m6", "m7", "m8", "m9"]
    assert messages[-1] == {"role": "user", "content": "I'm good"}


def test_small_talk_failure_apologises():
    history = [{"role": "user", "content": "hello"}]
    assert ConversationAgent(StubResponder()).process(_turn("??", history=history)) == SMALL_TALK_APOLOGY


def test_career_agent_answers_or_falls_back():
    assert CareerAgent(StubResponder(["Try a SETA learnership."])).process(_turn("careers?")) == "Try a SETA learnership."
    assert CareerAgent(StubResponder(enabled=False)).process(_turn("careers?")) == CAREER_FALLBACK


def test_profile_agent_shows_profile_and_application(applications, profiles, make_profile):
    make_profile(name="Naledi")
    applications.create(
        BursaryApplication(wa_id=WA_ID, status="submitted", application_ref="FME-N-1", field_of_study="STEM", academic_level="university")
    )
    reply = ProfileAgent(applications).process(_turn("profile", profile=profiles.get(WA_ID)))
    assert "Name: Naledi" in reply
    assert "Age: 21" in reply
    assert "STEM (University)" in reply
    assert "FME-N-1" in reply


def test_profile_agent_without_application(applications, profiles, make_profile):
    make_profile()
    reply = ProfileAgent(applications).process(_turn("profile", profile=profiles.get(WA_ID)))
    assert "No bursary application yet" in reply


def test_profile_agent_load_error(applications, supabase):
    supabase.failing.add("select")
    with pytest.raises(TurnFailed) as exc:
        ProfileAgent(applications).process(_turn("profile"))
    assert exc.value.reply == LOAD_ERROR_TEXT
