import pytest

from agent_protocol import LOAD_ERROR_TEXT, SAVE_ERROR_TEXT, Turn, TurnFailed
from db_io import Session, UserProfile
from onboarding_agent import INVALID_AGE, INVALID_PICK, OnboardingAgent, OnboardingStage


WA_ID = "27820000001"


def _send(agent, profiles, text):
    turn = Turn(wa_id=WA_ID, text=text, session=Session(wa_id=WA_ID), profile=profiles.get(WA_ID), first_name="Thandi")
    return agent.process(turn)


def test_new_user_gets_welcome_and_profile_row(profiles, supabase):
    agent = OnboardingAgent(profiles)
    reply = _send(agent, profiles, "Hi")
    assert "Welcome to FutureMe!" in reply
    row = supabase.rows("user_profiles")[0]
    assert row["status"] == "onboarding_started"
    assert row["profile_data"]["current_stage"] == OnboardingStage.AWAIT_NAME.value
    assert row["first_name"] == "Thandi"


def test_full_onboarding_flow(profiles):
    agent = OnboardingAgent(profiles)
    _send(agent, profiles, "Hi")
    assert "How old are you" in _send(agent, profiles, "Naledi")
    assert _send(agent, profiles, "seventeen") == INVALID_AGE
    assert _send(agent, profiles, "17") == INVALID_AGE
    assert "gender" in _send(agent, profiles, "24")
    assert _send(agent, profiles, "4") == INVALID_PICK
    _send(agent, profiles, "2")
    reply = _send(agent, profiles, "1")
    assert "Congratulations, Naledi" in reply

    profile = profiles.get(WA_ID)
    assert profile.is_onboarded
    assert profile.completed_at is not None
    assert profile.profile_data.age == 24
    assert profile.profile_data.gender == "Female"
    assert profile.profile_data.connection_intent == "Prayer Partner"
    assert profile.profile_data.progressive_stage == "awaiting_vision"


def test_complete_stage_is_idempotent(profiles):
    profiles.create(UserProfile(wa_id=WA_ID, status="waitlist_completed"))
    profile = profiles.get(WA_ID)
    profile.profile_data.current_stage = OnboardingStage.COMPLETE.value
    profile.profile_data.name = "Naledi"
    profiles.save(profile)

    agent = OnboardingAgent(profiles)
    first = _send(agent, profiles, "anything")
    second = _send(agent, profiles, "anything")
    assert first == second
    assert "already complete" in first
    assert profiles.get(WA_ID).status == "waitlist_completed"


def test_deleted_profile_restarts(profiles):
    profiles.create(UserProfile(wa_id=WA_ID, status="deleted"))
    reply = _send(OnboardingAgent(profiles), profiles, "Hello again")
    assert "Welcome to FutureMe!" in reply
    profile = profiles.get(WA_ID)
    assert profile.status == "onboarding_started"
    assert profile.deleted_at is None


def test_insert_failure_reports_load_error(profiles, supabase):
    supabase.failing.add("insert")
    with pytest.raises(TurnFailed) as exc:
        _send(OnboardingAgent(profiles), profiles, "Hi")
    assert exc.value.reply == LOAD_ERROR_TEXT


def test_save_failure_does_not_advance(profiles, supabase):
    agent = OnboardingAgent(profiles)
    _send(agent, profiles, "Hi")
    supabase.failing.add("update")
    with pytest.raises(TurnFailed) as exc:
        _send(agent, profiles, "Naledi")
    assert exc.value.reply == SAVE_ERROR_TEXT
    supabase.failing.clear()
    assert profiles.get(WA_ID).profile_data.current_stage == OnboardingStage.AWAIT_NAME.value
