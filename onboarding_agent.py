# onboarding_agent.py
"""
Minimum-viable-profile onboarding.

START -> AWAIT_NAME -> AWAIT_AGE -> AWAIT_GENDER -> AWAIT_CONNECTION_INTENT -> COMPLETE

The stage is kept in profile_data.current_stage. A brand-new waId gets a
profile row with status "onboarding_started"; completing the flow flips it to
"waitlist_completed" and queues the progressive profile questions.
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Optional

from agent_protocol import AgentName, LOAD_ERROR_TEXT, SAVE_ERROR_TEXT, Turn, TurnFailed
from db_io import ProfileData, StoreError, UserProfile, UserProfileStore, iso_timestamp
from menu_agent import ProgressiveStage
from stage_machine import StageMachine, StageResult, numbered_menu, pick

logger = logging.getLogger("onboarding_agent")


class OnboardingStage(str, Enum):
    START = "START"
    AWAIT_NAME = "AWAIT_NAME"
    AWAIT_AGE = "AWAIT_AGE"
    AWAIT_GENDER = "AWAIT_GENDER"
    AWAIT_CONNECTION_INTENT = "AWAIT_CONNECTION_INTENT"
    COMPLETE = "COMPLETE"

    @classmethod
    def parse(cls, value: Optional[str]) -> "OnboardingStage":
        try:
            return cls(value)
        except ValueError:
            if value:
                logger.warning("Unknown onboarding stage %r; restarting", value)
            return cls.START


GENDERS = {"1": "Male", "2": "Female", "3": "Prefer not to say"}
CONNECTION_INTENTS = {"1": "Prayer Partner", "2": "Fellowship & Friends", "3": "Deeper Connections"}
SINGLE_DIGIT_1_TO_3 = re.compile(r"^[1-3]$")
MIN_AGE, MAX_AGE = 18, 99

WELCOME = (
    "Welcome to FutureMe! 🎓✨\n\n"
    "We help South African youth find bursaries, plan careers and connect with a safe community.\n\n"
    "Once your profile is set up I can help you with:\n"
    + numbered_menu(["Bursary Applications 💰", "Career Guidance 🧭", "My Profile 👤"])
    + "\n\nLet's start your profile. First, what's your first name? 🌿"
)
ASK_NAME = "What's your first name? 🌿"
ASK_AGE = "Awesome, {name}! 👋\n\nHow old are you? (Enter the number, e.g., 24) 🎂"
INVALID_AGE = "Please enter a valid age as a number (e.g., 24). We require members to be 18 or older."
ASK_GENDER = "Got it! 💫\n\nWhat is your gender?\n" + numbered_menu(list(GENDERS.values()))
ASK_CONNECTION = (
    "Perfect! What kind of connection are you most excited about? 🌱\n\n"
    + numbered_menu(["Prayer Partner 🙏", "Fellowship & Friends 🤝", "Open to Deeper Connections 💛"])
)
INVALID_PICK = "Please reply with just the number: 1, 2, or 3."
COMPLETED = (
    "🎉 Congratulations, {name}! Your FutureMe profile is officially saved.\n\n"
    "We'll send a few more profile questions over the next few days. Keep an eye out! 👀\n\n"
    "What would you like to do now?\n"
    + numbered_menu(["Bursary Applications 💰", "Career Guidance 🧭", "My Profile 👤"])
)
ALREADY_COMPLETE = "Your profile is already complete, {name}! ✅ Reply *menu* to see your options."


def handle_start(text: str, profile: UserProfile) -> StageResult:
    return StageResult(WELCOME, profile, OnboardingStage.AWAIT_NAME)

def handle_name(text: str, profile: UserProfile) -> StageResult:
    name = text.strip()[:60]
    if not name:
        return StageResult(ASK_NAME, profile, OnboardingStage.AWAIT_NAME)
    profile.profile_data.name = name
    return StageResult(ASK_AGE.format(name=name), profile, OnboardingStage.AWAIT_AGE)

def handle_age(text: str, profile: UserProfile) -> StageResult:
    try:
        age = int(text.strip())
    except ValueError:
        return StageResult(INVALID_AGE, profile, OnboardingStage.AWAIT_AGE)
    if age < MIN_AGE or age > MAX_AGE:
        return StageResult(INVALID_AGE, profile, OnboardingStage.AWAIT_AGE)
    profile.profile_data.age = age
    return StageResult(ASK_GENDER, profile, OnboardingStage.AWAIT_GENDER)

def handle_gender(text: str, profile: UserProfile) -> StageResult:
    choice = text.strip()
    if not SINGLE_DIGIT_1_TO_3.match(choice):
        return StageResult(INVALID_PICK, profile, OnboardingStage.AWAIT_GENDER)
    profile.profile_data.gender = pick(GENDERS, choice)
    return StageResult(ASK_CONNECTION, profile, OnboardingStage.AWAIT_CONNECTION_INTENT)

def handle_connection_intent(text: str, profile: UserProfile) -> StageResult:
    choice = text.strip()
    if not SINGLE_DIGIT_1_TO_3.match(choice):
        return StageResult(INVALID_PICK, profile, OnboardingStage.AWAIT_CONNECTION_INTENT)
    profile.profile_data.connection_intent = pick(CONNECTION_INTENTS, choice)
    profile.profile_data.progressive_stage = ProgressiveStage.AWAIT_VISION.value
    profile.status = "waitlist_completed"
    profile.completed_at = iso_timestamp()
    return StageResult(COMPLETED.format(name=profile.display_name), profile, OnboardingStage.COMPLETE, events=("completed",))

def handle_complete(text: str, profile: UserProfile) -> StageResult:
    return StageResult(ALREADY_COMPLETE.format(name=profile.display_name), profile, OnboardingStage.COMPLETE)


ONBOARDING_MACHINE = StageMachine(
    order=list(OnboardingStage),
    handlers={
        OnboardingStage.START: handle_start,
        OnboardingStage.AWAIT_NAME: handle_name,
        OnboardingStage.AWAIT_AGE: handle_age,
        OnboardingStage.AWAIT_GENDER: handle_gender,
        OnboardingStage.AWAIT_CONNECTION_INTENT: handle_connection_intent,
        OnboardingStage.COMPLETE: handle_complete,
    },
)


class OnboardingAgent:
    name = AgentName.ONBOARDING

    def __init__(self, profiles: UserProfileStore):
        self.profiles = profiles
        self.machine = ONBOARDING_MACHINE

    def process(self, turn: Turn) -> str:
        profile = turn.profile
        if profile is None:
            profile = self._create_profile(turn)
        elif profile.status == "deleted":
            profile.status = "onboarding_started"
            profile.profile_data = ProfileData(current_stage=OnboardingStage.START.value)
            profile.deleted_at = None
            profile.completed_at = None

        stage = OnboardingStage.parse(profile.profile_data.current_stage)
        result = self.machine.handle(stage, turn.text, profile)
        updated: UserProfile = result.record
        updated.profile_data.current_stage = result.next_stage.value
        try:
            self.profiles.save(updated)
        except StoreError as exc:
            logger.exception("Failed to save onboarding progress for %s", turn.wa_id)
            raise TurnFailed(SAVE_ERROR_TEXT) from exc
        turn.profile = updated
        return result.text

    def _create_profile(self, turn: Turn) -> UserProfile:
        profile = UserProfile(
            wa_id=turn.wa_id,
            status="onboarding_started",
            profile_data=ProfileData(current_stage=OnboardingStage.START.value),
            first_name=turn.first_name,
            last_name=turn.last_name,
        )
        try:
            return self.profiles.create(profile)
        except StoreError as exc:
            logger.exception("Failed to create profile for %s", turn.wa_id)
            raise TurnFailed(LOAD_ERROR_TEXT) from exc
