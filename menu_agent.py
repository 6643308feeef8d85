# menu_agent.py
"""
Main menu and progressive profile questions for onboarded users.

Two machines live here:
- the progressive profile (denomination, rhythm, preferences) that the weekly
  nudge kicks off, stored in profile_data.progressive_stage;
- the main menu (share an idea, delete my profile), whose sub-step is kept on
  the session so it survives between messages.

A menu command or a pending menu sub-step always wins over a pending
progressive question.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from agent_protocol import AgentName, SAVE_ERROR_TEXT, Turn, TurnFailed
from db_io import Session, StoreError, Suggestion, SuggestionStore, UserProfile, UserProfileStore, iso_timestamp
from intent_analyzer import Intent
from stage_machine import StageMachine, StageResult, numbered_menu, pick

logger = logging.getLogger("menu_agent")

MENU_COMMANDS = {
    "menu": Intent.CHECK_STATUS,
    "help": Intent.CHECK_STATUS,
    "idea": Intent.SHARE_IDEA,
    "delete": Intent.DELETE_PROFILE,
}
DELETE_CONFIRMATION = "yes delete"


def menu_command(text: str) -> Optional[Intent]:
    return MENU_COMMANDS.get(text.strip().lower())


# ---------------------------------------------------------------------------
# Progressive profile
# ---------------------------------------------------------------------------

class ProgressiveStage(str, Enum):
    AWAIT_VISION = "awaiting_vision"
    AWAIT_DENOMINATION = "awaiting_denomination"
    AWAIT_RHYTHM = "awaiting_rhythm"
    AWAIT_PRAYER_STYLE = "awaiting_prayer_style"
    AWAIT_FELLOWSHIP_INTEREST = "awaiting_fellowship_interest"
    AWAIT_MATCH_GENDER_PREF = "awaiting_match_gender_pref"
    AWAIT_MATCH_AGE_PREF = "awaiting_match_age_pref"
    COMPLETE = "progressive_complete"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ProgressiveStage"]:
        try:
            return cls(value)
        except ValueError:
            return None


RHYTHMS = {"1": "Daily devotions", "2": "Weekly church-goer", "3": "Finding my rhythm", "4": "It's complicated"}
PRAYER_STYLES = {"1": "Structured", "2": "Conversational", "3": "Contemplative", "4": "Open to all"}
FELLOWSHIP_INTERESTS = {"1": "Bible study", "2": "Coffee & chat", "3": "Outdoor activities", "4": "Serving"}
MATCH_GENDER_PREFS = {"1": "Men only", "2": "Women only", "3": "No preference"}
MATCH_AGE_PREFS = {"1": "18-25", "2": "26-35", "3": "36-45", "4": "46+", "5": "Open to all ages"}

# The weekly nudge template carries this question; see notifications.py
ASK_DENOMINATION = "Which church or denomination do you feel most at home in? ⛪"
ASK_RHYTHM = "Got it! And what's your spiritual rhythm like?\n\n" + numbered_menu(list(RHYTHMS.values()))
ASK_PRAYER_STYLE = "What's your preferred prayer style?\n\n" + numbered_menu(list(PRAYER_STYLES.values()))
ASK_FELLOWSHIP = "What's your ideal fellowship?\n\n" + numbered_menu(list(FELLOWSHIP_INTERESTS.values()))
ASK_MATCH_GENDER = "Great. Now for your preferences. Which gender?\n" + numbered_menu(list(MATCH_GENDER_PREFS.values()))
ASK_MATCH_AGE = "And what age range for connections?\n\n" + numbered_menu(list(MATCH_AGE_PREFS.values()))
PROGRESSIVE_DONE = "Perfect! ✨ Your matching profile is now 100% complete. We have everything we need to find you the most aligned connections!"


def _answer(text: str) -> Optional[str]:
    return text.strip()[:120] or None

def handle_denomination(text: str, profile: UserProfile) -> StageResult:
    answer = _answer(text)
    if answer is None:
        return StageResult(ASK_DENOMINATION, profile, ProgressiveStage.AWAIT_DENOMINATION)
    profile.profile_data.denomination = answer
    return StageResult(ASK_RHYTHM, profile, ProgressiveStage.AWAIT_RHYTHM)

def handle_rhythm(text: str, profile: UserProfile) -> StageResult:
    answer = _answer(text)
    if answer is None:
        return StageResult(ASK_RHYTHM, profile, ProgressiveStage.AWAIT_RHYTHM)
    profile.profile_data.rhythm = pick(RHYTHMS, answer, answer)
    intent = profile.profile_data.connection_intent
    if intent == "Prayer Partner":
        return StageResult(ASK_PRAYER_STYLE, profile, ProgressiveStage.AWAIT_PRAYER_STYLE)
    if intent == "Fellowship & Friends":
        return StageResult(ASK_FELLOWSHIP, profile, ProgressiveStage.AWAIT_FELLOWSHIP_INTEREST)
    return StageResult(ASK_MATCH_GENDER, profile, ProgressiveStage.AWAIT_MATCH_GENDER_PREF)

def handle_prayer_style(text: str, profile: UserProfile) -> StageResult:
    answer = _answer(text)
    if answer is None:
        return StageResult(ASK_PRAYER_STYLE, profile, ProgressiveStage.AWAIT_PRAYER_STYLE)
    profile.profile_data.prayer_style = pick(PRAYER_STYLES, answer, answer)
    return StageResult(ASK_MATCH_GENDER, profile, ProgressiveStage.AWAIT_MATCH_GENDER_PREF)

def handle_fellowship(text: str, profile: UserProfile) -> StageResult:
    answer = _answer(text)
    if answer is None:
        return StageResult(ASK_FELLOWSHIP, profile, ProgressiveStage.AWAIT_FELLOWSHIP_INTEREST)
    profile.profile_data.fellowship_interest = pick(FELLOWSHIP_INTERESTS, answer, answer)
    return StageResult(ASK_MATCH_GENDER, profile, ProgressiveStage.AWAIT_MATCH_GENDER_PREF)

def handle_match_gender(text: str, profile: UserProfile) -> StageResult:
    answer = _answer(text)
    if answer is None:
        return StageResult(ASK_MATCH_GENDER, profile, ProgressiveStage.AWAIT_MATCH_GENDER_PREF)
    profile.profile_data.match_gender_pref = pick(MATCH_GENDER_PREFS, answer, answer)
    return StageResult(ASK_MATCH_AGE, profile, ProgressiveStage.AWAIT_MATCH_AGE_PREF)

def handle_match_age(text: str, profile: UserProfile) -> StageResult:
    answer = _answer(text)
    if answer is None:
        return StageResult(ASK_MATCH_AGE, profile, ProgressiveStage.AWAIT_MATCH_AGE_PREF)
    profile.profile_data.match_age_pref = pick(MATCH_AGE_PREFS, answer, answer)
    return StageResult(PROGRESSIVE_DONE, profile, ProgressiveStage.COMPLETE)

def handle_progressive_complete(text: str, profile: UserProfile) -> StageResult:
    return StageResult(main_menu_text(), profile, ProgressiveStage.COMPLETE)


# awaiting_vision is set at the end of onboarding and only moved on by the
# weekly nudge, so it is not part of the machine
PROGRESSIVE_MACHINE = StageMachine(
    order=[
        ProgressiveStage.AWAIT_DENOMINATION,
        ProgressiveStage.AWAIT_RHYTHM,
        ProgressiveStage.AWAIT_PRAYER_STYLE,
        ProgressiveStage.AWAIT_FELLOWSHIP_INTEREST,
        ProgressiveStage.AWAIT_MATCH_GENDER_PREF,
        ProgressiveStage.AWAIT_MATCH_AGE_PREF,
        ProgressiveStage.COMPLETE,
    ],
    handlers={
        ProgressiveStage.AWAIT_DENOMINATION: handle_denomination,
        ProgressiveStage.AWAIT_RHYTHM: handle_rhythm,
        ProgressiveStage.AWAIT_PRAYER_STYLE: handle_prayer_style,
        ProgressiveStage.AWAIT_FELLOWSHIP_INTEREST: handle_fellowship,
        ProgressiveStage.AWAIT_MATCH_GENDER_PREF: handle_match_gender,
        ProgressiveStage.AWAIT_MATCH_AGE_PREF: handle_match_age,
        ProgressiveStage.COMPLETE: handle_progressive_complete,
    },
)

def progressive_pending(profile: Optional[UserProfile]) -> bool:
    if profile is None:
        return False
    stage = ProgressiveStage.parse(profile.profile_data.progressive_stage)
    return stage is not None and stage in PROGRESSIVE_MACHINE.order and not PROGRESSIVE_MACHINE.is_terminal(stage)


# ---------------------------------------------------------------------------
# Main menu
# ---------------------------------------------------------------------------

class MenuStage(str, Enum):
    MENU = "MENU"
    AWAIT_SUGGESTION = "AWAIT_SUGGESTION"
    AWAIT_DELETE_CONFIRM = "AWAIT_DELETE_CONFIRM"

    @classmethod
    def parse(cls, value: Optional[str]) -> "MenuStage":
        try:
            return cls(value)
        except ValueError:
            return cls.MENU


@dataclass
class MenuContext:
    profile: UserProfile
    intent: Intent
    suggestion_text: Optional[str] = None


def main_menu_text() -> str:
    return (
        "Welcome back! 🙏\n\nHere's what I can do for you:\n\n"
        + numbered_menu(["Share an Idea 💡", "Delete My Profile 🗑️"])
        + "\n\nYou can also ask me about bursaries, careers or your profile anytime."
    )

ASK_SUGGESTION = "We're building this *for you*, and your feedback is a gift!\n\nPlease type your suggestion below and send it as a single message."
SUGGESTION_SAVED = "Thank you, that's a fantastic idea. We've saved it for the team to review. 💡"
ASK_DELETE = (
    "We'd be sad to see you go, but we understand. Are you sure you want to permanently delete your profile?\n\n"
    f"This cannot be undone. To confirm, please reply with the exact words: `{DELETE_CONFIRMATION}`"
)
DELETED = "Your profile and data have been permanently deleted. We're sad to see you go."
DELETE_CANCELLED = "Deletion cancelled. Phew! Your profile is safe."


def handle_menu(text: str, ctx: MenuContext) -> StageResult:
    if ctx.intent == Intent.SHARE_IDEA:
        return StageResult(ASK_SUGGESTION, ctx, MenuStage.AWAIT_SUGGESTION)
    if ctx.intent == Intent.DELETE_PROFILE:
        return StageResult(ASK_DELETE, ctx, MenuStage.AWAIT_DELETE_CONFIRM)
    return StageResult(main_menu_text(), ctx, MenuStage.MENU)

def handle_suggestion(text: str, ctx: MenuContext) -> StageResult:
    suggestion = text.strip()
    if not suggestion:
        return StageResult(ASK_SUGGESTION, ctx, MenuStage.AWAIT_SUGGESTION)
    ctx.suggestion_text = suggestion
    return StageResult(SUGGESTION_SAVED, ctx, MenuStage.MENU, events=("suggestion",))

def handle_delete_confirm(text: str, ctx: MenuContext) -> StageResult:
    if text.strip().lower() != DELETE_CONFIRMATION:
        return StageResult(DELETE_CANCELLED, ctx, MenuStage.MENU)
    ctx.profile.status = "deleted"
    ctx.profile.deleted_at = iso_timestamp()
    return StageResult(DELETED, ctx, MenuStage.MENU, events=("profile_deleted",))


MENU_MACHINE = StageMachine(
    order=list(MenuStage),
    handlers={
        MenuStage.MENU: handle_menu,
        MenuStage.AWAIT_SUGGESTION: handle_suggestion,
        MenuStage.AWAIT_DELETE_CONFIRM: handle_delete_confirm,
    },
    rewinds=[
        (MenuStage.AWAIT_SUGGESTION, MenuStage.MENU),
        (MenuStage.AWAIT_DELETE_CONFIRM, MenuStage.MENU),
    ],
    terminal=MenuStage.MENU,
)


class MenuAgent:
    name = AgentName.MENU

    def __init__(self, profiles: UserProfileStore, suggestions: SuggestionStore):
        self.profiles = profiles
        self.suggestions = suggestions

    def wants_turn(self, session: Session, profile: Optional[UserProfile], text: str) -> bool:
        """True when this agent has an unfinished step that should take the message."""
        if MenuStage.parse(session.state.menu_stage) != MenuStage.MENU:
            return True
        return progressive_pending(profile) and menu_command(text) is None

    def process(self, turn: Turn) -> str:
        state = turn.session.state
        menu_stage = MenuStage.parse(state.menu_stage)
        if menu_stage == MenuStage.MENU and menu_command(turn.text) is None and progressive_pending(turn.profile):
            return self._progressive(turn)
        return self._menu(turn, menu_stage)

    def _progressive(self, turn: Turn) -> str:
        stage = ProgressiveStage(turn.profile.profile_data.progressive_stage)
        result = PROGRESSIVE_MACHINE.handle(stage, turn.text, turn.profile)
        updated: UserProfile = result.record
        updated.profile_data.progressive_stage = result.next_stage.value
        self._save_profile(updated, turn)
        return result.text

    def _menu(self, turn: Turn, stage: MenuStage) -> str:
        intent = menu_command(turn.text) or turn.intent
        result = MENU_MACHINE.handle(stage, turn.text, MenuContext(profile=turn.profile, intent=intent))
        ctx: MenuContext = result.record
        if "suggestion" in result.events:
            try:
                self.suggestions.add(Suggestion(user_wa_id=turn.wa_id, suggestion_text=ctx.suggestion_text))
            except StoreError as exc:
                logger.exception("Failed to save suggestion for %s", turn.wa_id)
                raise TurnFailed(SAVE_ERROR_TEXT) from exc
        if "profile_deleted" in result.events:
            self._save_profile(ctx.profile, turn)
            turn.session.state.active_agent = None
        turn.session.state.menu_stage = result.next_stage.value
        return result.text

    def _save_profile(self, profile: UserProfile, turn: Turn) -> None:
        try:
            self.profiles.save(profile)
        except StoreError as exc:
            logger.exception("Failed to save profile for %s", turn.wa_id)
            raise TurnFailed(SAVE_ERROR_TEXT) from exc
        turn.profile = profile
