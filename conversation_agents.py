# conversation_agents.py
"""
Free-text agents: small talk, career guidance and the profile view.

None of these keep a stage. Conversation and career answers come from the
LLM when it is configured and fall back to canned text otherwise.
"""
from __future__ import annotations

import logging
from typing import Dict, List

from agent_protocol import AgentName, LOAD_ERROR_TEXT, Turn, TurnFailed
from application_agent import ACADEMIC_LEVEL_LABELS, status_summary
from db_io import ApplicationStore, StoreError
from intent_analyzer import Intent
from llm_client import OpenAIResponder
from stage_machine import numbered_menu

logger = logging.getLogger("conversation_agents")

SMALL_TALK_WINDOW = 6

WELCOME_MENU = (
    "Hi there! 👋 Welcome to FutureMe, your partner for bursaries and careers.\n\n"
    "How can I help you today?\n\n"
    + numbered_menu(["Bursary Applications 💰", "Career Guidance 🧭", "My Profile 👤"])
)
SMALL_TALK_APOLOGY = (
    "Sorry, I didn't quite catch that. 🙏\n\n"
    "I can help with:\n" + numbered_menu(["Bursary Applications 💰", "Career Guidance 🧭", "My Profile 👤"])
)

CONVERSATION_PROMPT = (
    "You are FutureMe, a friendly WhatsApp assistant for South African youth. "
    "Keep replies short (2-3 sentences), warm and plain. If the user seems lost, "
    "remind them you can help with bursary applications, career guidance and their profile."
)
CAREER_PROMPT = (
    "You are a career guidance counsellor for South African high school and university students. "
    "Give practical, concise advice (under 120 words) grounded in South African options: "
    "bursaries, learnerships, SETA programmes, TVET colleges, internships and NSFAS. "
    "End with one follow-up question."
)
CAREER_FALLBACK = (
    "Here are some great places to start exploring careers 🧭\n\n"
    "• SAYouth.mobi: learnerships and entry-level jobs (zero-rated)\n"
    "• NSFAS: funding for public universities and TVET colleges\n"
    "• Your nearest SETA: sector learnerships and apprenticeships\n"
    "• Harambee: youth employment programmes\n\n"
    "Tell me which field interests you and I'll point you to bursaries for it! 💡"
)


class ConversationAgent:
    name = AgentName.CONVERSATION

    def __init__(self, responder: OpenAIResponder):
        self.responder = responder

    def process(self, turn: Turn) -> str:
        history = turn.session.history
        if turn.intent == Intent.GREETING or not history:
            return WELCOME_MENU
        messages: List[Dict[str, str]] = [{"role": "system", "content": CONVERSATION_PROMPT}]
        messages.extend(history[-SMALL_TALK_WINDOW:])
        messages.append({"role": "user", "content": turn.text})
        answer = self.responder.complete(messages, temperature=0.7, max_tokens=200)
        return answer or SMALL_TALK_APOLOGY


class CareerAgent:
    name = AgentName.CAREER

    def __init__(self, responder: OpenAIResponder):
        self.responder = responder

    def process(self, turn: Turn) -> str:
        context = ""
        profile = turn.profile
        if profile is not None and profile.profile_data.name:
            context = f"The student's name is {profile.profile_data.name}."
        answer = self.responder.complete(
            [
                {"role": "system", "content": f"{CAREER_PROMPT} {context}".strip()},
                {"role": "user", "content": turn.text},
            ],
            temperature=0.5,
            max_tokens=300,
        )
        if answer is None:
            logger.info("Career guidance fallback for %s", turn.wa_id)
            return CAREER_FALLBACK
        return answer


class ProfileAgent:
    name = AgentName.PROFILE

    def __init__(self, applications: ApplicationStore):
        self.applications = applications

    def process(self, turn: Turn) -> str:
        profile = turn.profile
        try:
            application = self.applications.get_current(turn.wa_id)
        except StoreError as exc:
            logger.exception("Failed to load application for profile view of %s", turn.wa_id)
            raise TurnFailed(LOAD_ERROR_TEXT) from exc

        lines = ["👤 *Your FutureMe Profile*", ""]
        if profile is not None:
            data = profile.profile_data
            lines.append(f"Name: {profile.display_name}")
            if data.age is not None:
                lines.append(f"Age: {data.age}")
            if data.gender:
                lines.append(f"Gender: {data.gender}")
            if data.connection_intent:
                lines.append(f"Looking for: {data.connection_intent}")
            if data.denomination:
                lines.append(f"Church: {data.denomination}")
        lines.append("")
        if application is None:
            lines.append("🎓 No bursary application yet. Say 'apply for bursary' to start one!")
        else:
            if application.field_of_study:
                level = ACADEMIC_LEVEL_LABELS.get(application.academic_level, application.academic_level or "")
                lines.append(f"🎓 Studying: {application.field_of_study} {f'({level})' if level else ''}".rstrip())
            lines.append(status_summary(application))
        return "\n".join(lines)
