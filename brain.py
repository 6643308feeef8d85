# brain.py
"""
Message router.

Each inbound message is handled under a per-waId lock:
1. load (or create) the session and load the profile
2. not onboarded                       -> onboarding agent
3. an agent holds the conversation     -> that agent
4. pending menu / progressive question -> menu agent
5. quick replies and menu keywords     -> mapped intent
6. otherwise the LLM classifies the message and `route` picks the agent
7. history, intent and last agent are written back to the session
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from agent_protocol import AgentName, LOAD_ERROR_TEXT, Turn, TurnFailed
from application_agent import ApplicationAgent
from conversation_agents import CareerAgent, ConversationAgent, ProfileAgent
from db_io import ApplicationStore, Session, SessionStore, StoreError, SuggestionStore, UserProfile, UserProfileStore
from email_service import ResendEmailClient
from intent_analyzer import Intent, IntentAnalyzer
from llm_client import OpenAIResponder
from menu_agent import MenuAgent, menu_command
from onboarding_agent import OnboardingAgent
from whatsapp_messaging import InboundMessage

logger = logging.getLogger("brain")

ROUTES = {
    Intent.BURSARY_APPLICATION: AgentName.APPLICATION,
    Intent.VIEW_PROFILE: AgentName.PROFILE,
    Intent.CAREER_GUIDANCE: AgentName.CAREER,
    Intent.SHARE_IDEA: AgentName.MENU,
    Intent.DELETE_PROFILE: AgentName.MENU,
    Intent.CHECK_STATUS: AgentName.MENU,
    Intent.GREETING: AgentName.CONVERSATION,
    Intent.UNKNOWN: AgentName.CONVERSATION,
}

# Numbered answers to the menu the previous agent showed
WELCOME_MENU_REPLIES = {"1": Intent.BURSARY_APPLICATION, "2": Intent.CAREER_GUIDANCE, "3": Intent.VIEW_PROFILE}
QUICK_REPLIES = {
    AgentName.CONVERSATION.value: WELCOME_MENU_REPLIES,
    AgentName.ONBOARDING.value: WELCOME_MENU_REPLIES,
    AgentName.MENU.value: {"1": Intent.SHARE_IDEA, "2": Intent.DELETE_PROFILE},
}


def route(intent: Intent) -> AgentName:
    return ROUTES.get(intent, AgentName.CONVERSATION)


class KeyedLock:
    """One mutex per key, dropped again once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if not self._waiters[key]:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class Reply:
    text: str
    intent: Optional[Intent] = None
    agent: Optional[AgentName] = None

    def debug_info(self) -> Dict[str, Any]:
        return {
            "intent": self.intent.value if self.intent else None,
            "agent": self.agent.value if self.agent else None,
        }


class Brain:
    def __init__(
        self,
        sessions: SessionStore,
        profiles: UserProfileStore,
        applications: ApplicationStore,
        suggestions: SuggestionStore,
        analyzer: IntentAnalyzer,
        responder: OpenAIResponder,
        email_client: ResendEmailClient,
        history_limit: int = 20,
    ):
        self.sessions = sessions
        self.profiles = profiles
        self.analyzer = analyzer
        self.history_limit = history_limit
        self.menu = MenuAgent(profiles, suggestions)
        self.agents = {
            AgentName.ONBOARDING: OnboardingAgent(profiles),
            AgentName.MENU: self.menu,
            AgentName.APPLICATION: ApplicationAgent(applications, email_client),
            AgentName.CONVERSATION: ConversationAgent(responder),
            AgentName.CAREER: CareerAgent(responder),
            AgentName.PROFILE: ProfileAgent(applications),
        }
        self._locks = KeyedLock()

    def process_message(self, inbound: InboundMessage) -> Reply:
        with self._locks.hold(inbound.wa_id):
            return self._process(inbound)

    def _process(self, inbound: InboundMessage) -> Reply:
        try:
            session = self.sessions.get(inbound.wa_id) or self.sessions.create(inbound.wa_id)
            profile = self.profiles.get(inbound.wa_id)
        except StoreError:
            logger.exception("Could not load state for %s", inbound.wa_id)
            return Reply(LOAD_ERROR_TEXT)

        turn = Turn(
            wa_id=inbound.wa_id,
            text=inbound.text,
            session=session,
            profile=profile,
            message_type=inbound.message_type,
            first_name=inbound.first_name,
            last_name=inbound.last_name,
        )
        agent_name = self._select(turn)
        logger.info("Routing %s to %s (intent=%s)", turn.wa_id, agent_name.value, turn.intent.value)
        try:
            text = self.agents[agent_name].process(turn)
        except TurnFailed as exc:
            return Reply(exc.reply, turn.intent, agent_name)

        session.add_message("user", inbound.text, self.history_limit)
        session.add_message("assistant", text, self.history_limit)
        session.state.intent = turn.intent.value
        session.state.last_agent = agent_name.value
        try:
            self.sessions.save(session)
        except StoreError:
            # the agent's own record is already committed; the reply stands
            logger.exception("Failed to save session for %s", inbound.wa_id)
        return Reply(text, turn.intent, agent_name)

    def _select(self, turn: Turn) -> AgentName:
        state = turn.session.state
        if not self._onboarded(turn.profile):
            return AgentName.ONBOARDING

        if state.active_agent:
            try:
                return AgentName(state.active_agent)
            except ValueError:
                logger.warning("Dropping unknown active agent %r for %s", state.active_agent, turn.wa_id)
                state.active_agent = None

        if self.menu.wants_turn(turn.session, turn.profile, turn.text):
            return AgentName.MENU

        intent = self._quick_reply(turn.session, turn.text)
        if intent is None:
            intent = self.analyzer.classify(turn.text, turn.session.history)
        turn.intent = intent
        return route(intent)

    @staticmethod
    def _onboarded(profile: Optional[UserProfile]) -> bool:
        return profile is not None and profile.is_onboarded

    @staticmethod
    def _quick_reply(session: Session, text: str) -> Optional[Intent]:
        replies = QUICK_REPLIES.get(session.state.last_agent or AgentName.CONVERSATION.value, {})
        intent = replies.get(text.strip())
        if intent is not None:
            return intent
        return menu_command(text)
