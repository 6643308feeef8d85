# agent_protocol.py
"""Types shared between the router and the agents."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from db_io import Session, UserProfile
from intent_analyzer import Intent

LOAD_ERROR_TEXT = "Sorry, I'm having trouble loading your profile right now. Please try again in a moment. 🙏"
SAVE_ERROR_TEXT = "Sorry, I couldn't save that answer. Please send it again. 🙏"


class AgentName(str, Enum):
    ONBOARDING = "onboarding"
    MENU = "menu"
    APPLICATION = "application"
    CONVERSATION = "conversation"
    CAREER = "career"
    PROFILE = "profile"


class TurnFailed(Exception):
    """Abort the current turn; `reply` is what the user is told."""

    def __init__(self, reply: str):
        super().__init__(reply)
        self.reply = reply


@dataclass
class Turn:
    wa_id: str
    text: str
    session: Session
    profile: Optional[UserProfile]
    intent: Intent = Intent.UNKNOWN
    message_type: str = "text"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
