# intent_analyzer.py
"""
LLM intent classification.

The model is constrained to a JSON schema whose only property is an enum of
the intents below. Anything that is not a clean member of that enum comes
back as Intent.UNKNOWN.
"""
from __future__ import annotations

import json
import logging
from datetime import date
from enum import Enum
from typing import Dict, List, Optional

from llm_client import OpenAIResponder

logger = logging.getLogger("intent_analyzer")


class Intent(str, Enum):
    BURSARY_APPLICATION = "bursary_application"
    VIEW_PROFILE = "view_profile"
    CAREER_GUIDANCE = "career_guidance"
    SHARE_IDEA = "share_idea"
    DELETE_PROFILE = "delete_profile"
    CHECK_STATUS = "check_status"
    GREETING = "greeting"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Intent":
        try:
            return cls(value)
        except (ValueError, TypeError):
            return cls.UNKNOWN


INTENT_SCHEMA = {
    "name": "intent_classification",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "intent": {
                "type": "string",
                "description": "The user's primary intent.",
                "enum": [intent.value for intent in Intent],
            }
        },
        "required": ["intent"],
        "additionalProperties": False,
    },
}

SYSTEM_PROMPT = """You are an intent classifier for a South African WhatsApp chatbot named "FutureMe".
Analyze the user's last message and determine their primary goal.

The available intents are:
- 'bursary_application': the user wants to find or apply for a bursary or funding.
- 'view_profile': the user wants to see or edit their personal information.
- 'career_guidance': the user wants career advice, or to find learnerships/internships.
- 'share_idea': the user wants to make a suggestion or give feedback about the app.
- 'delete_profile': the user wants their profile and data removed.
- 'check_status': the user asks what is happening next or about launch/status.
- 'greeting': the user is just saying hi, hello, etc.
- 'unknown': the intent is unclear or not related to the above.

Today's date is {today}."""


class IntentAnalyzer:
    def __init__(self, responder: OpenAIResponder, history_window: int = 10):
        self.responder = responder
        self.history_window = history_window

    @property
    def enabled(self) -> bool:
        return self.responder.enabled

    def classify(self, message: str, history: Optional[List[Dict[str, str]]] = None) -> Intent:
        if not self.enabled:
            return Intent.UNKNOWN
        recent = (history or [])[-self.history_window:]
        transcript = "\n".join(f"{h.get('role')}: {h.get('content')}" for h in recent)
        user_content = (
            f"Conversation History:\n{transcript}\n---\n"
            f'Last User Message: "{message}"\n---\n'
            "Please classify the intent of the *last user message* based on the context."
        )
        raw = self.responder.complete(
            [
                {"role": "system", "content": SYSTEM_PROMPT.format(today=date.today().isoformat())},
                {"role": "user", "content": user_content},
            ],
            max_tokens=20,
            response_format={"type": "json_schema", "json_schema": INTENT_SCHEMA},
        )
        if raw is None:
            return Intent.UNKNOWN
        try:
            result = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Intent response was not JSON: %r", raw[:200])
            return Intent.UNKNOWN
        if not isinstance(result, dict):
            return Intent.UNKNOWN
        return Intent.parse(result.get("intent"))
