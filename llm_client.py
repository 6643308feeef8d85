# llm_client.py
"""OpenAI chat-completion wrapper shared by the intent analyzer and the free-text agents."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

logger = logging.getLogger("llm_client")


class OpenAIResponder:
    def __init__(self, api_key: Optional[str], model: str, client: Optional[Any] = None):
        self.model = model
        self._client = client
        if self._client is None and api_key:
            self._client = OpenAI(api_key=api_key)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.0,
        max_tokens: int = 300,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """Return the first choice's content, or None when disabled or on any API error."""
        if not self.enabled:
            return None
        kwargs: Dict[str, Any] = {"model": self.model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens}
        if response_format:
            kwargs["response_format"] = response_format
        try:
            completion = self._client.chat.completions.create(**kwargs)
        except OpenAIError as exc:
            logger.error("OpenAI completion failed: %s", exc)
            return None
        if not completion.choices:
            return None
        content = completion.choices[0].message.content
        return content.strip() if content else None
