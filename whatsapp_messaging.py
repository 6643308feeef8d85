# whatsapp_messaging.py
"""
WhatsApp / ManyChat message helpers.

Provides:
- parse_inbound: turns either webhook shape into an InboundMessage
    * ManyChat:           {subscriber_id, text, first_name, last_name}
    * WhatsApp Cloud API: {contact: {wa_id, name}, messages: [{id, type, text|image}]}
- manychat_response / whatsapp_response: the synchronous reply bodies
- MetaWhatsAppClient: outbound template sends through the Graph API
  https://graph.facebook.com/{api_version}/{phone_number_id}/messages
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger("whatsapp_messaging")

IMAGE_PLACEHOLDER = "[IMAGE_UPLOAD]"
ATTACHMENT_PLACEHOLDER = "[UNKNOWN_ATTACHMENT]"


class PayloadError(ValueError):
    """Inbound webhook body matches neither supported shape."""


# ---------------------------------------------------------------------------
# Inbound payloads
# ---------------------------------------------------------------------------

class ManyChatPayload(BaseModel):
    subscriber_id: str
    text: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("subscriber_id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("subscriber_id")
    @classmethod
    def require_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("subscriber_id is empty")
        return v.strip()


class WhatsAppContact(BaseModel):
    wa_id: str
    name: Optional[str] = None


class WhatsAppText(BaseModel):
    body: str = ""


class WhatsAppMessage(BaseModel):
    id: Optional[str] = None
    type: str = "text"
    text: Optional[WhatsAppText] = None
    image: Optional[Dict[str, Any]] = None


class WhatsAppPayload(BaseModel):
    contact: WhatsAppContact
    messages: List[WhatsAppMessage] = Field(default_factory=list)


@dataclass
class InboundMessage:
    wa_id: str
    text: str
    channel: str
    message_type: str = "text"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    message_id: Optional[str] = None


def _from_whatsapp(payload: WhatsAppPayload) -> InboundMessage:
    message_type, text, message_id = "text", "", None
    if payload.messages:
        msg = payload.messages[0]
        message_id = msg.id
        if msg.type == "text":
            text = msg.text.body if msg.text else ""
        elif msg.type == "image":
            message_type, text = "image", IMAGE_PLACEHOLDER
        else:
            message_type, text = msg.type, ATTACHMENT_PLACEHOLDER
    first_name = payload.contact.name.split(" ")[0] if payload.contact.name else None
    return InboundMessage(
        wa_id=payload.contact.wa_id,
        text=text,
        channel="whatsapp",
        message_type=message_type,
        first_name=first_name or None,
        message_id=message_id,
    )

def parse_inbound(body: Any) -> InboundMessage:
    if not isinstance(body, dict):
        raise PayloadError("Payload must be a JSON object")
    try:
        if "subscriber_id" in body:
            payload = ManyChatPayload(**body)
            return InboundMessage(
                wa_id=payload.subscriber_id,
                text=payload.text or "",
                channel="manychat",
                first_name=payload.first_name,
                last_name=payload.last_name,
            )
        if "contact" in body:
            return _from_whatsapp(WhatsAppPayload(**body))
    except ValidationError as exc:
        raise PayloadError(f"Invalid payload: {exc.errors()[0]['msg']}") from exc
    raise PayloadError("Unrecognised payload: expected subscriber_id or contact")


# ---------------------------------------------------------------------------
# Synchronous replies
# ---------------------------------------------------------------------------

def manychat_response(text: str, debug_info: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "version": "v2",
        "content": {"messages": [{"type": "text", "text": text}], "quick_replies": []},
        "debug_info": debug_info or {},
    }

def whatsapp_response(to: str, text: str) -> Dict[str, Any]:
    return {"messaging_product": "whatsapp", "to": to, "text": {"body": text}}

def format_reply(inbound: InboundMessage, text: str, debug_info: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    if inbound.channel == "manychat":
        return manychat_response(text, debug_info)
    return whatsapp_response(inbound.wa_id, text)


# ---------------------------------------------------------------------------
# Outbound client
# ---------------------------------------------------------------------------

class MetaWhatsAppClient:
    def __init__(self, token: Optional[str], phone_number_id: Optional[str], api_version: str = "v24.0"):
        self.token = token
        self.phone_number_id = phone_number_id
        self.api_version = api_version
        self.base_url = f"https://graph.facebook.com/{api_version}/{phone_number_id}/messages" if phone_number_id else None

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.base_url)

    def _post(self, payload: Dict[str, Any]) -> None:
        if not self.enabled:
            logger.info("[dry-run] %s", json.dumps(payload, indent=2, ensure_ascii=False))
            return
        headers = {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}
        response = requests.post(self.base_url, json=payload, headers=headers, timeout=10)
        if not response.ok:
            logger.error("WhatsApp send failed - status=%s body=%s", response.status_code, response.text)
            response.raise_for_status()

    def send_template(self, to: str, template_name: str, language: str = "en", body_params: Optional[List[str]] = None) -> None:
        payload = {"messaging_product": "whatsapp", "to": to, "type": "template", "template": {"name": template_name, "language": {"code": language}}}
        if body_params:
            payload["template"]["components"] = [
                {"type": "body", "parameters": [{"type": "text", "text": value} for value in body_params]}
            ]
        self._post(payload)
