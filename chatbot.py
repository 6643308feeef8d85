# chatbot.py
"""
FutureMe WhatsApp bot HTTP surface.

- POST /webhook              ManyChat or WhatsApp Cloud API message, answered synchronously
- OPTIONS /webhook           CORS preflight
- POST /send-notifications   weekly template nudge (cron)
- GET /healthz

Integrates with:
    - brain.Brain (routing + agents)
    - db_io stores on Supabase
    - whatsapp_messaging.MetaWhatsAppClient for outbound templates
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from mangum import Mangum
from supabase import Client, create_client

import settings
from brain import Brain
from db_io import ApplicationStore, SessionStore, StoreError, SuggestionStore, UserProfileStore
from email_service import ResendEmailClient
from intent_analyzer import IntentAnalyzer
from llm_client import OpenAIResponder
from notifications import NotificationJob
from whatsapp_messaging import MetaWhatsAppClient, PayloadError, format_reply, parse_inbound

# --- Configuration & logging ---
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger("futureme.chatbot")

app = FastAPI(title="FutureMe WhatsApp Bot", version="1.0.0")
_lambda_adapter = Mangum(app)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

messenger = MetaWhatsAppClient(settings.META_ACCESS_TOKEN, settings.WHATSAPP_PHONE_NUMBER_ID)
responder = OpenAIResponder(settings.OPENAI_API_KEY, settings.OPENAI_MODEL)
email_client = ResendEmailClient(settings.RESEND_API_KEY, settings.APPLICATION_EMAIL_FROM, settings.APPLICATION_EMAIL_TO)


# ---------------------------------------------------------------------------
# Service wiring (built on first use so imports never need credentials)
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_supabase() -> Client:
    if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
        raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set")
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)

@lru_cache(maxsize=1)
def get_brain() -> Brain:
    client = get_supabase()
    return Brain(
        sessions=SessionStore(client, settings.SESSION_TABLE_NAME),
        profiles=UserProfileStore(client, settings.USER_TABLE_NAME),
        applications=ApplicationStore(client, settings.APPLICATION_TABLE_NAME),
        suggestions=SuggestionStore(client, settings.SUGGESTION_TABLE_NAME),
        analyzer=IntentAnalyzer(responder),
        responder=responder,
        email_client=email_client,
        history_limit=settings.HISTORY_LIMIT,
    )

@lru_cache(maxsize=1)
def get_notification_job() -> NotificationJob:
    return NotificationJob(
        profiles=UserProfileStore(get_supabase(), settings.USER_TABLE_NAME),
        messenger=messenger,
        template=settings.NOTIFICATION_TEMPLATE,
        language=settings.NOTIFICATION_TEMPLATE_LANGUAGE,
        interval_days=settings.NOTIFICATION_INTERVAL_DAYS,
    )


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.exception_handler(RequestValidationError)
def invalid_request(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": "Invalid request body"}, status_code=400, headers=CORS_HEADERS)

@app.exception_handler(PayloadError)
def invalid_payload(request: Request, exc: PayloadError):
    logger.warning("Rejected webhook payload: %s", exc)
    return JSONResponse({"error": str(exc)}, status_code=400, headers=CORS_HEADERS)


# ---------------------------------------------------------------------------
# Webhook endpoints
# ---------------------------------------------------------------------------

@app.options("/webhook")
def webhook_preflight():
    return Response(status_code=200, headers=CORS_HEADERS)

@app.post("/webhook")
def receive_webhook(body: Any = Body(default=None), brain: Brain = Depends(get_brain)):
    inbound = parse_inbound(body)
    logger.info("Inbound %s message from %s (%s)", inbound.channel, inbound.wa_id, inbound.message_type)
    reply = brain.process_message(inbound)
    return JSONResponse(format_reply(inbound, reply.text, reply.debug_info()), headers=CORS_HEADERS)

@app.post("/send-notifications")
def send_notifications(
    authorization: Optional[str] = Header(default=None),
    job: NotificationJob = Depends(get_notification_job),
):
    if settings.CRON_SECRET and authorization != f"Bearer {settings.CRON_SECRET}":
        return JSONResponse({"success": False, "error": "Unauthorized"}, status_code=401)
    try:
        summary = job.run()
    except StoreError:
        logger.exception("Notification job failed")
        return JSONResponse({"success": False, "error": "Could not load profiles"}, status_code=500)
    return {"success": True, "sent": summary.sent, "failed": summary.failed, "message": summary.message}

@app.get("/healthz")
def healthcheck():
    return {
        "status": "ok",
        "messenger_enabled": messenger.enabled,
        "llm_enabled": responder.enabled,
        "email_enabled": email_client.enabled,
    }

# ---------------------------------------------------------------------------
# Local runner
# ---------------------------------------------------------------------------

def run():
    import uvicorn
    uvicorn.run("chatbot:app", host="0.0.0.0", port=int(os.environ.get("PORT", 8000)), reload=bool(int(os.environ.get("RELOAD", "0"))))

def lambda_handler(event, context):
    return _lambda_adapter(event, context)

if __name__ == "__main__":
    run()
