# settings.py
"""
Environment-driven configuration for the FutureMe bot.

Values are read once at import. `.env.local` (then `.env`) is loaded first so
local runs pick up credentials without exporting them.
"""
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv(".env.local")
load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Datastore
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
USER_TABLE_NAME = os.getenv("USER_TABLE_NAME", "user_profiles")
SESSION_TABLE_NAME = os.getenv("SESSION_TABLE_NAME", "chat_sessions")
APPLICATION_TABLE_NAME = os.getenv("APPLICATION_TABLE_NAME", "bursary_applications")
SUGGESTION_TABLE_NAME = os.getenv("SUGGESTION_TABLE_NAME", "suggestions")
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "20"))

# LLM
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

# Email
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
APPLICATION_EMAIL_FROM = os.getenv("APPLICATION_EMAIL_FROM", "FutureMe Applications <applications@futureme.co.za>")
APPLICATION_EMAIL_TO = os.getenv("APPLICATION_EMAIL_TO")

# WhatsApp outbound
META_ACCESS_TOKEN = os.getenv("META_ACCESS_TOKEN")
WHATSAPP_PHONE_NUMBER_ID = os.getenv("WHATSAPP_PHONE_NUMBER_ID")
NOTIFICATION_TEMPLATE = os.getenv("NOTIFICATION_TEMPLATE", "weekly_drip")
NOTIFICATION_TEMPLATE_LANGUAGE = os.getenv("NOTIFICATION_TEMPLATE_LANGUAGE", "en")
NOTIFICATION_INTERVAL_DAYS = int(os.getenv("NOTIFICATION_INTERVAL_DAYS", "7"))
CRON_SECRET = os.getenv("CRON_SECRET")
