# notifications.py
"""
Weekly WhatsApp nudge for onboarded users.

The template carries the first progressive-profile question, so a profile
still at awaiting_vision moves to awaiting_denomination once the nudge is out.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import requests

from db_io import StoreError, UserProfile, UserProfileStore, iso_timestamp, utcnow
from menu_agent import ProgressiveStage
from whatsapp_messaging import MetaWhatsAppClient

logger = logging.getLogger("notifications")


@dataclass
class NotificationSummary:
    sent: int = 0
    failed: int = 0
    skipped: bool = False

    @property
    def message(self) -> str:
        if self.skipped:
            return "WhatsApp messenger not configured; no notifications sent"
        return f"Sent {self.sent} notifications, {self.failed} failed"


class NotificationJob:
    def __init__(
        self,
        profiles: UserProfileStore,
        messenger: MetaWhatsAppClient,
        template: str,
        language: str = "en",
        interval_days: int = 7,
    ):
        self.profiles = profiles
        self.messenger = messenger
        self.template = template
        self.language = language
        self.interval_days = interval_days

    def run(self, now: Optional[datetime] = None) -> NotificationSummary:
        """Send the template to every profile idle for `interval_days`. Listing errors propagate."""
        if not self.messenger.enabled:
            logger.info("Notification job skipped: messenger disabled")
            return NotificationSummary(skipped=True)
        now = now or utcnow()
        due = self.profiles.list_due_for_notification(now - timedelta(days=self.interval_days))
        summary = NotificationSummary()
        for profile in due:
            if self._notify(profile, now):
                summary.sent += 1
            else:
                summary.failed += 1
        logger.info("Notification job finished: %s", summary.message)
        return summary

    def _notify(self, profile: UserProfile, now: datetime) -> bool:
        try:
            self.messenger.send_template(profile.wa_id, self.template, self.language, body_params=[profile.display_name])
        except requests.RequestException:
            logger.exception("Template send failed for %s", profile.wa_id)
            return False
        try:
            self.profiles.mark_notified(profile.wa_id, now)
            if profile.profile_data.progressive_stage == ProgressiveStage.AWAIT_VISION.value:
                profile.last_notified_at = iso_timestamp(now)
                profile.profile_data.progressive_stage = ProgressiveStage.AWAIT_DENOMINATION.value
                self.profiles.save(profile)
        except StoreError:
            # the message went out; the next run may nudge this user again
            logger.exception("Failed to record notification for %s", profile.wa_id)
        return True
