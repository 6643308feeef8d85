# email_service.py
"""
Resend transactional email helper.

Sends the submitted-application summary to the funder inbox with the
applicant as reply-to. Uses the REST endpoint https://api.resend.com/emails.
"""
from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import requests

from bursary_matching import format_rands, income_bracket_label
from db_io import BursaryApplication, parse_timestamp, utcnow

logger = logging.getLogger("email_service")

RESEND_URL = "https://api.resend.com/emails"


@dataclass
class EmailResult:
    success: bool
    email_id: Optional[str] = None
    error: Optional[str] = None


class ResendEmailClient:
    def __init__(self, api_key: Optional[str], sender: str, recipient: Optional[str], timeout: int = 10):
        self.api_key = api_key
        self.sender = sender
        self.recipient = recipient
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.recipient)

    def send_application(self, application: BursaryApplication) -> EmailResult:
        payload = {
            "from": self.sender,
            "to": [self.recipient],
            "subject": f"🎓 New Bursary Application - {application.full_name}",
            "html": render_application_html(application),
        }
        if application.email:
            payload["reply_to"] = application.email
        if not self.enabled:
            logger.info("[dry-run] application email for %s (%s)", application.wa_id, application.application_ref)
            return EmailResult(success=False, error="email not configured")
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            response = requests.post(RESEND_URL, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("Resend request failed: %s", exc)
            return EmailResult(success=False, error=str(exc))
        if not response.ok:
            logger.error("Resend send failed - status=%s body=%s", response.status_code, response.text)
            return EmailResult(success=False, error=f"HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError:
            # accepted by Resend; only the id is unavailable
            logger.warning("Resend accepted the email but returned no JSON body")
            data = None
        email_id = data.get("id") if isinstance(data, dict) else None
        logger.info("Application email sent: %s", email_id)
        return EmailResult(success=True, email_id=email_id)


def _field(label: str, value) -> str:
    shown = "Not provided" if value is None or value == "" else value
    return f'<div class="field"><span class="label">{label}:</span><span class="value">{html.escape(str(shown))}</span></div>'

def render_application_html(app: BursaryApplication, submitted: Optional[datetime] = None) -> str:
    e = html.escape
    matches = "".join(
        f'<div class="bursary-match"><strong>{e(m.name)}</strong> ({round(m.match_score * 100)}% match)<br>'
        f"<small>{e(m.reason)}</small></div>"
        for m in app.matched_bursaries
    )
    recommended = ", ".join(e(m.name) for m in app.matched_bursaries) or "No matches yet"
    average = f"{app.academic_average:g}%" if app.academic_average is not None else None
    return f"""<!DOCTYPE html>
<html>
<head>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
    .container {{ max-width: 800px; margin: 0 auto; padding: 20px; }}
    .header {{ background: #667eea; color: white; padding: 30px; border-radius: 10px 10px 0 0; }}
    .section {{ background: white; padding: 20px; margin: 20px 0; border-radius: 8px; }}
    .section-title {{ color: #667eea; font-size: 18px; font-weight: bold; margin-bottom: 15px; }}
    .label {{ font-weight: bold; color: #555; }}
    .value {{ margin-left: 10px; }}
    .bursary-match {{ background: #dfe6e9; padding: 15px; margin: 10px 0; border-left: 4px solid #0984e3; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>🎓 New Bursary Application</h1>
      <p>Application Reference: <strong>{e(app.application_ref or "PENDING")}</strong></p>
      <p>Submitted: {e((submitted or parse_timestamp(app.submitted_at) or utcnow()).strftime("%Y-%m-%d %H:%M UTC"))}</p>
    </div>
    <div class="section">
      <div class="section-title">👤 Personal Information</div>
      {_field("Full Name", app.full_name)}
      {_field("Email", app.email)}
      {_field("Phone", app.phone_number or app.wa_id)}
      {_field("Province", app.province)}
    </div>
    <div class="section">
      <div class="section-title">🎓 Academic Profile</div>
      {_field("Academic Level", app.academic_level)}
      {_field("Field of Study", app.field_of_study)}
      {_field("Academic Average", average)}
    </div>
    <div class="section">
      <div class="section-title">💰 Financial Information</div>
      {_field("Household Income", format_rands(app.household_income) + "/year")}
      {_field("Income Bracket", income_bracket_label(app.household_income))}
    </div>
    <div class="section">
      <div class="section-title">✍️ Motivation</div>
      <p>{e(app.motivation_text or "Not provided")}</p>
    </div>
    <div class="section">
      <div class="section-title">🎯 Eligibility Assessment</div>
      <p><strong>Score: {app.eligibility_score if app.eligibility_score is not None else "n/a"}/100</strong></p>
      <p><strong>🏆 Recommended for:</strong> {recommended}</p>
    </div>
    <div class="section">
      <div class="section-title">🎁 Matched Bursaries</div>
      {matches}
    </div>
  </div>
</body>
</html>
"""
