from unittest import mock

import requests

from bursary_matching import match_bursaries
from db_io import BursaryApplication
from email_service import RESEND_URL, ResendEmailClient, render_application_html


def _application():
    app = BursaryApplication(
        wa_id="27820000001",
        full_name="Lerato <b>Mokoena</b>",
        email="lerato@example.com",
        province="Gauteng",
        is_sa_citizen=True,
        academic_level="university",
        field_of_study="STEM",
        academic_average=78,
        household_income=200000,
        motivation_text="I love engineering & maths",
        eligibility_score=100,
        application_ref="FME-LM-ABC123",
    )
    app.matched_bursaries = match_bursaries(app)
    return app


def test_html_is_escaped_and_complete():
    html = render_application_html(_application())
    assert "Lerato &lt;b&gt;Mokoena&lt;/b&gt;" in html
    assert "<b>Mokoena</b>" not in html
    assert "I love engineering &amp; maths" in html
    assert "FME-LM-ABC123" in html
    assert "Siemens Bursary" in html
    assert "78%" in html


def test_disabled_client_is_a_dry_run():
    client = ResendEmailClient(None, "from@futureme.co.za", None)
    with mock.patch("email_service.requests.post") as post:
        result = client.send_application(_application())
    post.assert_not_called()
    assert not result.success


def test_successful_send_sets_reply_to():
    client = ResendEmailClient("key", "from@futureme.co.za", "funders@futureme.co.za")
    response = mock.Mock(ok=True)
    response.json.return_value = {"id": "re_123"}
    with mock.patch("email_service.requests.post", return_value=response) as post:
        result = client.send_application(_application())
    assert result.success
    assert result.email_id == "re_123"
    assert post.call_args.args[0] == RESEND_URL
    payload = post.call_args.kwargs["json"]
    assert payload["to"] == ["funders@futureme.co.za"]
    assert payload["reply_to"] == "lerato@example.com"


def test_http_and_transport_errors_return_failure():
    client = ResendEmailClient("key", "from@futureme.co.za", "funders@futureme.co.za")
    bad = mock.Mock(ok=False, status_code=422, text="invalid")
    with mock.patch("email_service.requests.post", return_value=bad):
        assert client.send_application(_application()).error == "HTTP 422"
    with mock.patch("email_service.requests.post", side_effect=requests.ConnectionError("down")):
        result = client.send_application(_application())
    assert not result.success
    assert "down" in result.error


def test_accepted_send_without_json_body_is_success():
    client = ResendEmailClient("key", "from@futureme.co.za", "funders@futureme.co.za")
    response = mock.Mock(ok=True)
    response.json.side_effect = ValueError("Expecting value")
    with mock.patch("email_service.requests.post", return_value=response):
        result = client.send_application(_application())
    assert result.success
    assert result.email_id is None


def test_html_shows_recorded_submission_time():
    app = _application()
    app.submitted_at = "2025-03-04T08:15:00+00:00"
    assert "Submitted: 2025-03-04 08:15 UTC" in render_application_html(app)
