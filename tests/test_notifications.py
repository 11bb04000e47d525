"""Tests for confirmations, operator alerts and the mail transport."""

import smtplib
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from cvdispatch.config import AlertSettings, SmtpSettings
from cvdispatch.errors import DispatchError
from cvdispatch.metrics import ALERTS_SENT
from cvdispatch.notifications import (
    Attachment,
    ConfirmationNotifier,
    LoggingMailer,
    LoggingRequesterChannel,
    OperatorAlerter,
    OutboundMessage,
    SmtpMailer,
)
from cvdispatch.notifications.mailer import build_email
from cvdispatch.notifications.templates import (
    alert_payload,
    alert_subject,
    attachment_filename,
    confirmation_subject,
    confirmation_text,
    recruiter_html,
    recruiter_subject,
    rejection_text,
)
from cvdispatch.shared import ApplicationRecord, DispatchResult, ExtractedApplicant, TargetPosting

from conftest import FailingMailer

APPLICANT = ExtractedApplicant(name="Jane A. Okoro", email="jane.okoro@mail.com", phone="+2348012345678")
TARGETS = [
    TargetPosting(id="job-1", title="Accountant", company="Acme Ltd"),
    TargetPosting(id="job-2", title="Auditor", company="Bolt"),
]
RESULTS = [DispatchResult("job-1", True), DispatchResult("job-2", False, "No recipient contact provided")]


class TestTemplates:
    def test_recruiter_subject(self):
        assert recruiter_subject(TARGETS[0], APPLICANT) == "Application for Accountant Position - Jane A. Okoro"

    def test_attachment_filename(self):
        assert attachment_filename("Jane Okoro", "pdf") == "Jane_Okoro_CV.pdf"
        assert attachment_filename("", "docx") == "Applicant_CV.docx"

    def test_recruiter_html_escapes(self):
        target = TargetPosting(id="job-1", title="R&D <Lead>", company="Acme", salary="N500,000")
        record = ApplicationRecord(
            id="rec-1", request_id="r", requester_identifier="x", target_id="job-1", cv_snapshot="", match_score=70
        )
        html = recruiter_html(target, APPLICANT, "Hi <there>", record)
        assert "R&amp;D &lt;Lead&gt;" in html
        assert "Hi &lt;there&gt;" in html
        assert "N500,000" in html
        assert "70%" in html

    def test_confirmation_subject_counts_successes(self):
        assert confirmation_subject(3) == "Application Confirmation - 3 Jobs Applied Successfully"

    def test_confirmation_text_lists_outcomes(self):
        text = confirmation_text(APPLICANT, TARGETS, RESULTS)
        assert "sent to 1 of 2 employers" in text
        assert "Accountant at Acme Ltd: Sent" in text
        assert "Auditor at Bolt: Not sent (No recipient contact provided)" in text

    def test_rejection_text_carries_reason(self):
        assert "Missing name." in rejection_text("Missing name.")

    def test_alert_subject_and_payload(self):
        assert alert_subject("DATABASE_ERROR", "234801***") == "Critical Error: DATABASE_ERROR - 234801***"
        payload = alert_payload(
            error_type="DATABASE_ERROR", masked_requester="234801***", message="m", details={"path": Path("/x")}
        )
        assert payload["details"] == {"path": "/x"}


class TestConfirmationNotifier:
    def test_email_when_applicant_has_address(self):
        mailer, channel = LoggingMailer(), LoggingRequesterChannel()
        ok = ConfirmationNotifier(mailer, channel).confirm("2348012345678", APPLICANT, TARGETS, RESULTS)
        assert ok
        assert len(mailer.sent) == 1
        assert mailer.sent[0].to == "jane.okoro@mail.com"
        assert mailer.sent[0].subject == "Application Confirmation - 1 Jobs Applied Successfully"
        assert channel.messages == []

    def test_text_when_no_email(self):
        mailer, channel = LoggingMailer(), LoggingRequesterChannel()
        applicant = ExtractedApplicant(name="Jane Okoro", phone="08012345678")
        ConfirmationNotifier(mailer, channel).confirm("2348012345678", applicant, TARGETS, RESULTS)
        assert mailer.sent == []
        assert len(channel.messages) == 1
        identifier, text = channel.messages[0]
        assert identifier == "2348012345678"
        assert "1 of 2" in text

    def test_failure_does_not_raise(self):
        mailer = FailingMailer(fail_for={"jane.okoro@mail.com"})
        assert not ConfirmationNotifier(mailer, LoggingRequesterChannel()).confirm("x", APPLICANT, TARGETS, RESULTS)

    def test_reject_sends_text(self):
        channel = LoggingRequesterChannel()
        assert ConfirmationNotifier(LoggingMailer(), channel).reject("2348012345678", "Could not read your CV.")
        assert channel.messages == [("2348012345678", "Could not read your CV.")]


class TestOperatorAlerter:
    def test_email_alert(self, metrics):
        mailer = LoggingMailer()
        alerter = OperatorAlerter(mailer, AlertSettings(admin_email="ops@smartcv.example"), metrics=metrics)
        assert alerter.alert("DATABASE_ERROR", "2348012345678", "disk full", details={"stage": "records"}, stack="Trace")

        message = mailer.sent[0]
        assert message.to == "ops@smartcv.example"
        assert message.subject == "Critical Error: DATABASE_ERROR - 234801***"
        assert "2348012345678" not in message.text
        assert "stage: records" in message.text
        assert "environment: development" in message.text
        assert "Trace" in message.text
        assert metrics.snapshot() == {f"{ALERTS_SENT}:DATABASE_ERROR": 1}

    def test_no_channels_configured(self):
        mailer = LoggingMailer()
        assert not OperatorAlerter(mailer, AlertSettings()).alert("X", "1", "m")
        assert mailer.sent == []

    def test_email_failure_swallowed(self):
        mailer = FailingMailer(fail_for={"ops@smartcv.example"})
        alerter = OperatorAlerter(mailer, AlertSettings(admin_email="ops@smartcv.example"))
        assert alerter.alert("X", "1", "m") is False

    def test_webhook_posted(self):
        session = MagicMock()
        session.post.return_value = MagicMock(status_code=200)
        settings = AlertSettings(webhook_url="https://hooks.example/alert", alert_timeout_s=3.0)
        assert OperatorAlerter(LoggingMailer(), settings, session=session).alert("X", "2348012345678", "boom")

        args, kwargs = session.post.call_args
        assert args[0] == "https://hooks.example/alert"
        assert kwargs["timeout"] == 3.0
        assert kwargs["json"]["errorType"] == "X"
        assert kwargs["json"]["requester"] == "234801***"

    def test_webhook_error_swallowed(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        settings = AlertSettings(webhook_url="https://hooks.example/alert")
        assert OperatorAlerter(LoggingMailer(), settings, session=session).alert("X", "1", "m") is False

    def test_webhook_http_error(self):
        session = MagicMock()
        session.post.return_value = MagicMock(status_code=500)
        settings = AlertSettings(webhook_url="https://hooks.example/alert")
        assert OperatorAlerter(LoggingMailer(), settings, session=session).alert("X", "1", "m") is False

    def test_module_level_requests_used_without_session(self):
        settings = AlertSettings(webhook_url="https://hooks.example/alert")
        with patch("cvdispatch.notifications.alerts.requests.post") as mock_post:
            mock_post.return_value = MagicMock(status_code=204)
            assert OperatorAlerter(LoggingMailer(), settings).alert("X", "1", "m")
        mock_post.assert_called_once()


class TestMailer:
    def test_build_email_with_attachment(self, tmp_path):
        cv = tmp_path / "cv.pdf"
        cv.write_bytes(b"%PDF-1.4 test")
        email = build_email(
            OutboundMessage(
                sender="a@x.ng",
                to="b@y.ng",
                subject="Hello",
                text="plain",
                html="<p>html</p>",
                reply_to="c@z.ng",
                attachments=[Attachment("Jane_Okoro_CV.pdf", cv)],
            )
        )
        assert email["Reply-To"] == "c@z.ng"
        attachments = list(email.iter_attachments())
        assert attachments[0].get_filename() == "Jane_Okoro_CV.pdf"
        assert attachments[0].get_content_type() == "application/pdf"
        assert attachments[0].get_content() == b"%PDF-1.4 test"

    def test_smtp_send(self):
        settings = SmtpSettings(host="smtp.test", port=2525, user="u", password="p")
        with patch("cvdispatch.notifications.mailer.smtplib.SMTP") as mock_smtp:
            conn = mock_smtp.return_value.__enter__.return_value
            SmtpMailer(settings).send(OutboundMessage(sender="a@x.ng", to="b@y.ng", subject="s", text="t"))
        mock_smtp.assert_called_once_with("smtp.test", 2525, timeout=20.0)
        conn.starttls.assert_called_once()
        conn.login.assert_called_once_with("u", "p")
        conn.send_message.assert_called_once()

    def test_smtp_failure_is_dispatch_error(self):
        with patch("cvdispatch.notifications.mailer.smtplib.SMTP") as mock_smtp:
            mock_smtp.return_value.__enter__.return_value.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
            with pytest.raises(DispatchError):
                SmtpMailer(SmtpSettings()).send(OutboundMessage(sender="a@x.ng", to="b@y.ng", subject="s", text="t"))

    def test_missing_attachment_is_dispatch_error(self, tmp_path):
        message = OutboundMessage(
            sender="a@x.ng", to="b@y.ng", subject="s", text="t",
            attachments=[Attachment("cv.pdf", tmp_path / "missing.pdf")],
        )
        with pytest.raises(DispatchError):
            SmtpMailer(SmtpSettings()).send(message)
