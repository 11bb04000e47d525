"""
Outbound email transport.

SmtpMailer opens one connection per message, so a single instance can be
shared by every dispatch thread. LoggingMailer is used for dry runs and
keeps what it would have sent.
"""

from __future__ import annotations

import mimetypes
import smtplib
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.message import EmailMessage
from pathlib import Path
from typing import List, Optional

from ..config import SmtpSettings
from ..errors import DispatchError
from ..logging_utils import LOG


@dataclass(frozen=True)
class Attachment:
    filename: str
    path: Path
    content_type: str = ""


@dataclass(frozen=True)
class OutboundMessage:
    sender: str
    to: str
    subject: str
    text: str
    html: Optional[str] = None
    reply_to: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)


def build_email(message: OutboundMessage) -> EmailMessage:
    email = EmailMessage()
    email["From"] = message.sender
    email["To"] = message.to
    email["Subject"] = message.subject
    if message.reply_to:
        email["Reply-To"] = message.reply_to
    email.set_content(message.text)
    if message.html:
        email.add_alternative(message.html, subtype="html")
    for attachment in message.attachments:
        ctype = attachment.content_type or mimetypes.guess_type(attachment.filename)[0] or "application/octet-stream"
        maintype, _, subtype = ctype.partition("/")
        email.add_attachment(
            attachment.path.read_bytes(),
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )
    return email


class Mailer(ABC):
    @abstractmethod
    def send(self, message: OutboundMessage) -> None:
        """
        Deliver one message.

        Raises:
            DispatchError: Delivery failed
        """
        ...


class SmtpMailer(Mailer):
    """Delivers through an SMTP relay."""

    def __init__(self, settings: SmtpSettings):
        self._settings = settings

    def send(self, message: OutboundMessage) -> None:
        try:
            email = build_email(message)
        except OSError as e:
            raise DispatchError(f"Attachment could not be read: {e}") from e

        s = self._settings
        try:
            with smtplib.SMTP(s.host, s.port, timeout=s.timeout_s) as smtp:
                if s.use_starttls:
                    smtp.starttls()
                if s.user and s.password:
                    smtp.login(s.user, s.password)
                smtp.send_message(email)
        except (smtplib.SMTPException, OSError) as e:
            raise DispatchError(f"SMTP delivery to {message.to} failed: {e}") from e
        LOG.debug("Delivered '%s' to %s", message.subject, message.to)


class LoggingMailer(Mailer):
    """Logs messages instead of sending them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sent: List[OutboundMessage] = []

    def send(self, message: OutboundMessage) -> None:
        LOG.info(
            "[dry-run] would send '%s' to %s (%d attachment(s))",
            message.subject, message.to, len(message.attachments),
        )
        with self._lock:
            self.sent.append(message)
