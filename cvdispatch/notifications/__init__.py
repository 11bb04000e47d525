"""
Outbound notifications: recruiter dispatch, confirmations and alerts.
"""

from .alerts import ConfirmationNotifier, LoggingRequesterChannel, OperatorAlerter, RequesterChannel
from .dispatch import (
    REASON_ALREADY_DISPATCHED,
    REASON_CANCELLED,
    REASON_DOCUMENT_MISSING,
    REASON_NO_CONTACT,
    REASON_NOT_PERSISTED,
    DispatchBatcher,
)
from .mailer import Attachment, LoggingMailer, Mailer, OutboundMessage, SmtpMailer

__all__ = [
    "Attachment",
    "ConfirmationNotifier",
    "DispatchBatcher",
    "LoggingMailer",
    "LoggingRequesterChannel",
    "Mailer",
    "OperatorAlerter",
    "OutboundMessage",
    "REASON_ALREADY_DISPATCHED",
    "REASON_CANCELLED",
    "REASON_DOCUMENT_MISSING",
    "REASON_NO_CONTACT",
    "REASON_NOT_PERSISTED",
    "RequesterChannel",
    "SmtpMailer",
]
