"""
Requester confirmation and operator alerting.

Neither may mask the outcome it reports on: a confirmation failure is
logged and the run still completes, an alert failure is logged and the
original error still propagates.
"""

from __future__ import annotations

import os
import platform
import socket
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import requests

from ..config import AlertSettings
from ..logging_utils import LOG, mask_identifier
from ..metrics import ALERTS_SENT, MetricsRegistry
from ..shared import DispatchResult, ExtractedApplicant, TargetPosting
from .mailer import Mailer, OutboundMessage
from .templates import (
    alert_payload,
    alert_subject,
    alert_text,
    confirmation_html,
    confirmation_sms,
    confirmation_subject,
    confirmation_text,
)


class RequesterChannel(ABC):
    """The messaging channel the requester uploaded through."""

    @abstractmethod
    def send_text(self, identifier: str, text: str) -> None:
        ...


class LoggingRequesterChannel(RequesterChannel):
    """Logs outgoing texts; the real channel lives in the front end."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.messages: List[Tuple[str, str]] = []

    def send_text(self, identifier: str, text: str) -> None:
        LOG.info("Text to %s: %s", mask_identifier(identifier), text)
        with self._lock:
            self.messages.append((identifier, text))


class ConfirmationNotifier:
    def __init__(self, mailer: Mailer, channel: RequesterChannel, settings: Optional[AlertSettings] = None):
        self._mailer = mailer
        self._channel = channel
        self._settings = settings or AlertSettings()

    def confirm(
        self,
        requester_identifier: str,
        applicant: ExtractedApplicant,
        targets: Sequence[TargetPosting],
        results: Sequence[DispatchResult],
    ) -> bool:
        """
        Send exactly one confirmation: email when the applicant has an
        address, otherwise a text through the requester channel.

        Returns:
            True if the confirmation went out
        """
        sent = sum(1 for r in results if r.success)
        try:
            if applicant.email:
                self._mailer.send(
                    OutboundMessage(
                        sender=self._settings.confirmation_sender,
                        to=applicant.email,
                        subject=confirmation_subject(sent),
                        text=confirmation_text(applicant, targets, results),
                        html=confirmation_html(applicant, targets, results),
                    )
                )
            else:
                self._channel.send_text(requester_identifier, confirmation_sms(sent, len(results)))
        except Exception as e:
            LOG.error("Confirmation for %s failed: %s", mask_identifier(requester_identifier), e)
            return False
        LOG.info("Confirmation sent to %s (%d/%d sent)", mask_identifier(requester_identifier), sent, len(results))
        return True

    def reject(self, requester_identifier: str, text: str) -> bool:
        try:
            self._channel.send_text(requester_identifier, text)
        except Exception as e:
            LOG.error("Rejection message to %s failed: %s", mask_identifier(requester_identifier), e)
            return False
        return True


def environment_diagnostics(settings: AlertSettings) -> Dict[str, Any]:
    return {
        "environment": settings.environment,
        "host": socket.gethostname(),
        "pid": os.getpid(),
        "python": platform.python_version(),
        "threads": threading.active_count(),
    }


class OperatorAlerter:
    """Email (and optional webhook) alerts for failed runs."""

    def __init__(
        self,
        mailer: Mailer,
        settings: Optional[AlertSettings] = None,
        *,
        metrics: Optional[MetricsRegistry] = None,
        session: Optional[requests.Session] = None,
    ):
        self._mailer = mailer
        self._settings = settings or AlertSettings()
        self._metrics = metrics
        self._session = session

    def alert(
        self,
        error_type: str,
        requester_identifier: str,
        message: str,
        *,
        details: Optional[Mapping[str, Any]] = None,
        stack: Optional[str] = None,
    ) -> bool:
        """
        Notify the operator. Never raises.

        Returns:
            True if at least one alert channel accepted the alert
        """
        masked = mask_identifier(requester_identifier)
        merged: Dict[str, Any] = dict(details or {})
        merged.update(environment_diagnostics(self._settings))
        LOG.error("ALERT %s for %s: %s", error_type, masked, message)

        delivered = False
        if self._settings.admin_email:
            try:
                self._mailer.send(
                    OutboundMessage(
                        sender=self._settings.confirmation_sender,
                        to=self._settings.admin_email,
                        subject=alert_subject(error_type, masked),
                        text=alert_text(
                            error_type=error_type,
                            masked_requester=masked,
                            message=message,
                            details=merged,
                            stack=stack,
                        ),
                    )
                )
                delivered = True
            except Exception as e:
                LOG.error("Alert email failed: %s", e)

        if self._settings.webhook_url:
            delivered = self._post_webhook(
                alert_payload(error_type=error_type, masked_requester=masked, message=message, details=merged)
            ) or delivered

        if delivered and self._metrics:
            self._metrics.increment(ALERTS_SENT, label=error_type)
        return delivered

    def _post_webhook(self, payload: Dict[str, Any]) -> bool:
        poster = self._session or requests
        try:
            resp = poster.post(self._settings.webhook_url, json=payload, timeout=self._settings.alert_timeout_s)
        except requests.RequestException as e:
            LOG.error("Alert webhook failed: %s", e)
            return False
        if resp.status_code >= 400:
            LOG.error("Alert webhook returned HTTP %s", resp.status_code)
            return False
        return True
