"""Operator alert sink.

Alerts are fire-and-forget: `notify` logs immediately and hands the e-mail
to a daemon thread, so the message pipeline and the session supervisor
never block on SMTP. Each alert type is sent at most once per hour.
"""

from __future__ import annotations

import smtplib
import threading
import time
from email.mime.text import MIMEText
from typing import Callable

from lardigital.infra.settings import SmtpConfig
from lardigital.observability.logging import get_logger
from lardigital.observability.redaction import safe_log_context

logger = get_logger(__name__)

ALERT_COOLDOWN_SECONDS = 3600
SUBJECT_PREFIX = "[Lar Digital]"


class OperatorAlerts:
    """Rate-limited operator notifications (log + optional e-mail)."""

    def __init__(
        self,
        smtp: SmtpConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._smtp = smtp or SmtpConfig()
        self._clock = clock
        self._last_sent: dict[str, float] = {}
        self._lock = threading.Lock()

    def notify(self, alert_type: str, subject: str, body: str = "") -> bool:
        """Raise an operator alert.

        Returns:
            True if the alert was dispatched, False if suppressed by the
            per-type cooldown.
        """
        with self._lock:
            now = self._clock()
            last = self._last_sent.get(alert_type)
            if last is not None and now - last < ALERT_COOLDOWN_SECONDS:
                logger.info(
                    "operator alert suppressed",
                    extra={"extra_fields": safe_log_context(alert_type=alert_type)},
                )
                return False
            self._last_sent[alert_type] = now

        logger.error(
            "operator alert",
            extra={
                "extra_fields": safe_log_context(alert_type=alert_type, subject=subject)
            },
        )

        if self._smtp.configured:
            threading.Thread(
                target=self._send_email,
                args=(f"{SUBJECT_PREFIX} {subject}", body or subject),
                daemon=True,
            ).start()
        return True

    def _send_email(self, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = f"Lar Digital <{self._smtp.user}>"
        msg["To"] = self._smtp.alert_to

        smtp_cls = smtplib.SMTP_SSL if self._smtp.port == 465 else smtplib.SMTP
        try:
            with smtp_cls(self._smtp.host, self._smtp.port, timeout=15) as server:
                if smtp_cls is smtplib.SMTP:
                    server.starttls()
                server.login(self._smtp.user, self._smtp.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(
                "alert email failed",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
