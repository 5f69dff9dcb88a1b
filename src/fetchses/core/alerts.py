"""Alert sinks: operator notifications for failed or virus-flagged messages.

Alerts are best-effort. A sink logs its own failures and never raises.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from fetchses.core.exceptions import ConfigurationError, TransportError
from fetchses.core.relay import SmtpRelay

if TYPE_CHECKING:
    from fetchses.config.settings import FetchSesSettings

logger = logging.getLogger(__name__)


class AlertCategory(str, Enum):
    ERROR = "error"
    VIRUS = "virus"


SUBJECTS = {
    AlertCategory.ERROR: "fetchses delivery error",
    AlertCategory.VIRUS: "fetchses virus alert",
}


class AlertSink(Protocol):
    def notify(self, category: AlertCategory, body: str) -> None: ...


class NullAlertSink:
    """Drop every alert."""

    def notify(self, category: AlertCategory, body: str) -> None:
        logger.debug("Alerting disabled, dropping %s alert", category.value)


class SmtpAlertSink:
    """Mail alerts to operators through the local relay."""

    def __init__(self, relay: SmtpRelay, alert_from: str, alert_to: Sequence[str]) -> None:
        self._relay = relay
        self._from = alert_from
        self._to = list(alert_to)

    def notify(self, category: AlertCategory, body: str) -> None:
        if not self._to or not self._from:
            logger.debug("Alert recipients not configured, dropping %s alert", category.value)
            return
        try:
            self._relay.send(self._from, self._to, self.build_message(category, body))
        except TransportError as e:
            logger.error("failed to send alert: %s", e)

    def build_message(self, category: AlertCategory, body: str) -> bytes:
        msg = EmailMessage()
        msg["From"] = self._from
        msg["To"] = ", ".join(self._to)
        msg["Subject"] = SUBJECTS.get(category, "fetchses alert")
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(domain=self._from.rpartition("@")[2] or None)
        msg.set_content(body)
        return msg.as_bytes()


class ScriptAlertSink:
    """Run an external notification script with the alert body on stdin.

    The script is called as ``<script> <category>``.
    """

    def __init__(self, script: Path, *, timeout_seconds: float = 60.0) -> None:
        self._script = script
        self._timeout = timeout_seconds

    def notify(self, category: AlertCategory, body: str) -> None:
        # run() feeds stdin and drains stdout/stderr concurrently via communicate()
        try:
            completed = subprocess.run(
                [str(self._script), category.value],
                input=body.encode("utf-8"),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.error("alert script %s timed out after %.0fs", self._script, self._timeout)
            return
        except OSError as e:
            logger.error("failed to run alert script %s: %s", self._script, e)
            return

        for line in completed.stdout.decode("utf-8", "replace").splitlines():
            logger.info("%s: %s", self._script.name, line)
        if completed.returncode != 0:
            logger.error(
                "alert script %s exited with status %d", self._script, completed.returncode
            )


def build_alert_sink(settings: FetchSesSettings, relay: SmtpRelay | None = None) -> AlertSink:
    """Select the alert strategy named by ``settings.alert_method``."""
    method = settings.alert_method
    if method == "smtp":
        relay = relay or SmtpRelay(
            settings.smtp_server, timeout_seconds=settings.smtp_timeout_seconds
        )
        return SmtpAlertSink(relay, settings.alert_from, settings.alert_to)
    if method == "script":
        if settings.alert_script is None:
            raise ConfigurationError("alert_method 'script' requires alert_script")
        return ScriptAlertSink(settings.alert_script, timeout_seconds=settings.alert_timeout_seconds)
    if method == "none":
        return NullAlertSink()
    raise ConfigurationError(f"Unknown alert method: {method!r}")
