"""Local SMTP relay for decrypted messages."""

from __future__ import annotations

import logging
import smtplib
from collections.abc import Sequence

from fetchses.core.exceptions import TransportError
from fetchses.core.models import DeliveryOutcome

logger = logging.getLogger(__name__)

DEFAULT_SMTP_PORT = 25


def parse_server_address(address: str) -> tuple[str, int]:
    """Split ``host[:port]`` into host and port.

    Raises:
        ValueError: If the port is not an integer.
    """
    host, sep, port = address.strip().rpartition(":")
    if not sep:
        return port or "localhost", DEFAULT_SMTP_PORT
    return host or "localhost", int(port)


class SmtpRelay:
    """Submit raw messages to a local mail transfer agent.

    A connection is opened per submission. The relay never retries; the
    caller decides what to do with a failed outcome.
    """

    def __init__(self, server: str = "localhost:25", *, timeout_seconds: float = 30.0) -> None:
        self._host, self._port = parse_server_address(server)
        self._timeout = timeout_seconds

    @property
    def server(self) -> str:
        return f"{self._host}:{self._port}"

    def deliver(
        self, envelope_from: str, recipients: Sequence[str], payload: bytes
    ) -> DeliveryOutcome:
        """Hand a message to the transport with an explicit envelope.

        The payload is sent unmodified as the DATA of the transaction.

        Returns:
            DeliveryOutcome; ``delivered`` is False with the cause on failure.
        """
        try:
            self.send(envelope_from, recipients, payload)
        except TransportError as e:
            logger.debug("Submission to %s failed: %s", self.server, e)
            return DeliveryOutcome.failed(str(e))
        return DeliveryOutcome.ok()

    def send(self, envelope_from: str, recipients: Sequence[str], payload: bytes) -> None:
        """Submit a message, raising on any refusal.

        A partially refused recipient list counts as a failure so the message
        still reaches quarantine for the refused addresses.

        Raises:
            TransportError: On connection, protocol or recipient failures.
        """
        if not recipients:
            raise TransportError("no envelope recipients")
        # internationalized addresses need the SMTPUTF8 extension
        mail_options = []
        if not all(a.isascii() for a in (envelope_from, *recipients)):
            mail_options.append("SMTPUTF8")
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
                refused = smtp.sendmail(
                    envelope_from, list(recipients), payload, mail_options=mail_options
                )
        except smtplib.SMTPRecipientsRefused as e:
            raise TransportError(
                f"all recipients refused by {self.server}: {_format_refused(e.recipients)}"
            ) from e
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"SMTP submission to {self.server} failed: {e}") from e
        except UnicodeError as e:
            raise TransportError(
                f"SMTP submission to {self.server} failed: cannot encode address: {e}"
            ) from e

        if refused:
            raise TransportError(
                f"recipients refused by {self.server}: {_format_refused(refused)}"
            )
        logger.debug(
            "Submitted message from %s to %s via %s", envelope_from, ", ".join(recipients), self.server
        )


def _format_refused(refused: dict[str, tuple[int, bytes]]) -> str:
    parts = []
    for address, (code, reply) in refused.items():
        text = reply.decode("utf-8", "replace") if isinstance(reply, bytes) else str(reply)
        parts.append(f"{address} ({code} {text})")
    return ", ".join(parts)
