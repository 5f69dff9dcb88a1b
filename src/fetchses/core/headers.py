"""Header extraction: envelope sender, serviced-domain recipients, virus verdict."""

from __future__ import annotations

import logging
import re
from email import policy
from email.message import Message
from email.parser import BytesHeaderParser
from email.utils import getaddresses

from fetchses.core.exceptions import (
    InvalidSenderError,
    MalformedMessageError,
    NoRecipientsError,
)
from fetchses.core.models import ExtractedHeaders, VirusVerdict

logger = logging.getLogger(__name__)

VIRUS_VERDICT_HEADER = "X-SES-Virus-Verdict"


class HeaderExtractor:
    """Reads the header block of a decrypted message into ExtractedHeaders."""

    def __init__(self) -> None:
        self._parser = BytesHeaderParser(policy=policy.compat32)

    def extract(self, payload: bytes, domain: str) -> ExtractedHeaders:
        """Extract the sender, recipients and virus verdict of a message.

        Recipients come from the To header, restricted to addresses whose
        domain contains ``domain``. When none qualify, the first (topmost)
        Received header is searched for ``for <address@domain>``.

        Args:
            payload: Full decrypted RFC 822 message.
            domain: Serviced mail domain.

        Returns:
            ExtractedHeaders with lower-cased, de-duplicated recipients.

        Raises:
            MalformedMessageError: If no header block can be parsed.
            InvalidSenderError: If From is not exactly one mailbox.
            NoRecipientsError: If no serviced-domain recipient is found.
        """
        domain = domain.strip().lower()
        message = self._parse(payload)

        verdict = VirusVerdict.from_header(_header_value(message, VIRUS_VERDICT_HEADER))
        sender = self._parse_sender(message, verdict)

        recipients = self._recipients_from_to(message, domain)
        if not recipients:
            fallback = self._recipient_from_received(message, domain)
            if fallback is None:
                raise NoRecipientsError(
                    f"failed to parse the recipients: no address in {domain} "
                    "in the To or Received headers",
                    verdict,
                )
            logger.debug("Recipient %s taken from Received header", fallback)
            recipients = (fallback,)

        return ExtractedHeaders(sender=sender, recipients=recipients, virus_verdict=verdict)

    def _parse(self, payload: bytes) -> Message:
        if not payload or not payload.strip():
            raise MalformedMessageError("failed to parse message: empty payload")
        try:
            message = self._parser.parsebytes(payload)
        except Exception as e:
            raise MalformedMessageError(f"failed to parse message: {e}") from e
        if not message.keys():
            raise MalformedMessageError("failed to parse message: no header block found")
        return message

    @staticmethod
    def _parse_sender(message: Message, verdict: VirusVerdict) -> str:
        values = [_text(v) for v in message.get_all("From") or []]
        if len(values) != 1:
            raise InvalidSenderError(
                f"failed to parse the From address: expected one From header, got {len(values)}",
                verdict,
            )
        addresses = getaddresses(values)
        if len(addresses) != 1 or not _is_mailbox(addresses[0][1]):
            raise InvalidSenderError(
                f"failed to parse the From address: {values[0]!r}", verdict
            )
        return addresses[0][1]

    @staticmethod
    def _recipients_from_to(message: Message, domain: str) -> tuple[str, ...]:
        values = [_text(v) for v in message.get_all("To") or []]
        recipients: list[str] = []
        for _, address in getaddresses(values):
            address = address.lower()
            if not _is_mailbox(address):
                continue
            if domain in address.rpartition("@")[2] and address not in recipients:
                recipients.append(address)
        return tuple(recipients)

    @staticmethod
    def _recipient_from_received(message: Message, domain: str) -> str | None:
        received = _header_value(message, "Received")
        if not received:
            return None
        pattern = re.compile(
            r"\bfor\s+<?([^\s<>;@]+@" + re.escape(domain) + r")(?![\w.-])",
            re.IGNORECASE,
        )
        match = pattern.search(received)
        return match.group(1).lower() if match else None


def _header_value(message: Message, name: str) -> str | None:
    value = message.get(name)
    return None if value is None else _text(value)


def _text(value: object) -> str:
    """Header value as text, with raw UTF-8 bytes decoded.

    compat32 hands back Header objects for undecodable bytes, and their text
    keeps those bytes as surrogate escapes.
    """
    text = str(value)
    try:
        return text.encode("utf-8", "surrogateescape").decode("utf-8")
    except UnicodeError:
        return text


def _is_mailbox(address: str) -> bool:
    local, at, host = address.rpartition("@")
    return bool(at and local and host) and not any(c.isspace() for c in address)
