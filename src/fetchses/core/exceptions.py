"""Custom exceptions for fetchses."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fetchses.core.models import VirusVerdict


class FetchSesError(Exception):
    """Base exception for all fetchses errors."""


class ConfigurationError(FetchSesError):
    """Settings are incomplete or inconsistent."""


class MailboxError(FetchSesError):
    """Failed to connect to, list, copy or delete from the S3 mailbox."""


class DecryptError(FetchSesError):
    """Failed to fetch or decrypt an S3 object."""


class RemoteQuarantineError(FetchSesError):
    """Failed to move an undecryptable object under the error prefix.

    ``copied`` is True when the copy under the error prefix exists and only
    the delete of the source object failed.
    """

    def __init__(self, message: str, copied: bool = False) -> None:
        super().__init__(message)
        self.copied = copied


class HeaderExtractionError(FetchSesError):
    """Failed to recover sender or recipients from a decrypted message.

    The virus verdict is kept when it was read before the failure so the
    caller can still flag the message.
    """

    def __init__(self, message: str, virus_verdict: VirusVerdict | None = None) -> None:
        super().__init__(message)
        self.virus_verdict = virus_verdict


class MalformedMessageError(HeaderExtractionError):
    """The header block could not be parsed."""


class InvalidSenderError(HeaderExtractionError):
    """The From header is not exactly one valid mailbox."""


class NoRecipientsError(HeaderExtractionError):
    """No recipient in the serviced domain could be found."""


class TransportError(FetchSesError):
    """The local mail transport refused or failed the submission."""


class QuarantineError(FetchSesError):
    """Failed to write a message to the local quarantine directory."""
