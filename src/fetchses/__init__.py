"""fetchses - Relay SES mail from an encrypted S3 bucket to a local MTA."""

from fetchses.core.models import (
    DeliveryOutcome,
    Disposition,
    ExtractedHeaders,
    MessageResult,
    MessageState,
    PassSummary,
    QuarantineOutcome,
    VirusVerdict,
)
from fetchses.pipeline.fetcher import MailFetcher

__all__ = [
    "DeliveryOutcome",
    "Disposition",
    "ExtractedHeaders",
    "MailFetcher",
    "MessageResult",
    "MessageState",
    "PassSummary",
    "QuarantineOutcome",
    "VirusVerdict",
]
