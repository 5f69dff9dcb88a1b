"""Frozen dataclasses and enums for the fetchses domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class VirusVerdict(str, Enum):
    """Anti-malware verdict attached by SES."""

    ABSENT = "absent"
    PASS = "pass"
    FAIL = "fail"

    @classmethod
    def from_header(cls, value: str | None) -> VirusVerdict:
        """Map an ``X-SES-Virus-Verdict`` value onto a verdict.

        Only ``FAIL`` is treated as a failure; GRAY, DISABLED and
        PROCESSING_FAILED are pass-equivalent.
        """
        if value is None or not value.strip():
            return cls.ABSENT
        if value.strip().upper() == "FAIL":
            return cls.FAIL
        return cls.PASS


class Disposition(str, Enum):
    """What happens to the source object once a message is processed."""

    DELETE = "delete"
    RETAIN = "retain"


class MessageState(str, Enum):
    """Terminal state of one message in a pass."""

    DELIVERED = "delivered"
    LOCALLY_QUARANTINED = "locally_quarantined"
    BOTH_FAILED = "both_failed"
    REMOTE_QUARANTINED = "remote_quarantined"
    REMOTE_QUARANTINE_FAILED = "remote_quarantine_failed"


@dataclass(frozen=True)
class ExtractedHeaders:
    """Sender, serviced-domain recipients and virus verdict of one message."""

    sender: str
    recipients: tuple[str, ...]
    virus_verdict: VirusVerdict = VirusVerdict.ABSENT


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of handing a message to the local mail transport."""

    delivered: bool
    cause: str = ""

    @classmethod
    def ok(cls) -> DeliveryOutcome:
        return cls(delivered=True)

    @classmethod
    def failed(cls, cause: str) -> DeliveryOutcome:
        return cls(delivered=False, cause=cause)


@dataclass(frozen=True)
class QuarantineOutcome:
    """Result of writing a message to the local quarantine directory."""

    written: bool
    path: Path | None = None
    cause: str = ""


@dataclass(frozen=True)
class MessageResult:
    """Outcome of processing one candidate message."""

    key: str
    state: MessageState
    disposition: Disposition
    errors: tuple[str, ...] = field(default_factory=tuple)
    source_removed: bool = False
    virus_verdict: VirusVerdict = VirusVerdict.ABSENT

    @property
    def handled(self) -> bool:
        """True when a durable copy exists and the source object was removed."""
        return (
            self.state in (MessageState.DELIVERED, MessageState.LOCALLY_QUARANTINED)
            and self.source_removed
        )


@dataclass
class PassSummary:
    """Mutable summary of one pipeline pass."""

    keys_listed: int = 0
    delivered: int = 0
    quarantined: int = 0
    failed: int = 0
    setup_error: str = ""
    results: list[MessageResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when setup succeeded and every message was handled."""
        return not self.setup_error and all(r.handled for r in self.results)

    def record(self, result: MessageResult) -> None:
        self.results.append(result)
        if result.state is MessageState.DELIVERED:
            self.delivered += 1
        elif result.state is MessageState.LOCALLY_QUARANTINED:
            self.quarantined += 1
        if not result.handled:
            self.failed += 1


def decide_disposition(delivered: bool, quarantined: bool) -> Disposition:
    """Decide whether the source object may be deleted.

    The object is kept only when neither the mailbox nor the local
    quarantine holds a copy of the message.
    """
    if delivered or quarantined:
        return Disposition.DELETE
    return Disposition.RETAIN


def filename_for_key(key: str) -> str:
    """Strip the prefix and first separator from an object key.

    Keys without a separator are used whole.
    """
    _, sep, rest = key.partition("/")
    return rest if sep and rest else key
