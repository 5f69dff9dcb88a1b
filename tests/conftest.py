"""Shared fixtures for fetchses tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from fetchses.config.settings import FetchSesSettings
from fetchses.core.alerts import AlertCategory

FIXTURES_DIR = Path(__file__).parent / "fixtures"

DOMAIN = "corp.example"


class RecordingAlertSink:
    """Alert sink that keeps every notification for inspection."""

    def __init__(self) -> None:
        self.alerts: list[tuple[AlertCategory, str]] = []

    def notify(self, category: AlertCategory, body: str) -> None:
        self.alerts.append((category, body))

    def of(self, category: AlertCategory) -> list[str]:
        return [body for cat, body in self.alerts if cat is category]


@pytest.fixture
def fixtures_dir() -> Path:
    """Path to the test fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def recipients_eml() -> bytes:
    """Message addressed to in-domain and out-of-domain recipients."""
    return (FIXTURES_DIR / "recipients.eml").read_bytes()


@pytest.fixture
def received_only_eml() -> bytes:
    """Message whose recipient is only named in the SES Received header."""
    return (FIXTURES_DIR / "received_only.eml").read_bytes()


@pytest.fixture
def virus_fail_eml() -> bytes:
    """Message flagged FAIL by the SES virus scan."""
    return (FIXTURES_DIR / "virus_fail.eml").read_bytes()


@pytest.fixture
def simple_eml() -> bytes:
    """Minimal message: one sender, one in-domain and one foreign recipient."""
    return (
        b"From: a@x.com\r\n"
        b"To: b@corp.example, c@other.com\r\n"
        b"Subject: hello\r\n"
        b"\r\n"
        b"Hi Bob.\r\n"
    )


@pytest.fixture
def alerts() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
def tmp_settings(tmp_path: Path) -> FetchSesSettings:
    """Settings pointing at a temporary quarantine directory, alerts disabled."""
    return FetchSesSettings(
        _env_file=None,
        bucket="mail-bucket",
        new_mail_prefix="incoming",
        error_prefix="undeliverable",
        kms_key_id="arn:aws:kms:us-east-1:111122223333:key/test",
        domain=DOMAIN,
        smtp_server="localhost:2525",
        error_path=tmp_path / "undelivered",
        alert_method="none",
    )
