"""Tests for HeaderExtractor: sender, recipient resolution and virus verdict."""

from __future__ import annotations

import pytest

from fetchses.core.exceptions import (
    HeaderExtractionError,
    InvalidSenderError,
    MalformedMessageError,
    NoRecipientsError,
)
from fetchses.core.headers import HeaderExtractor
from fetchses.core.models import ExtractedHeaders, VirusVerdict

DOMAIN = "corp.example"


@pytest.fixture
def extractor() -> HeaderExtractor:
    return HeaderExtractor()


def _message(*headers: str, body: str = "body") -> bytes:
    return ("\r\n".join(headers) + "\r\n\r\n" + body + "\r\n").encode("utf-8")


class TestSenderAndToScenario:
    """From: a@x.com, To: b@corp.example, c@other.com."""

    def test_resolves_sender_and_in_domain_recipient(
        self, extractor: HeaderExtractor, simple_eml: bytes
    ) -> None:
        headers = extractor.extract(simple_eml, DOMAIN)

        assert headers.sender == "a@x.com"
        assert headers.recipients == ("b@corp.example",)

    def test_virus_verdict_absent_without_header(
        self, extractor: HeaderExtractor, simple_eml: bytes
    ) -> None:
        assert extractor.extract(simple_eml, DOMAIN).virus_verdict is VirusVerdict.ABSENT

    def test_extraction_is_idempotent(
        self, extractor: HeaderExtractor, recipients_eml: bytes
    ) -> None:
        first = extractor.extract(recipients_eml, DOMAIN)
        second = extractor.extract(recipients_eml, DOMAIN)

        assert first == second


class TestToRecipients:
    """Recipients from the To header are filtered, lower-cased and de-duplicated."""

    def test_only_in_domain_lower_cased_in_header_order(
        self, extractor: HeaderExtractor, recipients_eml: bytes
    ) -> None:
        headers = extractor.extract(recipients_eml, DOMAIN)

        assert headers.sender == "a@x.com"
        assert headers.recipients == ("b@corp.example", "dana@corp.example")
        assert "c@other.com" not in headers.recipients

    def test_domain_match_is_case_insensitive(self, extractor: HeaderExtractor) -> None:
        payload = _message("From: a@x.com", "To: Someone <SOMEONE@CORP.EXAMPLE>")

        headers = extractor.extract(payload, "Corp.Example")

        assert headers.recipients == ("someone@corp.example",)

    def test_domain_checked_against_domain_part_only(self, extractor: HeaderExtractor) -> None:
        payload = _message(
            "From: a@x.com",
            "To: corp.example@other.com, ok@corp.example",
        )

        assert extractor.extract(payload, DOMAIN).recipients == ("ok@corp.example",)

    def test_subdomain_contains_serviced_domain(self, extractor: HeaderExtractor) -> None:
        payload = _message("From: a@x.com", "To: ops@mail.corp.example")

        assert extractor.extract(payload, DOMAIN).recipients == ("ops@mail.corp.example",)

    def test_multiple_to_headers_are_combined(self, extractor: HeaderExtractor) -> None:
        payload = _message("From: a@x.com", "To: one@corp.example", "To: two@corp.example")

        assert extractor.extract(payload, DOMAIN).recipients == (
            "one@corp.example",
            "two@corp.example",
        )


class TestReceivedFallback:
    """The first Received header is used when To yields no in-domain address."""

    def test_no_to_header_uses_received(self, extractor: HeaderExtractor) -> None:
        payload = _message(
            "Received: from mx.x.com by inbound-smtp.amazonaws.com with SMTP id 1 "
            "for <d@corp.example>; Mon, 13 May 2024 10:00:00 +0000",
            "From: a@x.com",
        )

        assert extractor.extract(payload, DOMAIN).recipients == ("d@corp.example",)

    def test_out_of_domain_to_falls_back_to_received(self, extractor: HeaderExtractor) -> None:
        payload = _message(
            "Received: from mx.x.com by inbound-smtp.amazonaws.com "
            "for e@corp.example; Mon, 13 May 2024 10:00:00 +0000",
            "From: a@x.com",
            "To: list@other.com, c@other.com",
        )

        headers = extractor.extract(payload, DOMAIN)

        assert headers.recipients == ("e@corp.example",)
        assert "list@other.com" not in headers.recipients

    def test_uses_topmost_received_and_lower_cases(
        self, extractor: HeaderExtractor, received_only_eml: bytes
    ) -> None:
        headers = extractor.extract(received_only_eml, DOMAIN)

        assert headers.sender == "newsletter@lists.x.com"
        assert headers.recipients == ("d@corp.example",)

    def test_folded_received_header(self, extractor: HeaderExtractor) -> None:
        payload = _message(
            "Received: from mx.x.com\r\n\tby inbound-smtp.amazonaws.com\r\n"
            "\tFOR <f@corp.example>;\r\n\tMon, 13 May 2024 10:00:00 +0000",
            "From: a@x.com",
        )

        assert extractor.extract(payload, DOMAIN).recipients == ("f@corp.example",)

    def test_received_for_other_domain_is_ignored(self, extractor: HeaderExtractor) -> None:
        payload = _message(
            "Received: from mx.x.com by mx.other.com for <g@other.com>; "
            "Mon, 13 May 2024 10:00:00 +0000",
            "From: a@x.com",
        )

        with pytest.raises(NoRecipientsError):
            extractor.extract(payload, DOMAIN)

    def test_no_to_and_no_received_raises(self, extractor: HeaderExtractor) -> None:
        payload = _message("From: a@x.com", "To: c@other.com")

        with pytest.raises(NoRecipientsError):
            extractor.extract(payload, DOMAIN)


class TestInvalidSender:
    """From must be exactly one syntactically valid mailbox."""

    def test_missing_from(self, extractor: HeaderExtractor) -> None:
        with pytest.raises(InvalidSenderError):
            extractor.extract(_message("To: b@corp.example"), DOMAIN)

    def test_two_addresses(self, extractor: HeaderExtractor) -> None:
        payload = _message("From: a@x.com, z@x.com", "To: b@corp.example")

        with pytest.raises(InvalidSenderError):
            extractor.extract(payload, DOMAIN)

    def test_two_from_headers(self, extractor: HeaderExtractor) -> None:
        payload = _message("From: a@x.com", "From: z@x.com", "To: b@corp.example")

        with pytest.raises(InvalidSenderError):
            extractor.extract(payload, DOMAIN)

    def test_not_an_address(self, extractor: HeaderExtractor) -> None:
        payload = _message("From: not-an-address", "To: b@corp.example")

        with pytest.raises(InvalidSenderError):
            extractor.extract(payload, DOMAIN)

    def test_display_name_is_dropped(self, extractor: HeaderExtractor) -> None:
        payload = _message('From: "Alice, Example" <alice@x.com>', "To: b@corp.example")

        assert extractor.extract(payload, DOMAIN).sender == "alice@x.com"

    def test_error_keeps_virus_verdict(self, extractor: HeaderExtractor) -> None:
        payload = _message("X-SES-Virus-Verdict: FAIL", "To: b@corp.example")

        with pytest.raises(InvalidSenderError) as exc_info:
            extractor.extract(payload, DOMAIN)

        assert exc_info.value.virus_verdict is VirusVerdict.FAIL


class TestInternationalizedAddresses:
    """Raw UTF-8 in address headers comes back as text, not surrogate escapes."""

    def test_utf8_sender(self, extractor: HeaderExtractor) -> None:
        payload = _message("From: José <josé@example.org>", "To: b@corp.example")

        assert extractor.extract(payload, DOMAIN).sender == "josé@example.org"

    def test_utf8_recipient_is_lower_cased(self, extractor: HeaderExtractor) -> None:
        payload = _message("From: a@x.com", "To: René <René@corp.example>")

        assert extractor.extract(payload, DOMAIN).recipients == ("rené@corp.example",)

    def test_invalid_utf8_is_kept_escaped(self, extractor: HeaderExtractor) -> None:
        payload = b"From: jos\xe9@example.org\r\nTo: b@corp.example\r\n\r\nbody\r\n"

        assert extractor.extract(payload, DOMAIN).sender == "jos\udce9@example.org"


class TestMalformedMessage:
    """A payload without a parseable header block is rejected."""

    def test_empty_payload(self, extractor: HeaderExtractor) -> None:
        with pytest.raises(MalformedMessageError):
            extractor.extract(b"", DOMAIN)

    def test_whitespace_payload(self, extractor: HeaderExtractor) -> None:
        with pytest.raises(MalformedMessageError):
            extractor.extract(b"\r\n\r\n", DOMAIN)

    def test_no_header_lines(self, extractor: HeaderExtractor) -> None:
        with pytest.raises(MalformedMessageError):
            extractor.extract(b"this is not a header block\n\nbody\n", DOMAIN)

    def test_extraction_errors_share_a_base(self) -> None:
        assert issubclass(MalformedMessageError, HeaderExtractionError)
        assert issubclass(InvalidSenderError, HeaderExtractionError)
        assert issubclass(NoRecipientsError, HeaderExtractionError)


class TestVirusVerdict:
    """The X-SES-Virus-Verdict header is surfaced."""

    def test_fail_verdict(self, extractor: HeaderExtractor, virus_fail_eml: bytes) -> None:
        headers = extractor.extract(virus_fail_eml, DOMAIN)

        assert headers == ExtractedHeaders(
            sender="invoices@bad.example",
            recipients=("e@corp.example",),
            virus_verdict=VirusVerdict.FAIL,
        )

    def test_pass_verdict(self, extractor: HeaderExtractor, recipients_eml: bytes) -> None:
        assert extractor.extract(recipients_eml, DOMAIN).virus_verdict is VirusVerdict.PASS
