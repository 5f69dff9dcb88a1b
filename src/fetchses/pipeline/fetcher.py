"""Pipeline orchestrator: list → decrypt → extract → deliver → dispose."""

from __future__ import annotations

import logging

from fetchses.config.settings import FetchSesSettings
from fetchses.core.alerts import AlertCategory, AlertSink, build_alert_sink
from fetchses.core.aws import build_clients, build_session
from fetchses.core.decryption import KmsEnvelopeDecryptor
from fetchses.core.exceptions import (
    ConfigurationError,
    DecryptError,
    HeaderExtractionError,
    MailboxError,
    RemoteQuarantineError,
)
from fetchses.core.headers import HeaderExtractor
from fetchses.core.models import (
    DeliveryOutcome,
    Disposition,
    ExtractedHeaders,
    MessageResult,
    MessageState,
    PassSummary,
    VirusVerdict,
    decide_disposition,
    filename_for_key,
)
from fetchses.core.relay import SmtpRelay
from fetchses.core.s3_mailbox import S3Mailbox
from fetchses.storage.quarantine import QuarantineStore

VIRUS_MARKER = "THIS EMAIL FAILED SES VIRUS SCAN"


class MailFetcher:
    """Moves SES mail from an S3 bucket to the local mail transport.

    Each message is handled on its own, in listing order:

    1. Fetch and decrypt. On failure the object is moved under the error
       prefix and nothing is delivered.
    2. Extract sender and recipients, then submit to the SMTP relay.
    3. If extraction or submission fails, write the plaintext to the local
       quarantine directory.
    4. Delete the source object unless both delivery and quarantine failed.

    Every message with errors is logged line by line and raises one alert.
    """

    def __init__(
        self,
        settings: FetchSesSettings | None = None,
        *,
        mailbox: S3Mailbox | None = None,
        relay: SmtpRelay | None = None,
        quarantine: QuarantineStore | None = None,
        alerts: AlertSink | None = None,
        extractor: HeaderExtractor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._settings = settings or FetchSesSettings()
        self._log = logger or logging.getLogger(__name__)

        self._mailbox = mailbox
        self._relay = relay or SmtpRelay(
            self._settings.smtp_server,
            timeout_seconds=self._settings.smtp_timeout_seconds,
        )
        self._quarantine = quarantine or QuarantineStore(self._settings.error_path)
        self._alerts = alerts or build_alert_sink(self._settings, self._relay)
        self._extractor = extractor or HeaderExtractor()

    def _ensure_mailbox(self) -> S3Mailbox:
        """Connect to S3 and KMS if not already done."""
        if self._mailbox is None:
            session = build_session(self._settings.aws_profile, self._settings.aws_region)
            s3, kms = build_clients(session)
            self._mailbox = S3Mailbox(
                s3,
                KmsEnvelopeDecryptor(kms, self._settings.kms_key_id),
                self._settings.bucket,
                new_mail_prefix=self._settings.new_mail_prefix,
                error_prefix=self._settings.error_prefix,
            )
        return self._mailbox

    def run(self, key: str | None = None) -> PassSummary:
        """Process every object under the new-mail prefix, or one named key.

        Setup failures (incomplete settings, cannot reach or list the bucket)
        end the pass at once with a single alert. Any other error is confined
        to its message, which is kept in the bucket, and the pass goes on.

        Args:
            key: Process only this object key instead of listing the prefix.

        Returns:
            PassSummary; ``ok`` is False if any message was not handled.
        """
        summary = PassSummary()
        self._log.info("fetchses launched")

        try:
            self._settings.require_complete()
            mailbox = self._ensure_mailbox()
            keys = [key] if key else mailbox.list_new_mail()
        except (ConfigurationError, MailboxError) as e:
            summary.setup_error = str(e)
            self._report([str(e)])
            return summary

        summary.keys_listed = len(keys)
        for message_key in keys:
            try:
                result = self.process_message(mailbox, message_key)
            except Exception as e:
                result = self._unexpected_failure(mailbox, message_key, e)
            summary.record(result)

        self._log.info(
            "Pass complete: %d listed, %d delivered, %d quarantined, %d failed",
            summary.keys_listed, summary.delivered, summary.quarantined, summary.failed,
        )
        return summary

    def process_message(self, mailbox: S3Mailbox, key: str) -> MessageResult:
        """Run one message through the pipeline and dispose of its source object."""
        self._log.info("receiving %s/%s", mailbox.bucket, key)
        try:
            payload = mailbox.fetch(key)
        except DecryptError as e:
            return self._quarantine_remote(mailbox, key, e)
        return self._deliver(mailbox, key, payload)

    def _quarantine_remote(
        self, mailbox: S3Mailbox, key: str, cause: DecryptError
    ) -> MessageResult:
        errors = [
            f"failed to decrypt S3 object: {cause}",
            f"moving to {mailbox.bucket}/{mailbox.error_key_for(key)}",
        ]
        try:
            mailbox.move_to_error_prefix(key)
            state, copied, removed = MessageState.REMOTE_QUARANTINED, True, True
        except RemoteQuarantineError as e:
            errors.append(str(e))
            state, copied, removed = MessageState.REMOTE_QUARANTINE_FAILED, e.copied, False

        self._report(errors)
        return MessageResult(
            key=key,
            state=state,
            disposition=decide_disposition(False, copied),
            errors=tuple(errors),
            source_removed=removed,
        )

    def _unexpected_failure(
        self, mailbox: S3Mailbox, key: str, cause: Exception
    ) -> MessageResult:
        """Record a message that raised outside the handled failure paths.

        The source object is kept so a later pass can retry it.
        """
        self._log.debug("Traceback for %s", key, exc_info=cause)
        errors = [
            f"failed to process message: {type(cause).__name__}: {cause}",
            f"keeping {mailbox.bucket}/{key}",
        ]
        self._report(errors)
        return MessageResult(
            key=key,
            state=MessageState.BOTH_FAILED,
            disposition=Disposition.RETAIN,
            errors=tuple(errors),
            source_removed=False,
        )

    def _deliver(self, mailbox: S3Mailbox, key: str, payload: bytes) -> MessageResult:
        headers: ExtractedHeaders | None = None
        try:
            headers = self._extractor.extract(payload, self._settings.domain)
        except HeaderExtractionError as e:
            verdict = e.virus_verdict or VirusVerdict.ABSENT
            delivery = DeliveryOutcome.failed(str(e))
        else:
            verdict = headers.virus_verdict
            delivery = self._relay.deliver(headers.sender, headers.recipients, payload)

        errors: list[str] = []
        quarantined = False
        if delivery.delivered:
            state = MessageState.DELIVERED
            if headers is not None and verdict is VirusVerdict.FAIL:
                self._alert(AlertCategory.VIRUS, self._virus_alert_body(mailbox, key, headers))
        else:
            filename = filename_for_key(key)
            errors.append(f"failed to deliver message: {delivery.cause}")
            if verdict is VirusVerdict.FAIL:
                errors.append(VIRUS_MARKER)
            errors.append(f"writing decrypted data to {self._quarantine.path_for(filename)}")
            outcome = self._quarantine.quarantine(filename, payload)
            quarantined = outcome.written
            if quarantined:
                state = MessageState.LOCALLY_QUARANTINED
            else:
                state = MessageState.BOTH_FAILED
                errors.append(outcome.cause)
                errors.append(f"keeping {mailbox.bucket}/{key}")

        disposition = decide_disposition(delivery.delivered, quarantined)
        removed = False
        if disposition is Disposition.DELETE:
            try:
                mailbox.delete(key)
                removed = True
            except MailboxError as e:
                errors.append(str(e))

        if errors:
            self._report(errors)
        return MessageResult(
            key=key,
            state=state,
            disposition=disposition,
            errors=tuple(errors),
            source_removed=removed,
            virus_verdict=verdict,
        )

    def _virus_alert_body(self, mailbox: S3Mailbox, key: str, headers: ExtractedHeaders) -> str:
        if self._settings.virus_alert_body:
            return self._settings.virus_alert_body
        return (
            f"Message {mailbox.bucket}/{key} from {headers.sender} failed the SES virus "
            f"scan and was delivered to {', '.join(headers.recipients)}."
        )

    def _report(self, errors: list[str]) -> None:
        """Log each error line on its own and raise one alert for all of them."""
        text = "\n".join(errors)
        for line in text.splitlines():
            self._log.error("%s", line)
        self._alert(AlertCategory.ERROR, text)

    def _alert(self, category: AlertCategory, body: str) -> None:
        try:
            self._alerts.notify(category, body)
        except Exception as e:
            self._log.error("failed to send %s alert: %s", category.value, e)
