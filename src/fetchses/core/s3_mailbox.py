"""S3 mailbox: list, fetch-and-decrypt, copy and delete SES message objects."""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from fetchses.core.decryption import KmsEnvelopeDecryptor
from fetchses.core.exceptions import DecryptError, MailboxError, RemoteQuarantineError
from fetchses.core.models import filename_for_key

logger = logging.getLogger(__name__)


class S3Mailbox:
    """Thin wrapper around an S3 bucket that SES delivers encrypted mail into."""

    def __init__(
        self,
        s3_client: Any,
        decryptor: KmsEnvelopeDecryptor,
        bucket: str,
        *,
        new_mail_prefix: str = "incoming",
        error_prefix: str = "undeliverable",
    ) -> None:
        self._s3 = s3_client
        self._decryptor = decryptor
        self._bucket = bucket
        self._new_mail_prefix = new_mail_prefix
        self._error_prefix = error_prefix

    @property
    def bucket(self) -> str:
        return self._bucket

    def list_new_mail(self, prefix: str | None = None) -> list[str]:
        """List object keys under the new-mail prefix, in listing order.

        Directory markers (keys ending in ``/``) are skipped.

        Raises:
            MailboxError: If the bucket cannot be listed.
        """
        prefix = self._new_mail_prefix if prefix is None else prefix
        list_prefix = f"{prefix}/" if prefix else ""
        keys: list[str] = []
        try:
            paginator = self._s3.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=list_prefix):
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    if not key.endswith("/"):
                        keys.append(key)
        except (ClientError, BotoCoreError) as e:
            raise MailboxError(f"failed to list objects in {self._bucket}: {e}") from e

        logger.debug("Listed %d objects under %s/%s", len(keys), self._bucket, list_prefix)
        return keys

    def fetch(self, key: str) -> bytes:
        """Get an object and return its decrypted contents.

        Raises:
            DecryptError: If the object cannot be read or decrypted.
        """
        try:
            response = self._s3.get_object(Bucket=self._bucket, Key=key)
            body = response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise DecryptError(f"failed to get S3 object: {e}") from e
        return self._decryptor.decrypt(body, response.get("Metadata", {}))

    def copy(self, key: str, new_key: str) -> None:
        """Copy an object within the bucket. Encryption metadata is carried along.

        Raises:
            MailboxError: If the copy fails.
        """
        try:
            self._s3.copy_object(
                Bucket=self._bucket,
                CopySource={"Bucket": self._bucket, "Key": key},
                Key=new_key,
            )
        except (ClientError, BotoCoreError) as e:
            raise MailboxError(f"failed to copy S3 object: {e}") from e

    def delete(self, key: str) -> None:
        """Delete an object.

        Raises:
            MailboxError: If the delete fails.
        """
        try:
            self._s3.delete_object(Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise MailboxError(f"failed to delete S3 object: {e}") from e

    def error_key_for(self, key: str) -> str:
        return f"{self._error_prefix}/{filename_for_key(key)}"

    def move_to_error_prefix(self, key: str) -> str:
        """Copy an object under the error prefix, then delete the source object.

        The source object is left in place when the copy fails.

        Returns:
            The key of the copy.

        Raises:
            RemoteQuarantineError: If the copy or the delete fails.
        """
        error_key = self.error_key_for(key)
        try:
            self.copy(key, error_key)
        except MailboxError as e:
            raise RemoteQuarantineError(str(e)) from e
        try:
            self.delete(key)
        except MailboxError as e:
            raise RemoteQuarantineError(str(e), copied=True) from e
        logger.info("Moved %s/%s to %s/%s", self._bucket, key, self._bucket, error_key)
        return error_key
