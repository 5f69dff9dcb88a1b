"""boto3 session and client construction for the S3 mailbox."""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError

from fetchses.core.exceptions import MailboxError

logger = logging.getLogger(__name__)


def build_session(profile: str | None = None, region: str | None = None) -> boto3.session.Session:
    """Create a boto3 session from the shared config, optionally by profile.

    Raises:
        MailboxError: If the profile cannot be loaded.
    """
    try:
        session = boto3.session.Session(profile_name=profile or None, region_name=region or None)
    except BotoCoreError as e:
        raise MailboxError(f"failed to load AWS config: {e}") from e
    logger.debug("AWS session ready (profile=%s, region=%s)", profile, session.region_name)
    return session


def build_clients(session: boto3.session.Session, *, max_attempts: int = 5) -> tuple[Any, Any]:
    """Build the S3 and KMS clients used by the mailbox.

    SES writes objects without checksums, so response checksum validation is
    limited to operations that require it.

    Returns:
        Tuple of (s3_client, kms_client).
    """
    retries = {"max_attempts": max_attempts, "mode": "standard"}
    try:
        s3 = session.client(
            "s3",
            config=Config(retries=retries, response_checksum_validation="when_required"),
        )
        kms = session.client("kms", config=Config(retries=retries))
    except BotoCoreError as e:
        raise MailboxError(f"failed to initialize AWS clients: {e}") from e
    return s3, kms
