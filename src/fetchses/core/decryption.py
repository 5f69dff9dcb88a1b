"""Decryption of S3 objects written by SES with client-side encryption.

SES stores each message in the S3 encryption client v2 format: the body is
AES-GCM ciphertext with the tag appended, and the object metadata carries the
KMS-wrapped data key, the IV, and the algorithm names.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Mapping
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from fetchses.core.exceptions import DecryptError

logger = logging.getLogger(__name__)

META_KEY = "x-amz-key-v2"
META_IV = "x-amz-iv"
META_CEK_ALG = "x-amz-cek-alg"
META_WRAP_ALG = "x-amz-wrap-alg"
META_MATDESC = "x-amz-matdesc"
META_TAG_LEN = "x-amz-tag-len"

CEK_AES_GCM = "AES/GCM/NoPadding"
WRAP_ALGORITHMS = ("kms", "kms+context")
GCM_TAG_BITS = 128


class KmsEnvelopeDecryptor:
    """Unwrap the data key with KMS and decrypt the object body with AES-GCM."""

    def __init__(self, kms_client: Any, kms_key_id: str = "") -> None:
        self._kms = kms_client
        self._kms_key_id = kms_key_id

    def decrypt(self, ciphertext: bytes, metadata: Mapping[str, str]) -> bytes:
        """Decrypt an object body using its S3 user metadata.

        Args:
            ciphertext: Raw object body.
            metadata: User metadata from GetObject (``x-amz-meta-`` stripped).

        Returns:
            Plaintext bytes.

        Raises:
            DecryptError: On missing metadata, unsupported algorithms, KMS
                failures or authentication tag mismatch.
        """
        meta = {k.lower(): v for k, v in metadata.items()}
        if META_KEY not in meta:
            raise DecryptError("object is not client-side encrypted (no x-amz-key-v2 metadata)")

        cek_alg = meta.get(META_CEK_ALG, "")
        if cek_alg != CEK_AES_GCM:
            raise DecryptError(f"unsupported content encryption algorithm: {cek_alg!r}")
        wrap_alg = meta.get(META_WRAP_ALG, "")
        if wrap_alg not in WRAP_ALGORITHMS:
            raise DecryptError(f"unsupported key wrap algorithm: {wrap_alg!r}")
        tag_len = meta.get(META_TAG_LEN, str(GCM_TAG_BITS))
        if tag_len != str(GCM_TAG_BITS):
            raise DecryptError(f"unsupported GCM tag length: {tag_len!r}")

        try:
            wrapped_key = base64.b64decode(meta[META_KEY], validate=True)
            iv = base64.b64decode(meta.get(META_IV, ""), validate=True)
            context = json.loads(meta.get(META_MATDESC) or "{}")
        except (binascii.Error, ValueError) as e:
            raise DecryptError(f"invalid encryption metadata: {e}") from e
        if not iv:
            raise DecryptError("invalid encryption metadata: missing IV")

        data_key = self._unwrap_key(wrapped_key, context)
        try:
            return AESGCM(data_key).decrypt(iv, ciphertext, None)
        except InvalidTag as e:
            raise DecryptError("authentication tag mismatch") from e
        except ValueError as e:
            raise DecryptError(f"invalid data key or IV: {e}") from e

    def _unwrap_key(self, wrapped_key: bytes, context: dict[str, str]) -> bytes:
        kwargs: dict[str, Any] = {"CiphertextBlob": wrapped_key, "EncryptionContext": context}
        if self._kms_key_id:
            kwargs["KeyId"] = self._kms_key_id
        try:
            response = self._kms.decrypt(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise DecryptError(f"KMS failed to unwrap the data key: {e}") from e
        return response["Plaintext"]
