"""Local quarantine: decrypted messages that could not be delivered."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from fetchses.core.exceptions import QuarantineError
from fetchses.core.models import QuarantineOutcome

logger = logging.getLogger(__name__)

DIR_MODE = 0o700
FILE_MODE = 0o600


class QuarantineStore:
    """Write undeliverable messages verbatim to a local directory.

    The directory is created on first use, not at construction.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, filename: str) -> Path:
        """Return the quarantine path for a message filename.

        Separators left in the filename are flattened so every file lands
        directly in the quarantine directory.
        """
        name = filename.replace(os.sep, "_").replace("/", "_")
        if name in ("", ".", ".."):
            name = f"_{name}"
        return self._directory / name

    def quarantine(self, filename: str, payload: bytes) -> QuarantineOutcome:
        """Persist a payload, reporting failure instead of raising.

        Returns:
            QuarantineOutcome with the written path, or the failure cause.
        """
        try:
            path = self.write(filename, payload)
        except QuarantineError as e:
            logger.debug("Quarantine write failed: %s", e)
            return QuarantineOutcome(written=False, cause=str(e))
        return QuarantineOutcome(written=True, path=path)

    def write(self, filename: str, payload: bytes) -> Path:
        """Write ``payload`` plus a trailing newline, owner read/write only.

        Raises:
            QuarantineError: If the directory or file cannot be written.
        """
        path = self.path_for(filename)
        try:
            self._directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.write(b"\n")
        except OSError as e:
            raise QuarantineError(f"failed to write {path}: {e}") from e

        logger.debug("Quarantined message: %s", path)
        return path
