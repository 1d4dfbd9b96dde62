"""Durable single-record persistence for token pairs."""

from __future__ import annotations

import os
import stat
import tempfile
from pathlib import Path

from loguru import logger

from bitfit.errors import TokenStoreError
from bitfit.tokens import TokenRecord, decode, encode


class TokenStore:
    """Reads and writes one TokenRecord at a fixed file path.

    Writes go through a temporary file in the same directory which is then
    renamed over the target, so readers see either the old or the new
    document, never a partial one.

    Args:
        path: Location of the persisted token file.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> TokenRecord:
        """Load the persisted record.

        Raises:
            TokenStoreError: If the file is absent or unreadable.
            DecodeError: If the file content is malformed.
            ProviderError: If the file holds a provider error payload.
        """
        try:
            data = self._path.read_bytes()
        except OSError as e:
            raise TokenStoreError(
                f"Tokens file '{self._path}' could not be read: {e}", self._path
            ) from e
        record = decode(data)
        logger.debug("Loaded tokens", extra={"path": str(self._path)})
        return record

    def save(self, record: TokenRecord) -> None:
        """Persist the record, replacing any previous content.

        Raises:
            TokenStoreError: If the file cannot be written.
        """
        data = encode(record)
        parent = self._path.parent
        tmp_path: str | None = None
        try:
            parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=parent, prefix=".tmp_", suffix=".json")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)  # 0600
            os.replace(tmp_path, self._path)
        except OSError as e:
            if tmp_path is not None:
                Path(tmp_path).unlink(missing_ok=True)
            raise TokenStoreError(
                f"Could not save tokens to file '{self._path}': {e}", self._path
            ) from e
        logger.info("Tokens saved", extra={"path": str(self._path)})
