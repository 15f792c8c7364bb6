"""Local persistence for the single Gemini API key.

The key is kept in a tiny JSON key-value file. It is base64 encoded so it is
not sitting there in plain text, which is obfuscation, not encryption.
"""

import base64
import binascii
import json
import logging
import os

from settings import CREDENTIAL_KEY, STORAGE_PATH

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the credential cannot be written to local storage."""

    def __init__(self, message="키 저장 중 오류가 발생했습니다."):
        super().__init__(message)


class CredentialStore:
    def __init__(self, path=STORAGE_PATH, key=CREDENTIAL_KEY):
        self.path = path
        self.key = key

    def _read_all(self):
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("storage file is not a JSON object")
        return data

    def _write_all(self, data):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)

    def load(self):
        """Return the stored credential, or None if absent or unreadable."""
        try:
            stored = self._read_all().get(self.key)
        except (OSError, ValueError) as e:
            logger.warning("Could not read credential storage %s: %s", self.path, e)
            return None

        if not stored:
            return None

        try:
            return base64.b64decode(stored, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, TypeError) as e:
            logger.warning("Failed to restore API key: %s", e)
            return None

    def save(self, credential):
        encoded = base64.b64encode(credential.encode("utf-8")).decode("ascii")
        try:
            try:
                data = self._read_all()
            except ValueError:
                logger.warning("Overwriting corrupt credential storage %s", self.path)
                data = {}
            data[self.key] = encoded
            self._write_all(data)
        except OSError as e:
            logger.error("Could not write credential storage %s: %s", self.path, e)
            raise StorageError() from e

    def clear(self):
        try:
            data = self._read_all()
        except ValueError:
            data = {}
        except OSError as e:
            raise StorageError() from e

        if self.key not in data:
            return
        del data[self.key]
        try:
            self._write_all(data)
        except OSError as e:
            logger.error("Could not clear credential storage %s: %s", self.path, e)
            raise StorageError() from e
