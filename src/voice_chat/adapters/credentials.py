import logging
from pathlib import Path

from voice_chat.domain.validation import is_valid_api_key_format

logger = logging.getLogger(__name__)


class FileCredentialProvider:
    """Reads the key from disk on every call so it can be rotated between requests."""

    def __init__(self, path: str) -> None:
        self._path = Path(path).expanduser() if path else None

    def get_key(self) -> str | None:
        if self._path is None:
            return None
        try:
            key = self._path.read_text().strip()
        except FileNotFoundError:
            logger.warning("API key file not found: %s", self._path)
            return None
        if not key:
            return None
        if not is_valid_api_key_format(key):
            logger.warning("API key in %s does not look like a chat API key", self._path)
        return key


class StaticCredentialProvider:
    def __init__(self, key: str | None = None) -> None:
        self._key = key

    def set_key(self, key: str | None) -> None:
        self._key = key

    def get_key(self) -> str | None:
        if self._key is None or not self._key.strip():
            return None
        return self._key.strip()
