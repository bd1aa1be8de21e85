import logging
import os
from pathlib import Path

from capabilities.loader import DEFAULT_MANIFEST_PATH


class CatalogConfig:
    def __init__(self) -> None:
        self.sse_port = self._get_int_env("MCP_SSE_PORT", 8000)
        self.streamable_http_port = self._get_int_env("MCP_STREAMABLE_HTTP_PORT", 8080)
        self.manifest_path = Path(os.getenv("CATALOG_MANIFEST_PATH") or DEFAULT_MANIFEST_PATH)
        self.log_level = self._get_log_level("CATALOG_LOG_LEVEL", "INFO")
        self.search_limit = self._get_int_env("CATALOG_SEARCH_LIMIT", 10, minimum=1)

    @staticmethod
    def _get_int_env(key: str, default: int, minimum: int = 0) -> int:
        """Read an integer environment variable, falling back to default when unset."""
        raw = os.getenv(key)
        if raw is None or not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            raise ValueError(f"Environment variable {key} must be an integer, got: {raw!r}") from exc
        if value < minimum:
            raise ValueError(f"Environment variable {key} must be >= {minimum}, got: {value}")
        return value

    @staticmethod
    def _get_log_level(key: str, default: str) -> str:
        level = (os.getenv(key) or default).strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Environment variable {key} is not a valid log level: {level}")
        return level
