"""Read document bytes from file storage."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import unquote, urlparse

import requests

from ragqueue.core.errors import DocumentFetchError
from ragqueue.core.logging import get_logger

logger = get_logger(__name__)


def fetch_bytes(file_url: str, timeout: float = 60.0) -> bytes:
    """Return the bytes behind ``file_url``.

    ``http(s)`` URLs are downloaded with ``requests``; ``file://`` URLs and
    plain paths are read from local disk. Missing files and network errors
    raise :class:`DocumentFetchError`.
    """
    if not file_url:
        raise DocumentFetchError("Document has no file URL", retryable=False)
    parsed = urlparse(file_url)
    if parsed.scheme in ("http", "https"):
        return _fetch_http(file_url, timeout)
    if parsed.scheme == "file":
        return _read_path(Path(unquote(parsed.path)))
    if parsed.scheme and len(parsed.scheme) > 1:
        raise DocumentFetchError(f"Unsupported URL scheme: {parsed.scheme}", retryable=False)
    return _read_path(Path(file_url).expanduser())


def _fetch_http(url: str, timeout: float) -> bytes:
    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as exc:
        raise DocumentFetchError(f"Network error fetching {url}: {exc}") from exc
    if response.status_code == 404:
        raise DocumentFetchError(f"Document not found at {url}")
    if not response.ok:
        raise DocumentFetchError(f"Fetching {url} returned HTTP {response.status_code}")
    logger.debug("Fetched %s bytes from %s", len(response.content), url)
    return response.content


def _read_path(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except FileNotFoundError as exc:
        raise DocumentFetchError(f"Document not found at {path}") from exc
    except OSError as exc:
        raise DocumentFetchError(f"Failed to read {path}: {exc}") from exc


__all__ = ["fetch_bytes"]
