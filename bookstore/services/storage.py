"""
Local bucket storage for covers, book files and payment receipts.

Files live under ``STORAGE_DIR/<bucket>/<path>`` and are addressed by
``PUBLIC_BASE_URL/storage/<bucket>/<path>``. Only covers are served at that
URL; book files and receipts are streamed by routes that check access first.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import time
from typing import Optional, Tuple

from bookstore import config
from bookstore.core.constants import (
    BOOK_CONTENT_TYPES,
    BUCKETS,
    COVER_CONTENT_TYPES,
    MAX_CONTENT_BYTES,
    MAX_COVER_BYTES,
    MAX_RECEIPT_BYTES,
    RECEIPT_CONTENT_TYPES,
)
from bookstore.core.utils import sanitize_filename

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Upload rejected or path refused; the message is safe to show users."""


# kind -> (allowed content types, max bytes, human label for errors)
_UPLOAD_RULES = {
    "receipt": (RECEIPT_CONTENT_TYPES, MAX_RECEIPT_BYTES, "JPEG, PNG, WebP or PDF"),
    "cover": (COVER_CONTENT_TYPES, MAX_COVER_BYTES, "JPEG, PNG or WebP"),
    "content": (BOOK_CONTENT_TYPES, MAX_CONTENT_BYTES, "PDF or EPUB"),
}


def validate_upload(content_type: Optional[str], size: int, kind: str) -> None:
    try:
        allowed, max_bytes, label = _UPLOAD_RULES[kind]
    except KeyError:
        raise StorageError(f"Unknown upload kind: {kind}")
    if size <= 0:
        raise StorageError("Uploaded file is empty")
    if (content_type or "").lower() not in allowed:
        raise StorageError(f"Invalid file type. Allowed: {label}")
    if size > max_bytes:
        raise StorageError(f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB")


async def read_upload(upload, kind: str) -> bytes:
    """Read and validate a FastAPI ``UploadFile``; raises StorageError.

    Never buffers more than one byte past the limit for ``kind``.
    """
    if kind not in _UPLOAD_RULES:
        raise StorageError(f"Unknown upload kind: {kind}")
    max_bytes = _UPLOAD_RULES[kind][1]
    if upload.size is not None:
        validate_upload(upload.content_type, upload.size, kind)
    data = await upload.read(max_bytes + 1)
    validate_upload(upload.content_type, len(data), kind)
    return data


def _bucket_root(bucket: str) -> str:
    if bucket not in BUCKETS:
        raise StorageError(f"Unknown bucket: {bucket}")
    return os.path.realpath(os.path.join(config.STORAGE_DIR, bucket))


def resolve_path(bucket: str, path: str) -> str:
    """Absolute filesystem path for ``bucket/path``; refuses traversal."""
    root = _bucket_root(bucket)
    full = os.path.realpath(os.path.join(root, path.lstrip("/\\")))
    if full != root and not full.startswith(root + os.sep):
        raise StorageError("Invalid storage path")
    return full


def public_url(bucket: str, path: str) -> str:
    return f"{config.PUBLIC_BASE_URL.rstrip('/')}/storage/{bucket}/{path}"


def parse_public_url(url: str) -> Optional[Tuple[str, str]]:
    """Inverse of ``public_url``; None for URLs this store did not issue."""
    prefix = f"{config.PUBLIC_BASE_URL.rstrip('/')}/storage/"
    if not url or not url.startswith(prefix):
        return None
    bucket, _, path = url[len(prefix):].partition("/")
    if bucket not in BUCKETS or not path:
        return None
    return bucket, path


def build_object_path(folder: str, filename: Optional[str], now: Optional[float] = None) -> str:
    """``<folder>/<unix-ms>-<sanitized name>``."""
    ts = int((now if now is not None else time.time()) * 1000)
    return f"{sanitize_filename(folder)}/{ts}-{sanitize_filename(filename or 'upload')}"


def save_bytes(bucket: str, path: str, data: bytes) -> str:
    """Write ``data`` and return its public URL."""
    full = resolve_path(bucket, path)
    os.makedirs(os.path.dirname(full), exist_ok=True)
    with open(full, "wb") as fh:
        fh.write(data)
    logger.info("Stored %d bytes at %s/%s", len(data), bucket, path)
    return public_url(bucket, path)


def read_bytes(bucket: str, path: str) -> bytes:
    full = resolve_path(bucket, path)
    if not os.path.isfile(full):
        raise FileNotFoundError(f"{bucket}/{path}")
    with open(full, "rb") as fh:
        return fh.read()


def read_by_url(url: Optional[str]) -> Tuple[bytes, str, str]:
    """Load a file this store issued. Returns ``(data, media_type, path)``."""
    parsed = parse_public_url(url or "")
    if not parsed:
        raise FileNotFoundError(url or "")
    data = read_bytes(*parsed)
    return data, media_type_for(parsed[1]), parsed[1]


def media_type_for(path: str) -> str:
    return mimetypes.guess_type(path)[0] or "application/octet-stream"


def delete_object(bucket: str, path: str) -> bool:
    full = resolve_path(bucket, path)
    try:
        os.remove(full)
        return True
    except FileNotFoundError:
        return False


def delete_by_url(url: Optional[str]) -> bool:
    parsed = parse_public_url(url or "")
    if not parsed:
        return False
    try:
        return delete_object(*parsed)
    except (StorageError, OSError) as exc:
        logger.warning("Could not delete %s: %s", url, exc)
        return False
