from __future__ import annotations

import logging
import os
import time
from datetime import datetime
from typing import Optional, Protocol, Sequence
from urllib.parse import quote, unquote, urlsplit

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import storage
from google.oauth2 import service_account
from starlette.concurrency import run_in_threadpool

from compendium.errors import RemoteError

logger = logging.getLogger(__name__)
timing_logger = logging.getLogger("uvicorn.error")

# Defaults can be overridden via env vars without touching code
DEFAULT_BUCKET = os.getenv("COMPENDIUM_BUCKET", "compendium_portraits")
DEFAULT_KEYFILE = os.getenv("COMPENDIUM_STORAGE_KEY_FILE", "secrets/compendium_bucket_key.json")
MEDIA_PREFIX = "/media/"


class ObjectStorage(Protocol):
    async def remove(self, paths: Sequence[str]) -> None: ...

    async def upload(self, path: str, data: bytes, *, content_type: Optional[str], overwrite: bool) -> str: ...

    def public_url(self, path: str) -> str: ...


def _log_timing(event_name: str, start: float, **fields: object) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if fields:
        field_text = " ".join(f"{key}={value}" for key, value in fields.items())
        timing_logger.info("storage.timing event=%s ms=%.2f %s", event_name, elapsed_ms, field_text)
        return
    timing_logger.info("storage.timing event=%s ms=%.2f", event_name, elapsed_ms)


def _credentials():
    """
    Prefer an explicit service-account key file; fall back to Application Default Credentials
    (None) when the file is missing.
    """
    path = DEFAULT_KEYFILE
    if path and os.path.exists(path):
        return service_account.Credentials.from_service_account_file(path)
    return None


def storage_client() -> storage.Client:
    creds = _credentials()
    if creds is not None:
        return storage.Client(credentials=creds, project=creds.project_id)
    return storage.Client()  # ADC


def media_path(blob_name: str) -> str:
    normalized = str(blob_name or "").strip().lstrip("/")
    return f"{MEDIA_PREFIX}{quote(normalized, safe='/')}"


def storage_path_from_url(url: Optional[str]) -> Optional[str]:
    """
    Recover the object path from a stored portrait address.

    Accepts the app-served form (`/media/<id>/portrait.png?t=...`, absolute or relative) and
    public bucket URLs (`https://storage.googleapis.com/<bucket>/<path>`). Returns None when
    nothing usable is left.
    """
    raw = str(url or "").strip()
    if not raw:
        return None
    path = urlsplit(raw).path
    if not path:
        return None
    if MEDIA_PREFIX in path:
        path = path.split(MEDIA_PREFIX, 1)[1]
    else:
        bucket_marker = f"/{DEFAULT_BUCKET}/"
        if bucket_marker not in path:
            return None
        path = path.split(bucket_marker, 1)[1]
    path = unquote(path).strip().lstrip("/")
    return path or None


class GcsObjectStorage:
    """ObjectStorage backed by one Google Cloud Storage bucket."""

    def __init__(self, bucket_name: Optional[str] = None, client: Optional[storage.Client] = None) -> None:
        self._bucket_name = bucket_name or DEFAULT_BUCKET
        self._client = client

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    def _bucket(self) -> storage.Bucket:
        if self._client is None:
            self._client = storage_client()
        return self._client.bucket(self._bucket_name)

    def _remove_sync(self, paths: Sequence[str]) -> None:
        bucket = self._bucket()
        for path in paths:
            try:
                bucket.blob(path).delete()
            except NotFound:
                logger.info("Object %s was already absent from %s", path, self._bucket_name)

    async def remove(self, paths: Sequence[str]) -> None:
        start = time.perf_counter()
        try:
            await run_in_threadpool(self._remove_sync, list(paths))
        except GoogleAPIError as exc:
            raise RemoteError(f"remove failed for {list(paths)}") from exc
        finally:
            _log_timing("remove", start, count=len(paths))

    def _upload_sync(self, path: str, data: bytes, content_type: Optional[str], overwrite: bool) -> str:
        blob = self._bucket().blob(path)
        kwargs = {} if overwrite else {"if_generation_match": 0}
        blob.upload_from_string(data, content_type=content_type, **kwargs)
        return blob.name

    async def upload(self, path: str, data: bytes, *, content_type: Optional[str], overwrite: bool) -> str:
        start = time.perf_counter()
        try:
            return await run_in_threadpool(self._upload_sync, path, data, content_type, overwrite)
        except GoogleAPIError as exc:
            raise RemoteError(f"upload failed for {path}") from exc
        finally:
            _log_timing("upload", start, path=path, bytes=len(data))

    def public_url(self, path: str) -> str:
        return media_path(path)

    # -- helpers for the /media route -------------------------------------

    def download_bytes(self, blob_name: str) -> bytes:
        blob = self._bucket().blob(blob_name)
        try:
            return blob.download_as_bytes()
        except NotFound:
            raise FileNotFoundError(blob_name)

    def blob_http_metadata(self, blob_name: str) -> tuple[Optional[str], Optional[str], Optional[datetime]]:
        """
        Return (content_type, etag, updated_at_utc) for a blob without downloading payload bytes.
        Raises FileNotFoundError when the blob does not exist.
        """
        blob = self._bucket().blob(blob_name)
        try:
            blob.reload()
        except NotFound:
            raise FileNotFoundError(blob_name)
        return blob.content_type, blob.etag, blob.updated
