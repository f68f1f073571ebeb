"""Object storage URL handling.

Scene assets frequently point at private buckets (S3, Wasabi or GCS). Such
URLs must be presigned before they can be downloaded, and presigned URLs
expire. This module recognizes storage URLs, extracts their bucket/key and
issues fresh presigned URLs through a backend specific signer.
"""

import asyncio
import logging
import time
from datetime import timedelta
from typing import Protocol
from urllib.parse import parse_qs, unquote, urlparse

from adrender.config import Settings, get_settings

logger = logging.getLogger(__name__)

SIGNATURE_PARAMS = ("X-Amz-Signature", "AWSAccessKeyId", "X-Goog-Signature", "Signature")
GCS_HOST = "storage.googleapis.com"


def is_object_storage_url(url: str) -> bool:
    """Whether the URL points at a known object store, judged by hostname."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    if not host:
        return False
    return (
        "s3." in host
        or ".s3." in host
        or "wasabisys.com" in host
        or host.endswith(".amazonaws.com")
        or host == GCS_HOST
        or host.endswith("." + GCS_HOST)
    )


def is_presigned(url: str) -> bool:
    query = parse_qs(urlparse(url).query)
    return any(param in query for param in SIGNATURE_PARAMS)


def is_gcs_url(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return host == GCS_HOST or host.endswith("." + GCS_HOST)


def parse_object_location(url: str) -> tuple[str, str] | None:
    """Extract (bucket, key) from a path-style or virtual-hosted URL."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    path = unquote(parsed.path.lstrip("/"))

    if host == GCS_HOST or host.split(".")[0] == "s3" or host.startswith("s3-"):
        # Path style: https://s3.<region>.<provider>/<bucket>/<key>
        bucket, _, key = path.partition("/")
    elif host.endswith("." + GCS_HOST):
        bucket, key = host[: -len("." + GCS_HOST)], path
    elif ".s3." in host or ".s3-" in host:
        bucket, key = host.split(".s3", 1)[0], path
    else:
        return None

    if not bucket or not key:
        return None
    return bucket, key


class UrlSigner(Protocol):
    def presign(self, bucket: str, key: str, expires_seconds: int) -> str: ...


class S3UrlSigner:
    """Presigns GET requests for S3-compatible stores (AWS, Wasabi)."""

    def __init__(self, settings: Settings | None = None) -> None:
        import boto3

        settings = settings or get_settings()
        self.client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url or None,
            region_name=settings.s3_region,
            aws_access_key_id=settings.s3_access_key_id or None,
            aws_secret_access_key=settings.s3_secret_access_key or None,
        )

    def presign(self, bucket: str, key: str, expires_seconds: int) -> str:
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expires_seconds,
        )


class GCSUrlSigner:
    """Presigns V4 GET URLs for Google Cloud Storage."""

    def __init__(self, settings: Settings | None = None) -> None:
        from google.auth import compute_engine, default
        from google.auth.transport import requests as auth_requests
        from google.cloud import storage

        settings = settings or get_settings()
        self._credentials, _project = default()
        self._auth_request = auth_requests.Request()
        # Compute Engine/Cloud Run credentials cannot sign locally; sign through IAM instead
        self._use_iam = isinstance(self._credentials, compute_engine.Credentials)
        if settings.gcs_project_id:
            self.client = storage.Client(project=settings.gcs_project_id)
        else:
            self.client = storage.Client()

    def presign(self, bucket: str, key: str, expires_seconds: int) -> str:
        blob = self.client.bucket(bucket).blob(key)
        # V4 signatures are limited to 7 days
        expiration = timedelta(seconds=min(expires_seconds, 7 * 24 * 60 * 60))
        if self._use_iam:
            self._credentials.refresh(self._auth_request)
            return blob.generate_signed_url(
                version="v4",
                expiration=expiration,
                method="GET",
                service_account_email=self._credentials.service_account_email,
                access_token=self._credentials.token,
            )
        return blob.generate_signed_url(version="v4", expiration=expiration, method="GET")


class PresignedUrlCache:
    """Presigned URLs keyed by (bucket, key).

    Shared by all jobs of a process. Entries are dropped ``margin_seconds``
    before the URL itself would expire.
    """

    def __init__(self, ttl_seconds: int, margin_seconds: int = 300) -> None:
        self.ttl_seconds = max(0, ttl_seconds - margin_seconds)
        self._entries: dict[tuple[str, str], tuple[str, float]] = {}

    def get(self, bucket: str, key: str) -> str | None:
        entry = self._entries.get((bucket, key))
        if entry is None:
            return None
        url, expires_at = entry
        if time.monotonic() >= expires_at:
            del self._entries[(bucket, key)]
            return None
        return url

    def put(self, bucket: str, key: str, url: str) -> None:
        self._entries[(bucket, key)] = (url, time.monotonic() + self.ttl_seconds)

    def invalidate(self, bucket: str, key: str) -> None:
        self._entries.pop((bucket, key), None)


class ObjectStorageService:
    """Refreshes object storage URLs into downloadable presigned URLs."""

    def __init__(
        self,
        signer: UrlSigner | None = None,
        cache: PresignedUrlCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._signer = signer
        self._gcs_signer: UrlSigner | None = None
        self.cache = cache or PresignedUrlCache(self.settings.presigned_url_expiry_seconds)

    def _signer_for(self, url: str) -> UrlSigner:
        if self._signer is not None:
            return self._signer
        if is_gcs_url(url) or self.settings.storage_backend == "gcs":
            if self._gcs_signer is None:
                self._gcs_signer = GCSUrlSigner(self.settings)
            return self._gcs_signer
        self._signer = S3UrlSigner(self.settings)
        return self._signer

    async def presign(self, bucket: str, key: str, url_hint: str = "") -> str:
        signer = self._signer_for(url_hint)
        url = await asyncio.to_thread(signer.presign, bucket, key, self.settings.presigned_url_expiry_seconds)
        self.cache.put(bucket, key, url)
        return url

    async def refresh_url(self, url: str, force: bool = False) -> str:
        """Return a downloadable URL for ``url``.

        Non-storage URLs and URLs that already carry a signature are
        returned unchanged unless ``force`` is set. If presigning fails the
        original URL is returned and the download decides the outcome.
        """
        if not is_object_storage_url(url):
            return url
        if not force and is_presigned(url):
            return url

        location = parse_object_location(url)
        if location is None:
            logger.warning(f"[STORAGE] Could not extract bucket/key from {url.split('?')[0]}")
            return url
        bucket, key = location

        if force:
            self.cache.invalidate(bucket, key)
        else:
            cached = self.cache.get(bucket, key)
            if cached:
                return cached

        try:
            fresh = await self.presign(bucket, key, url)
        except Exception as e:
            logger.warning(f"[STORAGE] Presigning {bucket}/{key} failed: {e}")
            return url
        logger.info(f"[STORAGE] Presigned {bucket}/{key}")
        return fresh
