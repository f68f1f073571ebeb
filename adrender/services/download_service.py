"""Asset downloads with bounded retry.

Sources can be ``data:`` URLs, local paths (absolute, or relative to the
public directory) and http(s) URLs. Object storage URLs are presigned
before the first request and re-presigned exactly once when the store
answers 403.
"""

import asyncio
import base64
import logging
import shutil
from pathlib import Path
from urllib.parse import unquote

import httpx

from adrender.config import Settings, get_settings
from adrender.exceptions import AssetDownloadError, AuthorizationExpiredError
from adrender.services.storage_service import ObjectStorageService, is_object_storage_url

logger = logging.getLogger(__name__)


def _describe(error: Exception) -> str:
    # httpx status errors embed the full (possibly signed) URL
    if isinstance(error, httpx.HTTPStatusError):
        return f"HTTP {error.response.status_code}"
    return f"{type(error).__name__}: {error}"


class AssetDownloader:
    def __init__(
        self,
        storage: ObjectStorageService | None = None,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.storage = storage
        self._client = client

    async def download(self, url: str, dest: str | Path) -> Path:
        """Fetch ``url`` into ``dest``.

        Raises:
            AssetDownloadError: when the source is unusable or every attempt failed
        """
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        if url.startswith("blob:"):
            raise AssetDownloadError(url, 0, "blob URLs only exist inside the browser")
        if url.startswith("data:"):
            return await asyncio.to_thread(self._write_data_url, url, dest)
        if url.startswith(("http://", "https://")):
            return await self._download_remote(url, dest)
        return await asyncio.to_thread(self._copy_local, url, dest)

    # =========================================================================
    # Inline and local sources
    # =========================================================================

    def _write_data_url(self, url: str, dest: Path) -> Path:
        header, sep, payload = url.partition(",")
        if not sep:
            raise AssetDownloadError(url, 1, "malformed data URL")
        try:
            if header.endswith(";base64"):
                data = base64.b64decode(payload, validate=False)
            else:
                data = unquote(payload).encode()
        except ValueError as e:
            raise AssetDownloadError(url, 1, f"invalid base64 payload: {e}") from e
        dest.write_bytes(data)
        return dest

    def _copy_local(self, url: str, dest: Path) -> Path:
        path = Path(url.removeprefix("file://"))
        if not path.is_file():
            path = Path(self.settings.public_dir) / url.lstrip("/")
        if not path.is_file():
            raise AssetDownloadError(url, 1, "local file not found")
        shutil.copyfile(path, dest)
        return dest

    # =========================================================================
    # Remote sources
    # =========================================================================

    async def _download_remote(self, url: str, dest: Path) -> Path:
        is_storage = self.storage is not None and is_object_storage_url(url)
        if is_storage:
            url = await self.storage.refresh_url(url)

        attempts = max(1, self.settings.download_retry_attempts)
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                await self._fetch_with_refresh(url, dest, is_storage)
                if attempt > 1:
                    logger.info(f"[DOWNLOAD] Succeeded on attempt {attempt}: {url.split('?')[0]}")
                return dest
            except AuthorizationExpiredError:
                # Still forbidden after a fresh signature: not transient
                raise
            except (httpx.HTTPError, OSError) as e:
                last_error = _describe(e)
                logger.warning(f"[DOWNLOAD] Attempt {attempt}/{attempts} failed for {url.split('?')[0]}: {last_error}")
                if attempt < attempts:
                    await asyncio.sleep(self.settings.download_retry_delay_seconds)

        raise AssetDownloadError(url, attempts, last_error)

    async def _fetch_with_refresh(self, url: str, dest: Path, is_storage: bool) -> None:
        try:
            await self._fetch(url, dest)
        except AuthorizationExpiredError:
            if not is_storage:
                raise
            logger.info(f"[DOWNLOAD] 403 from storage, refreshing {url.split('?')[0]}")
            fresh = await self.storage.refresh_url(url, force=True)
            await self._fetch(fresh, dest)

    async def _fetch(self, url: str, dest: Path) -> None:
        client = self._client or httpx.AsyncClient(
            timeout=self.settings.download_timeout_seconds,
            follow_redirects=True,
        )
        headers = {"User-Agent": self.settings.download_user_agent}
        try:
            async with client.stream("GET", url, headers=headers) as response:
                if response.status_code == 403:
                    raise AuthorizationExpiredError(url, 1, "HTTP 403")
                response.raise_for_status()
                with open(dest, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
        finally:
            if self._client is None:
                await client.aclose()
