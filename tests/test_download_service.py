"""
Tests for asset downloads: retry, 403 refresh and non-http sources.
"""

import base64

import httpx
import pytest

from adrender.exceptions import AssetDownloadError, AuthorizationExpiredError
from adrender.services.download_service import AssetDownloader
from adrender.services.storage_service import ObjectStorageService


def scripted_client(responses: list[int], requests: list[httpx.Request], body: bytes = b"asset-bytes"):
    """Client answering with the given status codes in order (the last one repeats)."""

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        status = responses[min(len(requests), len(responses)) - 1]
        return httpx.Response(status, content=body if status == 200 else b"")

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestRemoteDownloads:
    """Tests for http(s) downloads."""

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, settings, tmp_path):
        """Test two 503s followed by a 200 still produce the file."""
        requests: list[httpx.Request] = []
        downloader = AssetDownloader(client=scripted_client([503, 503, 200], requests), settings=settings)

        path = await downloader.download("https://cdn.example.com/bg.jpg", tmp_path / "bg.jpg")

        assert path.read_bytes() == b"asset-bytes"
        assert len(requests) == 3
        assert requests[0].headers["User-Agent"] == settings.download_user_agent

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, settings, tmp_path):
        requests: list[httpx.Request] = []
        downloader = AssetDownloader(client=scripted_client([500], requests), settings=settings)

        with pytest.raises(AssetDownloadError) as exc_info:
            await downloader.download("https://cdn.example.com/bg.jpg?token=secret", tmp_path / "bg.jpg")

        assert len(requests) == 3
        assert exc_info.value.attempts == 3
        assert "secret" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_storage_403_refreshes_once(self, settings, tmp_path, fake_signer):
        """Test a 403 from storage triggers exactly one re-presign."""
        requests: list[httpx.Request] = []
        signer = fake_signer
        storage = ObjectStorageService(signer=signer, settings=settings)
        downloader = AssetDownloader(storage=storage, client=scripted_client([403, 200], requests), settings=settings)

        path = await downloader.download("https://b.s3.amazonaws.com/bg.jpg", tmp_path / "bg.jpg")

        assert path.read_bytes() == b"asset-bytes"
        assert len(signer.calls) == 2
        assert [r.url.params["X-Amz-Signature"] for r in requests] == ["sig1", "sig2"]

    @pytest.mark.asyncio
    async def test_storage_403_after_refresh_is_final(self, settings, tmp_path, fake_signer):
        """Test a second 403 is not retried further."""
        requests: list[httpx.Request] = []
        signer = fake_signer
        storage = ObjectStorageService(signer=signer, settings=settings)
        downloader = AssetDownloader(storage=storage, client=scripted_client([403], requests), settings=settings)

        with pytest.raises(AuthorizationExpiredError):
            await downloader.download("https://b.s3.amazonaws.com/bg.jpg", tmp_path / "bg.jpg")

        assert len(requests) == 2
        assert len(signer.calls) == 2

    @pytest.mark.asyncio
    async def test_plain_403_not_retried(self, settings, tmp_path):
        requests: list[httpx.Request] = []
        downloader = AssetDownloader(client=scripted_client([403], requests), settings=settings)

        with pytest.raises(AuthorizationExpiredError):
            await downloader.download("https://cdn.example.com/bg.jpg", tmp_path / "bg.jpg")

        assert len(requests) == 1


class TestOtherSources:
    """Tests for data, blob and local sources."""

    @pytest.mark.asyncio
    async def test_base64_data_url(self, settings, tmp_path):
        payload = base64.b64encode(b"\x89PNG data").decode()
        downloader = AssetDownloader(settings=settings)
        path = await downloader.download(f"data:image/png;base64,{payload}", tmp_path / "img.png")
        assert path.read_bytes() == b"\x89PNG data"

    @pytest.mark.asyncio
    async def test_plain_data_url(self, settings, tmp_path):
        downloader = AssetDownloader(settings=settings)
        path = await downloader.download("data:text/plain,hello%20world", tmp_path / "a.txt")
        assert path.read_bytes() == b"hello world"

    @pytest.mark.asyncio
    async def test_blob_url_rejected(self, settings, tmp_path):
        downloader = AssetDownloader(settings=settings)
        with pytest.raises(AssetDownloadError):
            await downloader.download("blob:https://app.example.com/1234", tmp_path / "a.jpg")

    @pytest.mark.asyncio
    async def test_local_paths(self, settings, tmp_path, sample_image):
        """Test absolute paths and paths relative to the public directory."""
        downloader = AssetDownloader(settings=settings)

        absolute = await downloader.download(str(sample_image), tmp_path / "copy1.png")
        assert absolute.read_bytes() == sample_image.read_bytes()

        public = tmp_path / "public" / "images"
        public.mkdir(parents=True)
        (public / "logo.png").write_bytes(b"logo")
        relative = await downloader.download("/images/logo.png", tmp_path / "copy2.png")
        assert relative.read_bytes() == b"logo"

    @pytest.mark.asyncio
    async def test_missing_local_file(self, settings, tmp_path):
        downloader = AssetDownloader(settings=settings)
        with pytest.raises(AssetDownloadError):
            await downloader.download("/images/missing.png", tmp_path / "x.png")
