"""
Pytest fixtures for adrender tests.

Most tests replace ffmpeg and the network with fakes. Tests that need a real
ffmpeg/ffprobe binary are marked with @pytest.mark.requires_ffmpeg and request
the ffmpeg_available fixture, which skips them when the binaries are missing.
Run `pytest -m "not requires_ffmpeg"` to skip them explicitly.
"""

import io
import shutil
from pathlib import Path

import httpx
import pytest
from PIL import Image

from adrender.config import Settings
from adrender.exceptions import AssetDownloadError
from adrender.render.fonts import FontCache, FontResolver


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring ffmpeg/ffprobe binaries",
    )


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def png_bytes(width: int = 64, height: int = 32, color: tuple[int, int, int] = (255, 0, 0)) -> bytes:
    """Encode a solid color PNG in memory."""
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buf, "PNG")
    return buf.getvalue()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every directory into tmp_path, with no retry delay."""
    return Settings(
        _env_file=None,
        render_root=str(tmp_path / "renders"),
        public_dir=str(tmp_path / "public"),
        fonts_dir=str(tmp_path / "fonts"),
        fonts_fallback_dir=str(tmp_path / "fallback-fonts"),
        fonts_metadata_path=str(tmp_path / "font-metadata.json"),
        system_font_dirs_raw="",
        download_retry_attempts=3,
        download_retry_delay_seconds=0,
    )


@pytest.fixture
def offline_client() -> httpx.AsyncClient:
    """HTTP client whose every request answers 404."""
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))


@pytest.fixture
def bundled_fonts(settings: Settings) -> Path:
    """A fonts directory with Roboto and Open Sans files (contents are not parsed)."""
    fonts_dir = Path(settings.fonts_dir)
    fonts_dir.mkdir(parents=True, exist_ok=True)
    for name in ("Roboto-Regular.ttf", "Roboto-Bold.ttf", "OpenSans-Regular.ttf"):
        (fonts_dir / name).write_bytes(b"font")
    return fonts_dir


@pytest.fixture
def font_resolver(settings: Settings, bundled_fonts: Path, offline_client: httpx.AsyncClient) -> FontResolver:
    return FontResolver(FontCache(), client=offline_client, settings=settings)


@pytest.fixture
def sample_image(tmp_path: Path) -> Path:
    path = tmp_path / "sample.png"
    path.write_bytes(png_bytes(200, 100))
    return path


class FakeSigner:
    """Presigner returning a new signature on every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, int]] = []
        self.fail = False

    def presign(self, bucket: str, key: str, expires_seconds: int) -> str:
        self.calls.append((bucket, key, expires_seconds))
        if self.fail:
            raise RuntimeError("credentials missing")
        return f"https://{bucket}.s3.amazonaws.com/{key}?X-Amz-Signature=sig{len(self.calls)}"


@pytest.fixture
def fake_signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def ffmpeg_available() -> None:
    """Skip the requesting test unless ffmpeg and ffprobe are installed."""
    if not _ffmpeg_available():
        pytest.skip("ffmpeg/ffprobe not installed")


@pytest.fixture
def make_png():
    """Factory for in-memory PNG bytes."""
    return png_bytes


class FakeDownloader:
    """Downloader serving canned bytes per URL; Exception values are raised."""

    def __init__(self, assets: dict[str, bytes | Exception] | None = None) -> None:
        self.assets = assets or {}
        self.calls: list[str] = []

    async def download(self, url: str, dest) -> Path:
        self.calls.append(url)
        value = self.assets.get(url)
        if value is None:
            raise AssetDownloadError(url, 1, "not found")
        if isinstance(value, Exception):
            raise value
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(value)
        return dest


class FakeFFmpeg:
    """Stand-in for FFmpegRenderer._run.

    Records every command, writes a dummy output file and snapshots concat
    manifests before they are cleaned up. Descriptions starting with any
    prefix in ``fail_on`` raise RuntimeError.
    """

    def __init__(self) -> None:
        self.commands: list[list[str]] = []
        self.descriptions: list[str] = []
        self.manifests: list[str] = []
        self.fail_on: tuple[str, ...] = ()

    async def __call__(self, cmd: list[str], description: str) -> None:
        self.commands.append(cmd)
        self.descriptions.append(description)
        if "concat" in cmd:
            self.manifests.append(Path(cmd[cmd.index("-i") + 1]).read_text(encoding="utf-8"))
        if description.startswith(self.fail_on):
            raise RuntimeError(f"{description} failed (exit 1): simulated")
        Path(cmd[-1]).write_bytes(b"encoded")


@pytest.fixture
def fake_ffmpeg() -> FakeFFmpeg:
    return FakeFFmpeg()


@pytest.fixture
def make_downloader():
    """Factory for FakeDownloader instances."""
    return FakeDownloader
