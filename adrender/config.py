from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "adrender"
    app_version: str = "0.1.0"
    debug: bool = False

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    render_ffmpeg_threads: int = 2
    render_ffmpeg_max_muxing_queue: int = 1024
    render_ffmpeg_timeout_seconds: float = 600.0

    # Working storage
    render_root: str = "renders"
    keep_intermediates: bool = False
    public_dir: str = "public"

    # Fonts
    fonts_dir: str = "fonts"
    fonts_fallback_dir: str = "public/fonts/files"
    fonts_metadata_path: str = "public/fonts/font-metadata.json"
    system_font_dirs_raw: str = "/usr/share/fonts,/usr/local/share/fonts,/Library/Fonts,/System/Library/Fonts"
    font_catalog_url: str = "https://fonts.googleapis.com/css2"
    default_font_family: str = "Open Sans"
    caller_fallback_font_family: str = "Arial"

    # Downloads
    download_retry_attempts: int = 3
    download_retry_delay_seconds: float = 1.0
    download_timeout_seconds: float = 30.0
    download_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    # Object storage (S3-compatible or GCS)
    storage_backend: Literal["s3", "gcs"] = "s3"
    s3_endpoint_url: str = ""  # e.g. https://s3.wasabisys.com
    s3_region: str = "us-east-1"
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    gcs_project_id: str = ""
    presigned_url_expiry_seconds: int = 7 * 24 * 60 * 60

    # Verification
    verify_duration_tolerance_seconds: float = 0.5

    @computed_field
    @property
    def system_font_dirs(self) -> list[str]:
        """Parse system font directories from a comma or pipe separated string."""
        sep = "|" if "|" in self.system_font_dirs_raw else ","
        return [d.strip() for d in self.system_font_dirs_raw.split(sep) if d.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
