import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Montage Render API"
    app_version: str = "0.1.0"
    git_hash: str = "unknown"  # Set via GIT_HASH env var at build time
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        # Pipe-separated (for Cloud Run compatibility)
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Render output
    renders_dir: str = "./public/renders"
    renders_url_prefix: str = "/renders"
    render_entry_point: str = "montage.render.composition:COMPOSITIONS"
    render_composition_id: str = "VideoComposition"

    # Composition defaults (used when neither options nor design specify them)
    default_fps: int = 30
    default_width: int = 1920
    default_height: int = 1080

    # Encoder
    render_video_preset: str = "medium"
    render_video_crf: int = 18

    # Job lifecycle
    # Seconds without a progress message before a PROCESSING job is marked TIMEOUT. 0 = disabled.
    render_stall_timeout_s: float = 300.0
    # Seconds a finished job stays queryable. 0 = keep for the process lifetime.
    job_retention_s: float = 3600.0

    # Client polling
    poll_interval_s: float = 2.5
    request_timeout_s: float = 30.0
    api_base_url: str = "http://localhost:8000"


@lru_cache
def get_settings() -> Settings:
    return Settings()
