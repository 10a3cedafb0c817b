"""Application configuration."""
from pathlib import Path
from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="YTFIELD_",
        case_sensitive=False,
        extra="ignore",
    )

    # App settings
    app_name: str = "YouTube Upload Field"
    debug: bool = False

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Database
    data_dir: Path = Path("./data")
    database_url: str = "sqlite+aiosqlite:///./data/ytfield.db"

    # Option storage
    option_prefix: str = "ytfield"
    legacy_option_prefix: str = "upload-field-to-youtube-for-acf"

    # Google OAuth
    google_oauth_client_id: str = ""
    google_oauth_client_secret: str = ""
    google_oauth_redirect_uri: str = "http://localhost:8000/api/oauth/callback"
    oauth_http_timeout: float = 15.0

    # Token maintenance (daily)
    cron_interval_seconds: int = 86400

    # Resumable upload
    upload_chunk_size: int = 1 * 1024 * 1024  # 1 MiB
    resumable_upload_max_chunks: int = 10000
    upload_session_timeout: float = 30.0
    upload_chunk_timeout: float = 60.0
    api_http_timeout: float = 15.0

    # Video ID discovery after an ambiguous upload completion
    recent_upload_time_window: int = 300  # 5 minutes
    video_id_retrieval_max_attempts: int = 5
    video_id_retrieval_sleep_interval: float = 3.0
    video_id_retrieval_initial_sleep: float = 2.0

    # Field defaults
    default_category_id: str = "22"  # People & Blogs
    default_privacy_status: str = "unlisted"
    default_made_for_kids: bool = False
    default_tags: str = ""

    # Common video formats supported by YouTube
    allowed_video_mime_types: Dict[str, str] = {
        "mp4": "video/mp4",
        "avi": "video/avi",
        "mov": "video/quicktime",
        "wmv": "video/x-ms-wmv",
        "flv": "video/x-flv",
        "webm": "video/webm",
        "mkv": "video/x-matroska",
        "3gp": "video/3gpp",
        "ogv": "video/ogg",
        "m4v": "video/x-m4v",
        "mpeg": "video/mpeg",
        "mpg": "video/mpeg",
    }

    @property
    def token_option_key(self) -> str:
        """Option key holding the OAuth token record."""
        return f"{self.option_prefix}_access_token"

    @property
    def legacy_token_option_key(self) -> str:
        return f"{self.legacy_option_prefix}__access_token"

    def require_oauth_credentials(self) -> None:
        """Raise if the Google OAuth client is not configured."""
        from ytfield.services.errors import ValidationError

        missing = [
            name
            for name, value in (
                ("YTFIELD_GOOGLE_OAUTH_CLIENT_ID", self.google_oauth_client_id),
                ("YTFIELD_GOOGLE_OAUTH_CLIENT_SECRET", self.google_oauth_client_secret),
            )
            if not value
        ]
        if missing:
            raise ValidationError(
                f"Google OAuth credentials not configured. Set {', '.join(missing)} in your .env file."
            )


# Global settings instance
settings = Settings()
