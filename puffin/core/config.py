"""Application configuration via environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or .env file."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Puffin Sync"
    debug: bool = False

    # Server
    host: str = "127.0.0.1"  # The desktop shell talks to us over loopback
    port: int = 8765
    allowed_origins: str = "*"  # Comma-separated origins, or "*" for all

    # Local storage
    data_dir: Path = Path("data")
    database_filename: str = "puffin.db"
    log_dir: Path = Path.home() / ".logs" / "puffin"
    local_backup_keep: int = 5

    # Google OAuth client registration (optional, can be entered at runtime instead)
    google_client_id: str = ""
    google_client_secret: str = ""
    google_api_key: str = ""
    google_redirect_uri: str = "http://localhost:8765/sync/oauth/callback"
    settings_page_url: str = "/?page=settings"

    # Secret material for the credential vault; machine-derived when empty
    sync_encryption_key: str = ""

    # Remote transfer settings
    remote_backup_filename: str = "puffin-backup.db"
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    download_timeout_seconds: float = 120.0

    # Background remote check
    remote_check_interval_minutes: int = 5

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_filename

    @property
    def config_path(self) -> Path:
        return self.data_dir / "sync-config.json"

    @property
    def backup_dir(self) -> Path:
        return self.data_dir / "backups"

    @property
    def download_temp_path(self) -> Path:
        return self.data_dir / "puffin-download-temp.db"


settings = Settings()
