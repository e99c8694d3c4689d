from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global settings for the AFE approval service.
    Values are read from the environment and from a local .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Project
    project_name: str = "AFE Approval API"
    api_v1_str: str = "/api/v1"
    debug: bool = False
    log_dir: str = "log"

    # Identity provider tokens
    secret_key: str = "changeme"
    algorithm: str = "HS256"

    # Database
    database_url: str = "sqlite:///./afe.db"

    # Blob storage (local directory or S3 / MinIO)
    afe_storage: str = "_storage"
    s3_endpoint_url: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_bucket_documents: str = "afe-documents"
    upload_max_bytes: int = 50 * 1024 * 1024

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # E-mail: "smtp" or "sendgrid"; anything else only logs the message
    email_backend: str = "sendgrid"
    sendgrid_api_key: Optional[str] = None
    email_from: str = "noreply@afe-approval.local"
    email_from_name: str = "AFE Approval System"
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_starttls: bool = True

    # Public URL used in e-mail links
    public_app_url: str = "http://localhost:3000"

    # Extra recipients of the fully-signed notification
    completion_distribution_list: List[str] = []

    # Reminders only go out while no one has signed yet unless this is enabled
    remind_allow_partially_signed: bool = False

    def resolved_public_app_url(self) -> str:
        return (self.public_app_url or "").strip().rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Return the cached global settings instance."""
    return Settings()


settings = get_settings()
