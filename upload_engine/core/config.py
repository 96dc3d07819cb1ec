"""
Core configuration for the resumable upload engine.
Manages environment variables for the ingest endpoint, retries and session storage.
"""
import os
from typing import Tuple
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""
    
    # Ingest endpoint
    ingest_endpoint: str = os.getenv("UPLOAD_TUS_ENDPOINT", "https://tusd.tusdemo.net/files/")
    request_timeout_seconds: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))
    
    # Chunking and retries
    chunk_size_bytes: int = int(os.getenv("CHUNK_SIZE_BYTES", str(8 * 1024 * 1024)))
    retry_delays: str = os.getenv("RETRY_DELAYS", "0,3,5,10,20")
    max_retry_attempts: int = int(os.getenv("MAX_RETRY_ATTEMPTS", "5"))
    progress_sample_interval_seconds: float = float(os.getenv("PROGRESS_SAMPLE_INTERVAL_SECONDS", "1.0"))
    
    # File limits
    max_file_size_gb: int = int(os.getenv("MAX_FILE_SIZE_GB", "50"))
    
    # Session storage
    session_store_backend: str = os.getenv("SESSION_STORE_BACKEND", "dynamodb")
    upload_sessions_table_name: str = os.getenv("UPLOAD_SESSIONS_TABLE_NAME", "")
    aws_region: str = os.getenv("AWS_REGION", "us-east-1")
    session_save_interval_seconds: float = float(os.getenv("SESSION_SAVE_INTERVAL_SECONDS", "1.0"))
    session_ttl_hours: int = int(os.getenv("SESSION_TTL_HOURS", "72"))
    
    # API Configuration
    api_title: str = os.getenv("API_TITLE", "Resumable Upload Engine")
    api_version: str = os.getenv("API_VERSION", "1.0.0")
    
    # Environment
    environment: str = os.getenv("ENVIRONMENT", "dev")
    
    @property
    def retry_delay_sequence(self) -> Tuple[float, ...]:
        """Backoff delays in seconds, parsed from the comma separated setting."""
        parts = [part.strip() for part in self.retry_delays.split(",") if part.strip()]
        if not parts:
            raise ValueError("RETRY_DELAYS must list at least one delay")
        return tuple(float(part) for part in parts)
    
    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_gb * 1024 * 1024 * 1024
    
    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
