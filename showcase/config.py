from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "showcase-upload"
    app_version: str = "dev"
    host: str = "0.0.0.0"
    port: int = 8000
    r2_bucket: str = ""
    r2_account_id: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_endpoint_url: str = ""
    r2_public_url: str = ""
    storage_region: str = "auto"
    presign_expiry_seconds: int = 900
    control_plane_url: str = "http://127.0.0.1:8000"
    control_plane_timeout_seconds: float = 30.0
    part_upload_timeout_seconds: float = 300.0
    chunk_size_bytes: int = 10 * MIB
    large_file_threshold_bytes: int = 50 * MIB
    max_concurrency: int = 3
    multipart_enabled: bool = True
    direct_upload_max_bytes: int = 50 * MIB
    part_upload_max_retries: int = 0
    tracing_enabled: bool = False
    tracing_service_name: str = "showcase-upload"
    otlp_endpoint: str = "localhost:4317"
    otlp_insecure: bool = True


settings = Settings()


@dataclass(frozen=True)
class StorageConfig:
    """Credentials and addressing for the object store behind the control plane."""

    bucket: str
    endpoint_url: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str
    region: str = "auto"
    presign_expiry_seconds: int = 900

    @classmethod
    def from_settings(cls, source: Settings) -> "StorageConfig":
        endpoint_url = source.r2_endpoint_url
        if not endpoint_url and source.r2_account_id:
            endpoint_url = f"https://{source.r2_account_id}.r2.cloudflarestorage.com"
        return cls(
            bucket=source.r2_bucket,
            endpoint_url=endpoint_url,
            access_key_id=source.r2_access_key_id,
            secret_access_key=source.r2_secret_access_key,
            public_base_url=source.r2_public_url.rstrip("/"),
            region=source.storage_region,
            presign_expiry_seconds=source.presign_expiry_seconds,
        )

    def missing_fields(self) -> list[str]:
        required = {
            "bucket": self.bucket,
            "endpoint_url": self.endpoint_url,
            "access_key_id": self.access_key_id,
            "secret_access_key": self.secret_access_key,
            "public_base_url": self.public_base_url,
        }
        return [name for name, value in required.items() if not value]

    @property
    def is_configured(self) -> bool:
        return not self.missing_fields()

    def public_url(self, object_key: str) -> str:
        return f"{self.public_base_url}/{object_key}"


@dataclass(frozen=True)
class UploadConfig:
    """Client-side pipeline tuning, built once at the edge and handed to the router."""

    chunk_size: int = 10 * MIB
    large_file_threshold: int = 50 * MIB
    max_concurrency: int = 3
    multipart_enabled: bool = True
    direct_upload_max_bytes: int = 50 * MIB
    part_upload_max_retries: int = 0

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.large_file_threshold <= 0:
            raise ValueError("large_file_threshold must be positive")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.part_upload_max_retries < 0:
            raise ValueError("part_upload_max_retries cannot be negative")

    @classmethod
    def from_settings(cls, source: Settings) -> "UploadConfig":
        return cls(
            chunk_size=source.chunk_size_bytes,
            large_file_threshold=source.large_file_threshold_bytes,
            max_concurrency=source.max_concurrency,
            multipart_enabled=source.multipart_enabled,
            direct_upload_max_bytes=source.direct_upload_max_bytes,
            part_upload_max_retries=source.part_upload_max_retries,
        )
