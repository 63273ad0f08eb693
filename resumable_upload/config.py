from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "resumable-upload-service"
    app_version: str = "dev"
    host: str = "0.0.0.0"
    port: int = 8000
    database_url: str = "sqlite:///./resumable_upload.db"
    registry_backend: str = "database"
    storage_backend: str = "local"
    storage_root: str = "./data"
    s3_bucket: str = ""
    aws_region: str = "us-east-1"
    r2_bucket: str = ""
    r2_account_id: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_endpoint_url: str = ""
    coordination_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = ""
    tracing_enabled: bool = False
    tracing_service_name: str = "resumable-upload-service"
    otlp_endpoint: str = "localhost:4317"
    otlp_insecure: bool = True
    hash_algorithm: str = "md5"
    max_fragment_size_bytes: int = 5 * 1024 * 1024
    session_ttl_seconds: int = 86400
    merge_lease_seconds: int = 600
    incomplete_merge_lease_seconds: int = 5
    cleanup_enabled: bool = False
    cleanup_interval_seconds: int = 900


settings = Settings()
