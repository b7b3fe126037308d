import os


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


class Settings:
    SECRET_KEY: str = os.getenv("SECRET_KEY", "your-secret-key")
    ALGORITHM: str = "HS256"

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./sealshare.db")
    DATABASE_ECHO: bool = _env_bool("DATABASE_ECHO", "false")

    ENCRYPTION_KEY_ENV: str = "ENCRYPTION_KEY"

    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "local")
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "encrypted_uploads")
    MINIO_ENDPOINT: str = os.getenv("MINIO_ENDPOINT", "minio:9000")
    MINIO_ACCESS_KEY: str = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
    MINIO_SECRET_KEY: str = os.getenv("MINIO_SECRET_KEY", "minioadmin")
    MINIO_BUCKET: str = os.getenv("MINIO_BUCKET", "sealshare")
    MINIO_SECURE: bool = _env_bool("MINIO_SECURE", "false")

    MAX_FILE_SIZE: int = int(os.getenv("MAX_FILE_SIZE", str(50 * 1024 * 1024)))
    SHARE_TOKEN_TTL_HOURS: int = int(os.getenv("SHARE_TOKEN_TTL_HOURS", "24"))
    VERIFY_BEFORE_STREAM: bool = _env_bool("VERIFY_BEFORE_STREAM", "true")
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "")

    SENDGRID_API_KEY: str | None = os.getenv("SENDGRID_API_KEY")
    EMAIL_FROM: str | None = os.getenv("EMAIL_FROM")
    EMAIL_FROM_NAME: str = os.getenv("EMAIL_FROM_NAME", "SealShare")

    ORPHAN_SWEEP_ENABLED: bool = _env_bool("ORPHAN_SWEEP_ENABLED", "true")
    ORPHAN_SWEEP_INTERVAL_SECONDS: int = int(os.getenv("ORPHAN_SWEEP_INTERVAL_SECONDS", "3600"))
    ORPHAN_GRACE_SECONDS: int = int(os.getenv("ORPHAN_GRACE_SECONDS", "3600"))

settings = Settings()
