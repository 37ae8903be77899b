"""
Environment-driven settings.

Everything is read once in ``create_app()`` (after ``.env`` is loaded) and
copied into ``app.config``; services read the two governance knobs,
``LOGIN_APPROVAL_TTL_HOURS`` and ``COMPLIANCE_WINDOW_DAYS``, from there.
"""
import os
from dataclasses import dataclass

STORAGE_BACKENDS = ("local", "s3")
PRODUCTION_ENVS = ("prod", "production")
MAX_UPLOAD_BYTES = 25 * 1024 * 1024


def _env(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _env_positive_int(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from e
    if value <= 0:
        raise RuntimeError(f"{name} must be positive (got {value}).")
    return value


@dataclass(frozen=True)
class Settings:
    secret_key: str = "change-me"
    env: str = "development"
    database_url: str = "sqlite:///vendorflow.db"
    log_level: str = "INFO"

    storage_backend: str = "local"
    storage_local_root: str = ""
    s3_endpoint: str = ""
    s3_region: str = "nyc3"
    s3_bucket: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""

    login_approval_ttl_hours: int = 24
    compliance_window_days: int = 30

    @property
    def is_production(self) -> bool:
        return self.env.lower() in PRODUCTION_ENVS

    def validate(self) -> None:
        """Fail fast on settings the app cannot run with."""
        if self.storage_backend not in STORAGE_BACKENDS:
            raise RuntimeError(f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)} (got {self.storage_backend!r}).")
        if not self.is_production:
            return
        if not self.database_url:
            raise RuntimeError("DATABASE_URL is required in production.")
        if self.database_url.startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if self.secret_key in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")


def load_settings() -> Settings:
    d = Settings()
    return Settings(
        secret_key=_env("SECRET_KEY", d.secret_key),
        env=_env("ENV", d.env),
        database_url=_env("DATABASE_URL", d.database_url),
        log_level=_env("LOG_LEVEL", d.log_level).upper(),
        storage_backend=_env("STORAGE_BACKEND", d.storage_backend).lower(),
        storage_local_root=_env("STORAGE_LOCAL_ROOT"),
        s3_endpoint=_env("S3_ENDPOINT"),
        s3_region=_env("S3_REGION", d.s3_region),
        s3_bucket=_env("S3_BUCKET"),
        s3_access_key_id=_env("S3_ACCESS_KEY_ID"),
        s3_secret_access_key=_env("S3_SECRET_ACCESS_KEY"),
        login_approval_ttl_hours=_env_positive_int("LOGIN_APPROVAL_TTL_HOURS", d.login_approval_ttl_hours),
        compliance_window_days=_env_positive_int("COMPLIANCE_WINDOW_DAYS", d.compliance_window_days),
    )


def load_config(settings: Settings | None = None) -> dict:
    s = settings or load_settings()
    s.validate()
    config = {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "LOGIN_APPROVAL_TTL_HOURS": s.login_approval_ttl_hours,
        "COMPLIANCE_WINDOW_DAYS": s.compliance_window_days,
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": s.is_production,
        "MAX_CONTENT_LENGTH": MAX_UPLOAD_BYTES,
    }
    config.update(
        S3_ENDPOINT=s.s3_endpoint,
        S3_REGION=s.s3_region,
        S3_BUCKET=s.s3_bucket,
        S3_ACCESS_KEY_ID=s.s3_access_key_id,
        S3_SECRET_ACCESS_KEY=s.s3_secret_access_key,
    )
    return config
