import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    admin_api_url: str
    auth_jwt_secret: str
    external_system_base_url: str
    default_page_size: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///edms.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        admin_api_url=_getenv("ADMIN_API_URL", ""),
        auth_jwt_secret=_getenv("AUTH_JWT_SECRET", ""),
        external_system_base_url=_getenv("EXTERNAL_SYSTEM_BASE_URL", ""),
        default_page_size=_getenv_int("DEFAULT_PAGE_SIZE", 10),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        # authorization collaborator
        "ADMIN_API_URL": s.admin_api_url,
        "AUTH_JWT_SECRET": s.auth_jwt_secret,
        # scanned files are uploaded to an external records system
        "EXTERNAL_SYSTEM_BASE_URL": s.external_system_base_url,
        "DEFAULT_PAGE_SIZE": s.default_page_size,
    }
