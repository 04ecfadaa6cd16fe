from functools import lru_cache
from urllib.parse import quote, urlsplit, urlunsplit

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Data source; DATA_SOURCE_NAME wins over the USER/PASS/URI pieces
    data_source_name: str = Field("", alias="DATA_SOURCE_NAME")
    data_source_user: str = Field("", alias="DATA_SOURCE_USER")
    data_source_pass: str = Field("", alias="DATA_SOURCE_PASS")
    data_source_uri: str = Field("", alias="DATA_SOURCE_URI")

    # Web
    web_listen_address: str = Field(":9719", alias="WEB_LISTEN_ADDRESS")
    web_telemetry_path: str = Field("/metrics", alias="WEB_TELEMETRY_PATH")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_format: str = Field("logfmt", alias="LOG_FORMAT")  # logfmt|json

    # Seconds between connection attempts at startup
    connect_retry_interval: float = Field(5.0, alias="CONNECT_RETRY_INTERVAL")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    def dsn(self) -> str:
        if self.data_source_name:
            return self.data_source_name
        userinfo = f"{quote(self.data_source_user, safe='')}:{quote(self.data_source_pass, safe='')}"
        return f"postgresql://{userinfo}@{self.data_source_uri}"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reset_settings():
    """Clear cached settings (useful in tests when env vars change)."""
    get_settings.cache_clear()


def mask_password(dsn: str) -> str:
    """Rewrite the user info of a URL-style DSN as ``user:MASKED_PASSWORD``."""
    try:
        parts = urlsplit(dsn)
        username = parts.username
        hostname = parts.hostname
        port = parts.port
    except ValueError:
        return "could not parse DATA_SOURCE_NAME"
    if "@" not in parts.netloc:
        return dsn
    host = hostname or ""
    if ":" in host:
        host = f"[{host}]"
    if port is not None:
        host = f"{host}:{port}"
    netloc = f"{username or ''}:MASKED_PASSWORD@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def parse_listen_address(raw: str) -> tuple[str, int]:
    """Split ``host:port``; an empty host listens on all interfaces."""
    host, sep, port = raw.strip().rpartition(":")
    if not sep:
        raise ValueError(f"invalid listen address: {raw!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port)
