"""Application configuration using pydantic-settings."""
import ipaddress
import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url

logger = logging.getLogger(__name__)

# Sync driver names that are upgraded to their asyncio counterparts
ASYNC_DRIVERS = {
    "sqlite": "sqlite+aiosqlite",
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "mariadb": "mysql+aiomysql",
}


def default_data_dir() -> Path:
    """Return the default data directory (~/.local/share/shiori)."""
    return Path.home() / ".local" / "share" / "shiori"


def normalize_database_url(url: str) -> str:
    """
    Upgrade a database URL to an asyncio driver.

    `postgres://`, `postgresql://`, `mysql://`, `mariadb://` and `sqlite://` URLs
    are rewritten to asyncpg, aiomysql and aiosqlite. URLs that already name a
    driver (e.g. `postgresql+asyncpg://`) are returned unchanged.
    """
    parsed = make_url(url)
    if "+" in parsed.drivername:
        return parsed.render_as_string(hide_password=False)
    driver = ASYNC_DRIVERS.get(parsed.drivername)
    if driver is None:
        raise ValueError(f"Unsupported database URL scheme: {parsed.drivername}")
    return parsed.set(drivername=driver).render_as_string(hide_password=False)


class Settings(BaseSettings):
    """Application settings loaded from SHIORI_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SHIORI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    dir: Path = Field(default_factory=default_data_dir)

    # Database - DATABASE_URL wins over the legacy DBMS/DB_* parameters
    database_url: str | None = None
    dbms: Literal["sqlite", "mysql", "postgresql"] = "sqlite"
    db_user: str = ""
    db_pass: str = ""
    db_name: str = "shiori"
    db_host: str = "127.0.0.1"
    db_port: int | None = None
    db_pool_size: int = Field(default=5, ge=1)
    db_write_timeout: float = Field(default=10.0, gt=0)
    db_auto_migrate: bool = True

    # HTTP server
    http_port: int = Field(default=8080, ge=1, le=65535)
    http_address: str = ""
    http_root_path: str = "/"
    http_secret_key: str = ""
    http_access_log: bool = True
    http_serve_web_ui: bool = True

    # Reverse proxy identity (comma-separated CIDRs, parsed via property)
    http_sso_proxy_auth: bool = False
    http_sso_proxy_auth_header_name: str = "Remote-User"
    http_sso_proxy_auth_trusted: str = ""

    # Bootstrap login, honored only while the account table is empty
    default_login_enabled: bool = True
    default_username: str = "shiori"
    default_password: str = "gopher"

    # Ingestion
    fetch_timeout: float = Field(default=60.0, gt=0)
    url_tracking_params: str = "fbclid,gclid,mc_cid,mc_eid"

    log_level: str = "INFO"

    # Build information reported by liveness/system endpoints
    build_commit: str = "dev"
    build_date: str = "unknown"

    @field_validator("dir", mode="after")
    @classmethod
    def expand_dir(cls, v: Path) -> Path:
        """Expand `~` in the data directory."""
        return v.expanduser()

    @field_validator("http_root_path", mode="after")
    @classmethod
    def normalize_root_path(cls, v: str) -> str:
        """Root path always starts and ends with a slash."""
        v = "/" + v.strip("/")
        return v if v == "/" else v + "/"

    @field_validator("http_sso_proxy_auth_trusted", mode="after")
    @classmethod
    def validate_trusted_networks(cls, v: str) -> str:
        """Reject malformed CIDR entries at startup."""
        for network in _split_csv(v):
            try:
                ipaddress.ip_network(network, strict=False)
            except ValueError as e:
                raise ValueError(f"Invalid trusted proxy network: {network}") from e
        return v

    @model_validator(mode="after")
    def ensure_secret_key(self) -> "Settings":
        """
        Generate a random signing key when none is configured.

        Tokens signed with a generated key do not survive a restart, so the
        operator is warned.
        """
        if not self.http_secret_key:
            logger.warning(
                "SHIORI_HTTP_SECRET_KEY is not set, generated a random key. "
                "Sessions will be invalidated on restart.",
            )
            self.http_secret_key = secrets.token_hex(32)
        return self

    @property
    def resolved_database_url(self) -> str:
        """Async SQLAlchemy URL for the configured database."""
        if self.database_url:
            return normalize_database_url(self.database_url)

        if self.dbms == "sqlite":
            return f"sqlite+aiosqlite:///{self.dir / 'shiori.db'}"

        drivername = ASYNC_DRIVERS[self.dbms]
        default_port = 3306 if self.dbms == "mysql" else 5432
        url = URL.create(
            drivername,
            username=self.db_user or None,
            password=self.db_pass or None,
            host=self.db_host,
            port=self.db_port or default_port,
            database=self.db_name,
        )
        return url.render_as_string(hide_password=False)

    @property
    def trusted_proxy_networks(self) -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
        """Parse comma-separated trusted CIDR list."""
        return [
            ipaddress.ip_network(network, strict=False)
            for network in _split_csv(self.http_sso_proxy_auth_trusted)
        ]

    @property
    def tracking_params(self) -> frozenset[str]:
        """Query keys stripped from URLs in addition to utm_*."""
        return frozenset(key.lower() for key in _split_csv(self.url_tracking_params))


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
