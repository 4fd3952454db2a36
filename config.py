import os
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse, urlunparse

logger = logging.getLogger(__name__)

TRANSPORTS = ("websocket", "rest")
UPDATE_SHAPES = ("operations", "nested")
PORT_LINK_STRATEGIES = ("port_subsys", "add_subsystems")


def _env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name, default)
    if v is None:
        return None
    v = v.strip()
    return v if v else None


def _env_bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    return v.lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    v = _env(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        raise ValueError(f"{name} must be an integer; got {v!r}")


def _env_choice(name: str, choices: tuple[str, ...], default: str) -> str:
    v = (_env(name) or default).lower()
    if v not in choices:
        raise ValueError(f"{name} must be one of {choices}; got {v!r}")
    return v


@dataclass(frozen=True)
class Settings:
    TRUENAS_URL: Optional[str]
    TRUENAS_API_KEY: Optional[str]
    TRUENAS_WS_URL_OVERRIDE: Optional[str] = None
    TRUENAS_WS_PATH: str = "/websocket"
    TRUENAS_VERIFY_TLS: bool = False
    TRUENAS_TRANSPORT: str = "websocket"
    TRUENAS_TIMEOUT: int = 30

    # payload shapes differ between middleware generations
    TRUENAS_DATASET_UPDATE_SHAPE: str = "operations"
    TRUENAS_SNAPSHOT_UPDATE_SHAPE: str = "operations"
    TRUENAS_NVMET_PORT_LINK: str = "port_subsys"

    TRUENAS_JOB_POLL_INTERVAL_MS: int = 3000
    TRUENAS_FS_JOB_TIMEOUT: int = 30
    TRUENAS_VERSION_CACHE_TTL: int = 60

    AUDIT_PARENT_DATASET: Optional[str] = None

    # bcrypt hash guarding destructive operator endpoints
    ADMIN_PASSWORD_HASH: str = ""

    LOG_LEVEL: str = "INFO"

    @property
    def TRUENAS_WS_URL(self) -> str:
        if self.TRUENAS_WS_URL_OVERRIDE:
            return self.TRUENAS_WS_URL_OVERRIDE

        if not self.TRUENAS_URL:
            raise ValueError("TRUENAS_URL is not configured")

        base = self.TRUENAS_URL.strip().rstrip("/")
        p = urlparse(base)

        if not p.scheme or not p.netloc:
            raise ValueError(
                f"TRUENAS_URL must include scheme and host; got: {self.TRUENAS_URL!r}"
            )

        if p.scheme not in {"http", "https"}:
            raise ValueError(
                f"TRUENAS_URL scheme must be http or https; got: {p.scheme!r}"
            )

        ws_scheme = "wss" if p.scheme == "https" else "ws"
        return urlunparse((ws_scheme, p.netloc, self.TRUENAS_WS_PATH, "", "", ""))


def load_settings() -> Settings:
    url = _env("TRUENAS_URL")
    api_key = os.getenv("TRUENAS_API_KEY", "").strip()
    ws_url = _env("TRUENAS_WS_URL")
    ws_path = _env("TRUENAS_WS_PATH", "/websocket") or "/websocket"
    verify_tls = _env_bool("TRUENAS_VERIFY_TLS", default=False)

    if not url:
        logger.warning("TRUENAS_URL not set; running in unconfigured mode")
    if not api_key:
        logger.warning("TRUENAS_API_KEY not set; running in unconfigured mode")

    return Settings(
        TRUENAS_URL=url,
        TRUENAS_API_KEY=api_key,
        TRUENAS_WS_URL_OVERRIDE=ws_url,
        TRUENAS_WS_PATH=ws_path,
        TRUENAS_VERIFY_TLS=verify_tls,
        TRUENAS_TRANSPORT=_env_choice("TRUENAS_TRANSPORT", TRANSPORTS, "websocket"),
        TRUENAS_TIMEOUT=_env_int("TRUENAS_TIMEOUT", 30),
        TRUENAS_DATASET_UPDATE_SHAPE=_env_choice("TRUENAS_DATASET_UPDATE_SHAPE", UPDATE_SHAPES, "operations"),
        TRUENAS_SNAPSHOT_UPDATE_SHAPE=_env_choice("TRUENAS_SNAPSHOT_UPDATE_SHAPE", UPDATE_SHAPES, "operations"),
        TRUENAS_NVMET_PORT_LINK=_env_choice("TRUENAS_NVMET_PORT_LINK", PORT_LINK_STRATEGIES, "port_subsys"),
        TRUENAS_JOB_POLL_INTERVAL_MS=_env_int("TRUENAS_JOB_POLL_INTERVAL_MS", 3000),
        TRUENAS_FS_JOB_TIMEOUT=_env_int("TRUENAS_FS_JOB_TIMEOUT", 30),
        TRUENAS_VERSION_CACHE_TTL=_env_int("TRUENAS_VERSION_CACHE_TTL", 60),
        AUDIT_PARENT_DATASET=_env("AUDIT_PARENT_DATASET"),
        ADMIN_PASSWORD_HASH=_env("ADMIN_PASSWORD_HASH", "") or "",
        LOG_LEVEL=(_env("LOG_LEVEL", "INFO") or "INFO").upper(),
    )


settings = load_settings()


def is_configured() -> bool:
    return bool(settings.TRUENAS_URL and settings.TRUENAS_API_KEY)


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger once at startup; LOG_LEVEL controls verbosity."""
    level_name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        force=True,
    )
