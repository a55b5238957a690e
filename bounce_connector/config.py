"""Configuration for the bounce connector, read from a .env file."""

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import FrozenSet, Optional

from dotenv import load_dotenv, set_key

logger = logging.getLogger(__name__)

ENV_FILE = os.getenv("BOUNCE_ENV_FILE", "data/.env")

DEFAULT_HEADER_NAME = "X-Bounce-Connector-Id"
DEFAULT_RECENT_WINDOW = timedelta(hours=1)

# Mailbox protocol → well-known port
PROTOCOL_PORTS = {
    "pop3": 110,
    "pop3s": 995,
    "imap": 143,
    "imaps": 993,
}


def default_port(protocol: Optional[str]) -> Optional[int]:
    return PROTOCOL_PORTS.get((protocol or "").strip().lower())


@dataclass(frozen=True)
class AnalyzerConfig:
    header_name: str = DEFAULT_HEADER_NAME
    ignored_mails: FrozenSet[str] = frozenset()
    fallback_search: bool = False
    recent_window: timedelta = DEFAULT_RECENT_WINDOW

    def __post_init__(self):
        # Addresses compare case-insensitively everywhere
        object.__setattr__(
            self, "ignored_mails", frozenset(m.strip().lower() for m in self.ignored_mails if m.strip())
        )


@dataclass(frozen=True)
class ConnectorConfig:
    protocol: str = "imaps"
    server: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    folder: str = "INBOX"
    delete_processed: bool = False

    @property
    def effective_port(self) -> Optional[int]:
        return self.port or default_port(self.protocol)

    @property
    def use_ssl(self) -> bool:
        return self.protocol.endswith("s")

    @property
    def is_pop3(self) -> bool:
        return self.protocol.startswith("pop3")


@dataclass(frozen=True)
class Settings:
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    connector: ConnectorConfig = field(default_factory=ConnectorConfig)
    db_path: str = "/data/bounces.db"
    analyst: str = "default"
    webui_port: int = 8888
    session_secret: str = "changeme"
    admin_pass: str = "changeme"


def _parse_bool(raw: Optional[str], default: bool = False) -> bool:
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(raw: Optional[str], default: Optional[int]) -> Optional[int]:
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring malformed integer setting: {raw!r}")
        return default


def _parse_list(raw: Optional[str]):
    return [e.strip() for e in (raw or "").split(",") if e.strip()]


def load_config(env_file: Optional[str] = None) -> Settings:
    """Reload config from .env each run (supports real-time toggle)"""
    load_dotenv(env_file or ENV_FILE, override=True)

    window_minutes = _parse_int(
        os.getenv("BOUNCE_RECENT_WINDOW_MINUTES"),
        int(DEFAULT_RECENT_WINDOW.total_seconds() // 60),
    )

    analyzer = AnalyzerConfig(
        header_name=os.getenv("BOUNCE_HEADER_NAME") or DEFAULT_HEADER_NAME,
        ignored_mails=frozenset(_parse_list(os.getenv("BOUNCE_IGNORED_MAILS"))),
        fallback_search=_parse_bool(os.getenv("BOUNCE_FALLBACK_SEARCH")),
        recent_window=timedelta(minutes=window_minutes),
    )

    connector = ConnectorConfig(
        protocol=os.getenv("BOUNCE_PROTOCOL", "imaps").lower(),
        server=os.getenv("BOUNCE_SERVER"),
        port=_parse_int(os.getenv("BOUNCE_PORT"), None),
        user=os.getenv("BOUNCE_USER"),
        password=os.getenv("BOUNCE_PASS"),
        folder=os.getenv("BOUNCE_FOLDER", "INBOX"),
        delete_processed=_parse_bool(os.getenv("BOUNCE_DELETE_PROCESSED")),
    )

    return Settings(
        analyzer=analyzer,
        connector=connector,
        db_path=os.getenv("DB_PATH", "/data/bounces.db"),
        analyst=os.getenv("BOUNCE_ANALYST", "default"),
        webui_port=_parse_int(os.getenv("WEBUI_PORT"), 8888),
        session_secret=os.getenv("SESSION_SECRET", "changeme"),
        admin_pass=os.getenv("ADMIN_PASS", "changeme"),
    )


def save_setting(env_file: Optional[str], key: str, value: str) -> None:
    path = env_file or ENV_FILE
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    if not os.path.exists(path):
        open(path, "a").close()
    set_key(path, key, value)
    os.environ[key] = value
