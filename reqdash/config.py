"""
ReqDash Configuration Management
================================
Handles config loading, env-var overrides, platform-specific paths and
logging setup.
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from platformdirs import user_config_dir, user_data_dir

APP_NAME = "reqdash"

# ── paths ────────────────────────────────────────────────────────────────────

CONFIG_DIR = Path(user_config_dir(APP_NAME))
DATA_DIR = Path(user_data_dir(APP_NAME))
LOGS_DIR = DATA_DIR / "logs"
REQUESTS_DIR = DATA_DIR / "requests"
CONFIG_FILE = CONFIG_DIR / "config.yaml"


def ensure_dirs() -> None:
    """Create all required directories."""
    for d in (CONFIG_DIR, DATA_DIR, LOGS_DIR, REQUESTS_DIR):
        d.mkdir(parents=True, exist_ok=True)


# ── default config ───────────────────────────────────────────────────────────

DEFAULT_CONFIG: Dict[str, Any] = {
    "relay": {
        "connect_timeout": 10.0,
        "read_timeout": 30.0,
        "total_timeout": 60.0,
        "verify_tls": True,
        "follow_redirects": True,
        "max_body_bytes": 0,
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8787,
        "cors_enabled": True,
        "cors_origins": ["*"],
    },
    "storage": {
        "requests_dir": "",
    },
    "logging": {
        "level": "INFO",
        "file": "",
    },
}


@dataclass
class RelayConfig:
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    total_timeout: float = 60.0  # 0 = no overall deadline
    verify_tls: bool = True
    follow_redirects: bool = True
    max_body_bytes: int = 0  # 0 = unlimited


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8787
    cors_enabled: bool = True
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class StorageConfig:
    requests_dir: str = ""

    @property
    def path(self) -> Path:
        return Path(self.requests_dir) if self.requests_dir else REQUESTS_DIR


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str = ""


@dataclass
class ReqDashConfig:
    relay: RelayConfig = field(default_factory=RelayConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(path: Optional[Path] = None) -> ReqDashConfig:
    """Load configuration from disk, env vars, and defaults."""
    path = path or CONFIG_FILE
    raw: Dict[str, Any] = {}

    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

    # Merge with defaults
    merged = _deep_merge(copy.deepcopy(DEFAULT_CONFIG), raw)

    # Env-var overrides
    if os.environ.get("REQDASH_HOST"):
        merged["server"]["host"] = os.environ["REQDASH_HOST"]
    if os.environ.get("REQDASH_PORT"):
        merged["server"]["port"] = int(os.environ["REQDASH_PORT"])
    if os.environ.get("REQDASH_CORS_ORIGINS"):
        origins = [o.strip() for o in os.environ["REQDASH_CORS_ORIGINS"].split(",")]
        merged["server"]["cors_origins"] = [o for o in origins if o]
    if os.environ.get("REQDASH_CONNECT_TIMEOUT"):
        merged["relay"]["connect_timeout"] = float(os.environ["REQDASH_CONNECT_TIMEOUT"])
    if os.environ.get("REQDASH_READ_TIMEOUT"):
        merged["relay"]["read_timeout"] = float(os.environ["REQDASH_READ_TIMEOUT"])
    if os.environ.get("REQDASH_TOTAL_TIMEOUT"):
        merged["relay"]["total_timeout"] = float(os.environ["REQDASH_TOTAL_TIMEOUT"])
    if os.environ.get("REQDASH_VERIFY_TLS"):
        merged["relay"]["verify_tls"] = _env_bool(os.environ["REQDASH_VERIFY_TLS"])
    if os.environ.get("REQDASH_LOG_LEVEL"):
        merged["logging"]["level"] = os.environ["REQDASH_LOG_LEVEL"].upper()

    cfg = ReqDashConfig(
        relay=RelayConfig(**merged.get("relay", {})),
        server=ServerConfig(**merged.get("server", {})),
        storage=StorageConfig(**merged.get("storage", {})),
        logging=LoggingConfig(**merged.get("logging", {})),
    )
    return cfg


def save_config(cfg: ReqDashConfig, path: Optional[Path] = None) -> Path:
    """Persist current configuration to disk."""
    path = path or CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "relay": {
            "connect_timeout": cfg.relay.connect_timeout,
            "read_timeout": cfg.relay.read_timeout,
            "total_timeout": cfg.relay.total_timeout,
            "verify_tls": cfg.relay.verify_tls,
            "follow_redirects": cfg.relay.follow_redirects,
            "max_body_bytes": cfg.relay.max_body_bytes,
        },
        "server": {
            "host": cfg.server.host,
            "port": cfg.server.port,
            "cors_enabled": cfg.server.cors_enabled,
            "cors_origins": cfg.server.cors_origins,
        },
        "storage": {
            "requests_dir": cfg.storage.requests_dir,
        },
        "logging": {
            "level": cfg.logging.level,
            "file": cfg.logging.file,
        },
    }
    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    return path


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


# ── logging ──────────────────────────────────────────────────────────────────

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(level: str = "INFO", log_file: str = "") -> logging.Logger:
    """Configure the ``reqdash`` logger tree.

    Adds a stream handler (once) and, when ``log_file`` is set, a file
    handler (once per file). Chatty third-party loggers are held at WARNING.
    """
    logger = logging.getLogger(APP_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not any(getattr(h, "_reqdash", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._reqdash = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    if log_file:
        path = Path(log_file).resolve()
        already = any(
            isinstance(h, logging.FileHandler) and Path(h.baseFilename) == path
            for h in logger.handlers
        )
        if not already:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(file_handler)

    for noisy in ("werkzeug", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger
