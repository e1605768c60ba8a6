"""
Config loader: YAML file -> frozen dataclass tree.

Environment variables override file values (PAPER_INITIAL_BALANCE,
PAPER_COMMISSION, PORT, LOG_LEVEL) so a container can be reconfigured
without editing config.yaml.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("paper.config")

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigError(Exception):
    """Raised when a config value is present but unusable."""


@dataclass(frozen=True)
class LedgerConfig:
    initial_balance: float = 10_000.0
    commission_rate: float = 0.1  # percent of notional


@dataclass(frozen=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3000


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    structured_logs: bool = True
    webhook_url: str = ""


@dataclass(frozen=True)
class ExportConfig:
    directory: str = "data/exports"


@dataclass(frozen=True)
class AppConfig:
    ledger: LedgerConfig = LedgerConfig()
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()
    export: ExportConfig = ExportConfig()


def _number(raw: Any, name: str) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(section).__name__}")
    return section


def load_config(path: str | Path | None = "config.yaml") -> AppConfig:
    """
    Load configuration from a YAML file, then apply environment overrides.

    ``path=None`` skips the file and builds the config from defaults and
    environment variables only.
    """
    raw: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(config_path) as f:
            loaded = yaml.safe_load(f)
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file must be a YAML mapping, got {type(loaded).__name__}")
        raw = loaded

    l_raw = _section(raw, "ledger")
    initial_balance = _number(os.environ.get("PAPER_INITIAL_BALANCE", l_raw.get("initial_balance", 10_000)), "initial_balance")
    commission_rate = _number(os.environ.get("PAPER_COMMISSION", l_raw.get("commission_rate", 0.1)), "commission_rate")
    if initial_balance < 0:
        raise ConfigError(f"initial_balance must be >= 0, got {initial_balance}")
    if commission_rate < 0:
        raise ConfigError(f"commission_rate must be >= 0, got {commission_rate}")

    s_raw = _section(raw, "server")
    port = int(_number(os.environ.get("PORT", s_raw.get("port", 3000)), "port"))
    if not 0 < port < 65536:
        raise ConfigError(f"port out of range: {port}")

    g_raw = _section(raw, "logging")
    level = str(os.environ.get("LOG_LEVEL", g_raw.get("level", "INFO"))).upper()
    if level not in _LOG_LEVELS:
        raise ConfigError(f"Unknown log level: {level}")

    e_raw = _section(raw, "export")

    cfg = AppConfig(
        ledger=LedgerConfig(initial_balance=initial_balance, commission_rate=commission_rate),
        server=ServerConfig(host=str(s_raw.get("host", "127.0.0.1")), port=port),
        logging=LoggingConfig(
            level=level,
            structured_logs=bool(g_raw.get("structured_logs", True)),
            webhook_url=str(g_raw.get("webhook_url", "")),
        ),
        export=ExportConfig(directory=str(e_raw.get("directory", "data/exports"))),
    )
    logger.debug("Loaded config: %s", cfg)
    return cfg
