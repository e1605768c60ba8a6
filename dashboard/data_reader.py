"""
Read-only data access for the paper ledger dashboard.
Discovers JSON exports (paper replay --save / --export, or GET /api/trades/export?format=json)
under the export directory and reads balance, positions, trades, analytics and balance history.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from config import ConfigError, load_config

logger = logging.getLogger("paper.dashboard")

REPO_ROOT = Path(__file__).resolve().parent.parent


def _data_dir(config_path: Path | None = None) -> Path:
    """Export dir: PAPER_DASHBOARD_DATA_DIR if set, else export.directory from config.yaml, else data/exports.

    A relative export.directory is resolved against the config file's folder.
    """
    if env := os.environ.get("PAPER_DASHBOARD_DATA_DIR"):
        return Path(env)
    path = config_path or REPO_ROOT / "config.yaml"
    try:
        directory = Path(load_config(path).export.directory)
    except FileNotFoundError:
        return REPO_ROOT / "data" / "exports"
    except (ValueError, ConfigError, yaml.YAMLError) as exc:
        logger.warning("Ignoring unusable config %s: %s", path, exc)
        return REPO_ROOT / "data" / "exports"
    return directory if directory.is_absolute() else path.parent / directory


def discover_exports(data_dir: Path | None = None) -> list[Path]:
    """JSON export files, newest first by modification time."""
    root = data_dir or _data_dir()
    if not root.is_dir():
        return []
    files = [p for p in root.glob("*.json") if p.is_file()]
    return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)


def load_export(path: Path) -> dict[str, Any] | None:
    """Parse one export; None if unreadable or not an export object."""
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError):
        return None
    if not isinstance(data, dict) or "trades" not in data:
        return None
    return data


def get_balance(export: dict[str, Any]) -> float | None:
    balance = export.get("balance")
    return float(balance) if isinstance(balance, (int, float)) else None


def get_positions(export: dict[str, Any]) -> list[dict[str, Any]]:
    return list(export.get("positions") or [])


def get_recent_trades(export: dict[str, Any], limit: int = 20) -> list[dict[str, Any]]:
    """Latest trades first."""
    trades = list(export.get("trades") or [])
    chosen = trades[-limit:] if limit else trades
    chosen.reverse()
    return chosen


def get_analytics(export: dict[str, Any]) -> dict[str, Any]:
    return dict(export.get("analytics") or {})


def get_balance_history(export: dict[str, Any]) -> list[dict[str, Any]]:
    """Balance snapshots in recording order; empty when the export has none."""
    return [s for s in export.get("balance_history") or [] if isinstance(s, dict)]
