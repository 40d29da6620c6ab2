from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import streamlit as st

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "settings.json"
CACHE_FILE_NAME = "side_cache.json"
ENV_DATA_DIR = "STOCKBOOK_DATA_DIR"
ENV_RECONCILE = "STOCKBOOK_RECONCILE"
SESSION_DATA_DIR = "stockbook_data_dir"


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    db_path: Path
    cache_path: Path
    currency: str = "ARS"
    batch_code_prefix: str = "T"
    history_cache_limit: int = 50
    # Fuzzy backfill of batch tags for rows written before items had batch_ref.
    reconcile_legacy: bool = True


def _default_data_dir() -> Path:
    return Path.home() / ".stockbook"


def _load_persisted_settings(data_dir: Path) -> dict:
    cfg = data_dir / CONFIG_FILE_NAME
    if cfg.exists():
        try:
            return json.loads(cfg.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable settings file %s", cfg)
            return {}
    return {}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def persist_data_dir(data_dir_str: str) -> None:
    data_dir = Path(data_dir_str).expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)

    cfg = data_dir / CONFIG_FILE_NAME
    payload = {"data_dir": str(data_dir)}
    cfg.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    # Update session for immediate effect
    st.session_state[SESSION_DATA_DIR] = str(data_dir)


def load_settings(data_dir: Path | None = None) -> Settings:
    # Priority order:
    # 1) Explicit argument / session state (set via Data Management page)
    # 2) Environment variable
    # 3) Persisted settings in default folder
    # 4) Default folder
    if data_dir is not None:
        data_dir = Path(data_dir).expanduser().resolve()
    elif SESSION_DATA_DIR in st.session_state:
        data_dir = Path(st.session_state[SESSION_DATA_DIR]).expanduser().resolve()
    elif os.getenv(ENV_DATA_DIR):
        data_dir = Path(os.getenv(ENV_DATA_DIR, "")).expanduser().resolve()
    else:
        default_dir = _default_data_dir()
        persisted = _load_persisted_settings(default_dir)
        data_dir = Path(persisted.get("data_dir", default_dir)).expanduser().resolve()

    data_dir.mkdir(parents=True, exist_ok=True)
    return Settings(
        data_dir=data_dir,
        db_path=data_dir / "app.db",
        cache_path=data_dir / CACHE_FILE_NAME,
        reconcile_legacy=_env_flag(ENV_RECONCILE, True),
    )


@st.cache_resource
def get_settings() -> Settings:
    return load_settings()
