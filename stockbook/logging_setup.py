from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

LOG_FILE_NAME = "stockbook.log"


def setup_logging(settings, level: int = logging.INFO) -> Path:
    """Configure rotating file logging under <data_dir>/logs/stockbook.log"""
    log_dir = Path(settings.data_dir).expanduser() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME

    logger = logging.getLogger()  # root
    logger.setLevel(level)

    # avoid duplicate handlers across Streamlit reruns
    for h in logger.handlers:
        if isinstance(h, logging.handlers.RotatingFileHandler) and getattr(h, "baseFilename", "") == str(log_path):
            return log_path

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    handler.setFormatter(fmt)
    handler.setLevel(level)
    logger.addHandler(handler)
    return log_path
