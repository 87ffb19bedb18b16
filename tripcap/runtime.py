from __future__ import annotations

import logging
import os

# per-request connection chatter from the mapping client
NOISY_HTTP_LOGGERS = ("urllib3", "requests")


def configure_logging(name: str, level: str | None = None) -> logging.Logger:
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=getattr(logging, log_level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    if os.getenv("SUPPRESS_HTTP_DEBUG_LOGS", "1").strip().lower() not in {"0", "false", "no", "off"}:
        for noisy in NOISY_HTTP_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level, logging.INFO))
    return logger
