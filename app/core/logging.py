import logging
import sys

from app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def configure_logging(level: str = None):
    """Install a single stdout handler on the ``app`` logger tree."""
    root = logging.getLogger("app")
    root.setLevel((level or settings.LOG_LEVEL).upper())
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

def mask_token(token: str) -> str:
    # first few characters are enough to correlate log lines
    if not token:
        return "-"
    return f"{token[:6]}..."
