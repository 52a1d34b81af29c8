import logging
from logging.handlers import RotatingFileHandler
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode
import os
LOG_DIR = os.getenv('LOG_DIR', 'logs')
os.makedirs(LOG_DIR, exist_ok=True)
REDACTED = "***REDACTED***"
SENSITIVE_QUERY_KEYS = {"access_token", "refresh_token",
                        "client_secret", "code", "token"}


def get_loggers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(
        "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s")
    ch = logging.StreamHandler()
    ch.setFormatter(formatter)
    logger.addHandler(ch)
    fh = RotatingFileHandler(
        f"{LOG_DIR}/{name}.log", maxBytes=5_000_000, backupCount=5)
    fh.setFormatter(formatter)
    logger.addHandler(fh)
    return logger


def redact_url(url) -> str:
    """Mask credential-bearing query parameters before a URL is logged."""
    parts = urlsplit(str(url))
    if not parts.query:
        return str(url)
    query = [
        (key, REDACTED if key.lower() in SENSITIVE_QUERY_KEYS else value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query, safe="*"), parts.fragment))
