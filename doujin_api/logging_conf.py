import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# per-request chatter from the HTTP clients
_NOISY_LOGGERS = ("aiohttp.access", "aiohttp.client", "httpx")

def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for the CLI and the API server.

    Unknown level names fall back to INFO.
    """
    name = (level or os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    root_level = logging.getLevelName(name)
    if not isinstance(root_level, int):
        root_level = logging.INFO

    logging.basicConfig(level=root_level, format=LOG_FORMAT)
    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(root_level, logging.WARNING))
