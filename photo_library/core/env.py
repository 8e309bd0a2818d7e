from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
# Third-party loggers that are noisy at INFO (boto request signing, httpx per-request lines).
QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore")


def load_dotenv_if_present(path: Optional[str | Path] = None) -> bool:
    """Load a .env file without overriding variables already set in the process.

    The file defaults to ``PHOTO_LIBRARY_ENV_FILE`` or ``./.env``. Returns
    whether a file was loaded.
    """
    env_path = Path(path or os.getenv("PHOTO_LIBRARY_ENV_FILE") or ".env")
    if not env_path.is_file():
        return False
    return load_dotenv(dotenv_path=env_path, override=False)


def configure_logging(default_level: str = "INFO") -> None:
    """Root logging from LOG_LEVEL; chatty client libraries stay at WARNING unless DEBUG."""
    level_name = os.getenv("LOG_LEVEL", default_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    if level > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
