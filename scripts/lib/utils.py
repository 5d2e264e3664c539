"""
Utility functions for DM Lab.
State-file I/O (atomic JSON writes, tolerant reads) and the retrying HTTP
helper used to push daily logs to a running backend.

Usage:
    from scripts.lib.utils import atomic_write_json, read_json, safe_request
"""
import json
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

RETRYABLE_ERRORS = (
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
    requests.exceptions.HTTPError,
)


def atomic_write_json(data: Dict, file_path: str | Path, indent: int = 2) -> bool:
    """
    Write a state envelope or report through a sibling ``.tmp`` file and
    ``os.replace`` so a crash never leaves a half-written state file.

    Returns:
        True on success. False after logging the failure.
    """
    file_path = Path(file_path)
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        ensure_directory(file_path.parent)
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=indent, default=str)
        os.replace(temp_path, file_path)
        logger.debug("Wrote %s", file_path)
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.error("Failed to write JSON to %s: %s", file_path, e)
        temp_path.unlink(missing_ok=True)
        return False


def read_json(file_path: str | Path) -> Optional[Any]:
    """Parsed document, or None when the file is missing or not valid JSON."""
    file_path = Path(file_path)
    if not file_path.exists():
        return None
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable state file %s: %s", file_path, e)
        return None


def safe_request(
    url: str,
    method: str = "GET",
    timeout: int = 30,
    max_retries: int = 3,
    retry_delay: float = 1.0,
    **kwargs,
) -> Optional[requests.Response]:
    """
    HTTP request with exponential backoff on timeouts, connection errors and
    error statuses.

    Returns:
        The response, or None once every attempt has failed.
    """
    delay = retry_delay
    for attempt in range(1, max_retries + 1):
        try:
            start = time.time()
            response = requests.request(method, url, timeout=timeout, **kwargs)
            logger.info("%s %s -> %d in %.2fs", method, url, response.status_code, time.time() - start)
            response.raise_for_status()
            return response
        except RETRYABLE_ERRORS as e:
            if attempt == max_retries:
                logger.error("Request failed after %d attempts: %s %s - %s", attempt, method, url, e)
                return None
            logger.warning("Attempt %d/%d for %s failed: %s. Retrying in %.1fs", attempt, max_retries, url, e, delay)
            time.sleep(delay)
            delay *= 2
        except requests.RequestException as e:
            logger.error("Request failed: %s %s - %s", method, url, e)
            return None
    return None


def ensure_directory(path: str | Path) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path
