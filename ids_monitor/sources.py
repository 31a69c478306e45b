"""Upstream fetches for the flow data source and the control endpoint."""
import logging
from pathlib import Path
from typing import Any

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ids_monitor.errors import FetchError

logger = logging.getLogger(__name__)


def _retrying(attempts: int) -> Retrying:
    return Retrying(
        stop=stop_after_attempt(max(int(attempts), 1)),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type(FetchError),
        reraise=True,
    )


def _get(url: str, timeout: float) -> requests.Response:
    logger.debug(f'GET {url}')
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise FetchError(f'GET {url} failed: {e}', source=url) from e
    return response


def is_remote(source: str) -> bool:
    return str(source).lower().startswith(('http://', 'https://'))


def _load_flow_payload(source: str, timeout: float) -> Any:
    if not is_remote(source):
        try:
            return Path(source).read_text(encoding='utf-8')
        except OSError as e:
            raise FetchError(f'Cannot read data source {source}: {e}', source=source) from e

    response = _get(source, timeout)
    if 'json' in response.headers.get('Content-Type', '').lower():
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f'Invalid JSON from {source}: {e}', source=source) from e
    return response.text


def fetch_flow_payload(source: str, timeout: float = 5.0, attempts: int = 1) -> Any:
    """
    Retrieve the raw flow payload from a URL or a local file.

    Returns CSV text, or the decoded body when the server answers with JSON.
    Raises FetchError once all attempts are exhausted.
    """
    return _retrying(attempts)(_load_flow_payload, source, timeout)


def _load_status(server_url: str, timeout: float) -> Any:
    url = server_url.rstrip('/') + '/status'
    response = _get(url, timeout)
    try:
        return response.json()
    except ValueError as e:
        raise FetchError(f'Invalid JSON from {url}: {e}', source=url) from e


def fetch_status(server_url: str, timeout: float = 5.0, attempts: int = 1) -> Any:
    """Retrieve the decoded ``GET /status`` body from the detection server."""
    return _retrying(attempts)(_load_status, server_url, timeout)
