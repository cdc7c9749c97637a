"""Process-wide HTTP client for registry lookups.

One ``httpx.Client`` is created on first use and reused for every registry
GET in this process, then closed at exit.
"""

from __future__ import annotations

import atexit
import logging
from typing import Any

import httpx

from . import __version__

log = logging.getLogger(__name__)

TIMEOUT = 5.0
USER_AGENT = f"toolshed/{__version__}"

_client: httpx.Client | None = None


def get_client() -> httpx.Client:
    global _client
    if _client is None:
        _client = httpx.Client(
            timeout=TIMEOUT,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
    return _client


def set_client(client: httpx.Client | None) -> None:
    """Swap the shared client (tests install one backed by MockTransport)."""
    global _client
    if _client is not None and _client is not client:
        _client.close()
    _client = client


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


atexit.register(close_client)


def get_json(url: str) -> Any | None:
    """GET ``url`` and decode JSON; None on any HTTP or decode failure."""
    try:
        resp = get_client().get(url)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()
    except httpx.TimeoutException:
        log.warning("Timed out fetching %s", url)
        return None
    except httpx.HTTPError as e:
        log.warning("HTTP error fetching %s: %s", url, e)
        return None
    except ValueError:
        log.warning("Invalid JSON from %s", url)
        return None
