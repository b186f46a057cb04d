"""
Fetching of input documents from URLs or local paths.

Every optional input goes through ``fetch_document``: a location is either
an ``http(s)://`` URL (fetched with the shared ``httpx.AsyncClient``) or a
filesystem path. Failures surface as ``SourceUnavailableError`` so the
loaders can degrade the input to empty.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import httpx
import yaml

from sigma_synth.config import Settings, SourceDefaults
from sigma_synth.exceptions import SourceUnavailableError
from sigma_synth.logging_config import LogEventType, get_logger

logger = get_logger(__name__)

# Status codes worth retrying
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def is_url(location: str) -> bool:
    return location.startswith(("http://", "https://"))


def build_client(config: Settings) -> httpx.AsyncClient:
    """Create the HTTP client shared by one run."""
    headers = {"User-Agent": SourceDefaults.USER_AGENT}
    return httpx.AsyncClient(
        timeout=config.fetch_timeout,
        headers=headers,
        follow_redirects=True,
    )


async def fetch_text(
    client: httpx.AsyncClient,
    location: str,
    retries: int = 0,
    backoff: float = 1.0,
    headers: dict[str, str] | None = None,
) -> str:
    """
    Read a document as text.

    Args:
        client: HTTP client for URL locations
        location: URL or filesystem path
        retries: Extra attempts after a transient failure
        backoff: Base delay; attempt ``n`` waits ``backoff * 2**n`` seconds
        headers: Extra request headers

    Raises:
        SourceUnavailableError: The document could not be read.
    """
    if not is_url(location):
        try:
            return Path(location).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SourceUnavailableError(location, str(e)) from e

    attempt = 0
    while True:
        try:
            resp = await client.get(location, headers=headers)
            if resp.status_code in RETRYABLE_STATUS and attempt < retries:
                raise httpx.HTTPStatusError(
                    f"HTTP {resp.status_code}", request=resp.request, response=resp
                )
            resp.raise_for_status()
            return resp.text
        except (httpx.TransportError, httpx.HTTPStatusError) as e:
            transient = isinstance(e, httpx.TransportError) or (
                e.response.status_code in RETRYABLE_STATUS
            )
            if not transient or attempt >= retries:
                raise SourceUnavailableError(location, str(e) or type(e).__name__) from e
            delay = backoff * (2**attempt)
            logger.source_event(
                LogEventType.SOURCE_RETRY,
                location,
                f"Retrying {location} in {delay:.1f}s ({e})",
                level=logging.WARNING,
            )
            attempt += 1
            await asyncio.sleep(delay)


def parse_document(text: str, location: str) -> Any:
    """Parse JSON, or YAML for ``.yml``/``.yaml`` locations."""
    try:
        if location.lower().endswith((".yml", ".yaml")):
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise SourceUnavailableError(location, f"unparsable document: {e}") from e


async def fetch_document(
    client: httpx.AsyncClient,
    location: str,
    retries: int = 0,
    backoff: float = 1.0,
    headers: dict[str, str] | None = None,
) -> Any:
    """Fetch and parse a JSON or YAML document."""
    text = await fetch_text(client, location, retries=retries, backoff=backoff, headers=headers)
    return parse_document(text, location)
