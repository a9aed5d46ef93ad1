
# ETag-aware HTTP GET client for the case sources.

# Each source is fetched independently and never raises: a transport error,
# a timeout, a non-2xx status or a body that is not JSON all come back as
# ABSENT. Callers decide what "every source failed" means.

# The sources wrap their payload in {"data": ...}. When that envelope is
# present it is unwrapped, otherwise the whole body is the payload.

# If the server hands out an ETag we send it back as If-None-Match. A 304
# carries no body, so the last payload received for that URL is replayed.

import asyncio
import json
import logging
from typing import Any

import aiohttp

from case_tracker.canonical import ABSENT
from case_tracker.config import REQUEST_TIMEOUT_SECONDS

log = logging.getLogger(__name__)


def unwrap(body: Any) -> Any:
    """
    Strip the {"data": ...} envelope if there is one. A null or missing
    "data" leaves the whole body as the payload.
    """
    if isinstance(body, dict) and body.get("data") is not None:
        return body["data"]
    return body


class SourceHTTPClient:
    """
    Wraps an aiohttp.ClientSession with per-URL ETag state.

    Authentication is whatever the session carries (cookies, headers); a
    401/403 is just another failed fetch here.
    """

    def __init__(self, session: aiohttp.ClientSession) -> None:
        self._session = session
        self._etags: dict[str, str] = {}     # url → last received ETag
        self._bodies: dict[str, Any] = {}    # url → payload that came with it

    async def get_payload(self, url: str) -> Any:
        """
        GET `url` and return its unwrapped JSON payload, or ABSENT on any failure.
        """
        headers: dict[str, str] = {}
        if url in self._etags:
            headers["If-None-Match"] = self._etags[url]

        try:
            async with self._session.get(
                url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS),
            ) as resp:
                if resp.status == 304:
                    if url in self._bodies:
                        log.debug("304 Not Modified for %s", url)
                        return self._bodies[url]
                    raise aiohttp.ClientError(f"304 for {url} with no cached payload")

                resp.raise_for_status()
                body = json.loads(await resp.text())

                payload = unwrap(body)
                etag = resp.headers.get("ETag")
                if etag:
                    self._etags[url] = etag
                    self._bodies[url] = payload
                return payload

        except aiohttp.ClientResponseError as exc:
            log.warning("HTTP error fetching %s: %s %s", url, exc.status, exc.message)
        except asyncio.TimeoutError:
            log.warning("Timeout fetching %s", url)
        except aiohttp.ClientError as exc:
            log.warning("Transport error fetching %s: %s", url, exc)
        except (json.JSONDecodeError, UnicodeDecodeError):
            log.warning("Malformed JSON from %s", url)

        self._etags.pop(url, None)
        self._bodies.pop(url, None)
        return ABSENT
