"""REST calls for creating and ending cloud sessions."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from tandem.engine.config import TandemConfig
from tandem.engine.errors import CloudApiError, NotLoggedInError, SessionLimitError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0


async def _json_or_empty(resp: aiohttp.ClientResponse) -> dict[str, Any]:
    try:
        data = await resp.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


class CloudApi:
    """Thin client for the session endpoints of the cloud service."""

    def __init__(
        self,
        config: TandemConfig,
        session_factory: Callable[..., aiohttp.ClientSession] = aiohttp.ClientSession,
    ) -> None:
        self._config = config
        self._session_factory = session_factory

    def _headers(self) -> dict[str, str]:
        if not self._config.access_token:
            raise NotLoggedInError()
        return {"Authorization": f"Bearer {self._config.access_token}"}

    def _url(self, path: str) -> str:
        return f"{self._config.api_url.rstrip('/')}{path}"

    async def create_session(self, cwd: str) -> str:
        """Register a new cloud session and return its id."""
        headers = self._headers()
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)
        async with self._session_factory(timeout=timeout) as http:
            async with http.post(
                self._url("/api/v1/sessions"), json={"cwd": cwd}, headers=headers,
            ) as resp:
                data = await _json_or_empty(resp)
                if resp.status == 429:
                    raise SessionLimitError(
                        str(data.get("message") or "Session limit reached"),
                        upgrade_url=data.get("upgradeUrl"),
                    )
                if resp.status >= 400:
                    raise CloudApiError(
                        resp.status, str(data.get("error") or "Failed to create session"),
                    )
        session_id = data.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise CloudApiError(200, "Response did not include a sessionId")
        logger.info("Created cloud session %s", session_id[:8])
        return session_id

    async def end_session(self, session_id: str) -> bool:
        """Mark the cloud session ended. Failures are logged, not raised."""
        headers = self._headers()
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)
        try:
            async with self._session_factory(timeout=timeout) as http:
                async with http.post(
                    self._url(f"/api/v1/sessions/{session_id}/end"), headers=headers,
                ) as resp:
                    if resp.status >= 400:
                        logger.error(
                            "Failed to end session %s: HTTP %d", session_id[:8], resp.status,
                        )
                        return False
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            logger.error("Failed to end session %s: %s", session_id[:8], exc)
            return False
        logger.info("Ended cloud session %s", session_id[:8])
        return True
