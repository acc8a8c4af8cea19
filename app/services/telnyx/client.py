"""
Telnyx v2 REST API client.

Handles all outbound HTTP communication with Telnyx: call control
commands, outbound dialing, configuration reads and the paginated
list endpoints (recordings, call events). Every request carries a
bounded timeout; failures surface as ``TelnyxAPIError``.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from app.core.config import Settings, settings as default_settings
from app.core.exceptions import ConfigurationError, TelnyxAPIError

logger = logging.getLogger(__name__)

RATE_LIMIT_BACKOFF_SECONDS = 1.0
RATE_LIMIT_MAX_ATTEMPTS = 5
DEFAULT_MAX_PAGES = 10


class TelnyxClient:
    """Thin async wrapper over the Telnyx REST API."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.telnyx.com/v2",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(
        cls,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "TelnyxClient":
        config = config or default_settings
        return cls(
            api_key=config.telnyx_api_key,
            base_url=config.telnyx_api_url,
            timeout=config.telnyx_timeout_seconds,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    # ------------------------------------------------------------------
    # Call control commands
    # ------------------------------------------------------------------

    async def command(
        self, call_control_id: str, action: str, body: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """Issue ``POST /calls/{id}/actions/{action}``."""
        return await self._request(
            "POST", f"/calls/{call_control_id}/actions/{action}", json=body or {}
        )

    async def answer(self, call_control_id: str) -> dict[str, Any]:
        return await self.command(call_control_id, "answer")

    async def transfer(
        self, call_control_id: str, to: str, from_: Optional[str] = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"to": to}
        if from_:
            body["from"] = from_
        return await self.command(call_control_id, "transfer", body)

    async def speak(
        self,
        call_control_id: str,
        text: str,
        voice: str = "female",
        language: str = "en-US",
    ) -> dict[str, Any]:
        return await self.command(
            call_control_id,
            "speak",
            {"payload": text, "voice": voice, "language": language},
        )

    async def hangup(self, call_control_id: str) -> dict[str, Any]:
        return await self.command(call_control_id, "hangup")

    async def playback_start(
        self,
        call_control_id: str,
        audio_url: str,
        loop: str = "infinity",
        target_legs: str = "both",
    ) -> dict[str, Any]:
        return await self.command(
            call_control_id,
            "playback_start",
            {"audio_url": audio_url, "loop": loop, "target_legs": target_legs},
        )

    async def playback_stop(self, call_control_id: str) -> dict[str, Any]:
        return await self.command(call_control_id, "playback_stop")

    async def create_call(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Place a call via ``POST /calls``."""
        logger.info(f"[TELNYX] Creating call to {payload.get('to')}")
        return await self._request("POST", "/calls", json=payload)

    # ------------------------------------------------------------------
    # Configuration reads
    # ------------------------------------------------------------------

    async def get_connection(self, connection_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/connections/{connection_id}")

    async def get_call_control_application(self, app_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/call_control_applications/{app_id}")

    async def find_phone_number(self, e164: str) -> Optional[dict[str, Any]]:
        """Return the purchased number record for ``e164``, if any."""
        result = await self._request(
            "GET", "/phone_numbers", params={"filter[phone_number]": e164}
        )
        rows = result.get("data") or []
        return rows[0] if rows else None

    async def is_verified_caller_id(self, e164: str) -> bool:
        try:
            await self._request("GET", f"/verified_numbers/{e164}")
        except TelnyxAPIError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    # ------------------------------------------------------------------
    # List endpoints
    # ------------------------------------------------------------------

    async def list_recordings(self, params: dict[str, str]) -> list[dict[str, Any]]:
        """Fetch a single page of recordings."""
        result = await self._request("GET", "/recordings", params=params)
        return list(result.get("data") or [])

    async def paginate(
        self,
        path: str,
        params: dict[str, str],
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> list[dict[str, Any]]:
        """
        Collect ``data`` from every page of a list endpoint.

        The first page reveals ``meta.total_pages``; the rest are fetched
        concurrently and concatenated in page order. ``max_pages`` caps
        the sweep.
        """
        first = await self._get_page(path, params, 1)
        results: list[dict[str, Any]] = list(first.get("data") or [])

        total_pages = _total_pages(first)
        last_page = min(total_pages, max_pages)
        if total_pages > max_pages:
            logger.warning(
                f"[TELNYX] {path} reports {total_pages} pages, stopping at {max_pages}"
            )

        if last_page > 1:
            pages = await asyncio.gather(
                *(self._get_page(path, params, n) for n in range(2, last_page + 1))
            )
            for page in pages:
                results.extend(page.get("data") or [])

        logger.debug(f"[TELNYX] {path} paginated: {last_page} pages, {len(results)} rows")
        return results

    async def _get_page(
        self, path: str, params: dict[str, str], page_number: int
    ) -> dict[str, Any]:
        query = {**params, "page[number]": str(page_number)}
        for attempt in range(1, RATE_LIMIT_MAX_ATTEMPTS + 1):
            try:
                return await self._request("GET", path, params=query)
            except TelnyxAPIError as exc:
                if exc.is_rate_limited and attempt < RATE_LIMIT_MAX_ATTEMPTS:
                    logger.warning(
                        f"[TELNYX] Rate limited on {path} page {page_number}, "
                        f"retrying in {RATE_LIMIT_BACKOFF_SECONDS}s (attempt {attempt})"
                    )
                    await asyncio.sleep(RATE_LIMIT_BACKOFF_SECONDS)
                    continue
                raise
        raise TelnyxAPIError(429, "rate limit retries exhausted", path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise ConfigurationError("Missing TELNYX_API_KEY")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        headers = self._headers()
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.request(
                    method, url, headers=headers, params=params, json=json
                )
        except httpx.HTTPError as exc:
            logger.error(f"[TELNYX] {method} {path} transport error: {type(exc).__name__}: {exc}")
            raise TelnyxAPIError(0, str(exc) or type(exc).__name__, path) from exc

        if response.is_error:
            detail = _error_detail(response)
            log = logger.warning if response.status_code in (422, 429) else logger.error
            log(f"[TELNYX] {method} {path} failed: {response.status_code} {detail}")
            raise TelnyxAPIError(response.status_code, detail, path)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}


def _total_pages(page: dict[str, Any]) -> int:
    meta = page.get("meta") or {}
    total = meta.get("total_pages")
    if total is None:
        total = (meta.get("page") or {}).get("total_pages")
    try:
        return max(1, int(total))
    except (TypeError, ValueError):
        return 1


def _error_detail(response: httpx.Response) -> str:
    """Pull the provider's own error message out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors and isinstance(errors, list):
        first = errors[0] or {}
        return first.get("detail") or first.get("title") or str(first)
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.text or f"HTTP {response.status_code}"
