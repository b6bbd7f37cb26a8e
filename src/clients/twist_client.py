"""Twist API client (Bearer token, API v3)."""

from __future__ import annotations

import logging

import httpx

from src.clients.rate_limiter import RateLimiter
from src.config import Settings, settings as default_settings
from src.delivery.task import ThreadHandle
from src.errors import ClientError, NetworkError, RateLimited, ServerError, SinkError

logger = logging.getLogger(__name__)


def _retry_after(resp: httpx.Response) -> float | None:
    value = resp.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_response(resp: httpx.Response) -> SinkError | None:
    """Map a non-2xx Twist response onto the sink error taxonomy."""
    if resp.is_success:
        return None
    detail = resp.text[:200]
    if resp.status_code == 429:
        return RateLimited(f"Twist rate limited: {detail}", retry_after=_retry_after(resp))
    if resp.status_code >= 500:
        return ServerError(f"Twist server error {resp.status_code}: {detail}", resp.status_code)
    return ClientError(f"Twist rejected request {resp.status_code}: {detail}", resp.status_code)


class TwistClient:
    """Create threads and post comments in Twist channels.

    Every call waits on the shared rate limiter and carries the configured
    timeout; transport failures and timeouts surface as ``NetworkError``.
    """

    def __init__(
        self,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        config = config or default_settings
        self._base_url = config.twist_api_url.rstrip("/")
        self._headers = {"Content-Type": "application/json; charset=utf-8"}
        if config.twist_api_token:
            self._headers["Authorization"] = f"Bearer {config.twist_api_token}"
        self._limiter = rate_limiter or RateLimiter(
            config.rate_limit_burst, config.rate_limit_per_sec, max_pause=config.retry_max_delay
        )
        self._client = httpx.AsyncClient(timeout=config.http_timeout, transport=transport)

    async def _post(self, url: str, payload: dict, headers: dict | None = None) -> dict:
        await self._limiter.acquire()
        try:
            resp = await self._client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"timeout calling {url}: {exc!r}") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"transport error calling {url}: {exc!r}") from exc
        error = classify_response(resp)
        if error is not None:
            logger.warning("Twist call to %s failed: %s", url, error)
            if isinstance(error, RateLimited) and error.retry_after is not None:
                self._limiter.pause(error.retry_after)
            raise error
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}

    async def create_thread(self, channel_id: str, title: str, content: str) -> ThreadHandle:
        """POST threads/add and return the new thread's handle."""
        if not channel_id:
            raise ClientError("no Twist channel configured for thread creation")
        data = await self._post(
            f"{self._base_url}/threads/add",
            {"channel_id": channel_id, "title": title, "content": content},
            self._headers,
        )
        thread_id = data.get("id")
        if thread_id is None:
            raise ServerError("Twist threads/add response carried no thread id")
        logger.info("Twist thread %s created in channel %s", thread_id, channel_id)
        return ThreadHandle(channel_id=str(channel_id), thread_id=str(thread_id))

    async def post_message(self, handle: ThreadHandle, body: str) -> None:
        """POST comments/add on the thread."""
        await self._post(
            f"{self._base_url}/comments/add",
            {"thread_id": handle.thread_id, "content": body},
            self._headers,
        )
        logger.info("Twist comment posted to thread %s", handle.thread_id)

    async def post_to_integration(self, post_data_url: str, content: str) -> None:
        """Post through an installation's own ``post_data_url``."""
        await self._post(post_data_url, {"content": content}, {"Content-Type": "application/json"})

    async def close(self) -> None:
        await self._client.aclose()
