"""
Remote Sheet Endpoint Client

Thin async HTTP wrapper around the spreadsheet script URL.

DESIGN DECISION: The endpoint URL is passed in on every call instead of
being held by the client. Callers read it from the local store at the
start of each sync attempt, so a URL change applies to the very next
request.

Failures are sorted into:
- RemoteTransportError: network, timeout, non-2xx (retried with backoff)
- RemoteRejectedError: the script answered but did not report success
- MalformedResponseError: the reply is not the JSON we expect
All three are recoverable RemoteSyncError subclasses.
"""

from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledgersync.config import RemoteSettings, get_settings
from ledgersync.services.remote.wire import ReadAction, is_acknowledged


logger = structlog.get_logger(__name__)


class RemoteSyncError(Exception):
    """Base exception for remote sync failures. Always recoverable."""
    pass


class RemoteTransportError(RemoteSyncError):
    """Could not reach the endpoint or it answered with a non-2xx status."""
    pass


class RemoteRejectedError(RemoteSyncError):
    """The endpoint answered but reported a non-success result."""

    def __init__(self, message: str, body: Optional[dict] = None):
        self.body = body or {}
        super().__init__(message)


class MalformedResponseError(RemoteSyncError):
    """The reply was not valid JSON or had an unexpected shape."""
    pass


class SheetsEndpointClient:
    """
    Async client for the spreadsheet script endpoint.

    A transport can be injected (e.g. httpx.MockTransport) for tests.
    """

    def __init__(
        self,
        settings: Optional[RemoteSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or get_settings().remote
        self._transport = transport

    def _http(self) -> httpx.AsyncClient:
        # Script URLs answer with a redirect to the content host
        return httpx.AsyncClient(
            timeout=self._settings.timeout_seconds,
            follow_redirects=True,
            transport=self._transport,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=wait_exponential(
                multiplier=self._settings.retry_backoff_seconds,
                max=10,
            ),
            retry=retry_if_exception_type(RemoteTransportError),
            reraise=True,
        )

    async def _send(self, method: str, url: str, **kwargs) -> Any:
        try:
            async with self._http() as client:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteTransportError(
                f"Endpoint returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteTransportError(f"{type(e).__name__}: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Endpoint reply is not JSON: {response.text[:200]!r}"
            ) from e

    async def _send_with_retry(self, method: str, url: str, **kwargs) -> Any:
        async for attempt in self._retrying():
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "remote_request_retry",
                        method=method,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await self._send(method, url, **kwargs)

    async def post(
        self,
        endpoint_url: str,
        payload: dict,
        tolerate_not_found: bool = False,
    ) -> dict:
        """
        POST one mutation and return the acknowledged reply body.

        Raises RemoteRejectedError unless the reply reports success
        ("not_found" also counts when tolerate_not_found is set, which
        makes delete-by-id replays idempotent).
        """
        body = await self._send_with_retry("POST", endpoint_url, json=payload)
        if not isinstance(body, dict):
            raise MalformedResponseError(
                f"Expected an object reply, got {type(body).__name__}"
            )
        if not is_acknowledged(body, tolerate_not_found=tolerate_not_found):
            raise RemoteRejectedError(
                f"Endpoint rejected {payload.get('dataType')}: "
                f"{body.get('error') or body.get('message') or body.get('result')}",
                body=body,
            )
        return body

    async def fetch(
        self,
        endpoint_url: str,
        action: ReadAction,
        user_id: Optional[str] = None,
    ) -> Any:
        """GET a read operation; returns the decoded JSON body as-is."""
        params = {"action": action.value}
        if user_id:
            params["userId"] = user_id
        body = await self._send_with_retry("GET", endpoint_url, params=params)
        if isinstance(body, dict) and body.get("result") == "error":
            raise RemoteRejectedError(
                f"Endpoint failed {action.value}: {body.get('error') or body.get('message')}",
                body=body,
            )
        return body
