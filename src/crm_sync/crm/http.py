"""Shared HTTP plumbing for provider clients.

Every provider call is an independent request on a short-lived
httpx.AsyncClient. Non-2xx responses become RemoteAPIError carrying the
status code and body text; transport errors (httpx.HTTPError) propagate
unchanged. Provider clients convert both into SyncResult failures at their
method boundary via failure_result().
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.crm_sync.crm.errors import RemoteAPIError
from src.crm_sync.crm.schemas import SyncResult

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 30.0


def bearer_headers(access_token: str) -> dict[str, str]:
    """Authorization + JSON content type headers."""
    return {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
    }


async def request_json(
    provider: str,
    method: str,
    url: str,
    *,
    headers: dict[str, str],
    params: dict[str, Any] | None = None,
    json_data: dict[str, Any] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Any:
    """Send one request and return the decoded JSON body.

    Args:
        provider: Provider tag used in error messages and logs.
        method: HTTP method.
        url: Absolute URL.
        headers: Request headers (see bearer_headers()).
        params: Optional query parameters.
        json_data: Optional JSON body.
        timeout: Request timeout in seconds.
        transport: Optional transport override (tests use httpx.MockTransport).

    Returns:
        Decoded JSON, or an empty dict for 204/empty responses.

    Raises:
        RemoteAPIError: On any non-2xx response.
        httpx.HTTPError: On transport failures.
    """
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.request(
            method,
            url,
            headers=headers,
            params=params,
            json=json_data,
        )

    logger.debug(
        "crm_http.response",
        provider=provider,
        method=method,
        url=url,
        status_code=response.status_code,
    )

    if response.is_error:
        raise RemoteAPIError(provider, response.status_code, response.text)

    if response.status_code == 204 or not response.content:
        return {}
    return response.json()


def failure_result(provider: str, operation: str, exc: Exception) -> SyncResult:
    """Log a failed client operation and convert it to a SyncResult."""
    logger.warning(
        f"{provider}.{operation}_failed",
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return SyncResult.failure(str(exc) or type(exc).__name__)
