from __future__ import annotations

from typing import Any

import httpx

from ..errors import BackendUnavailableError, ProviderError


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    service: str,
    **kwargs: Any,
) -> Any:
    """Send one request and return the decoded JSON body.

    Connection failures, auth denials and 5xx responses raise
    ``BackendUnavailableError``; timeouts and other bad responses raise
    ``ProviderError``.
    """
    try:
        response = await client.request(method, url, **kwargs)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        if status in (401, 403) or status >= 500:
            raise BackendUnavailableError(f"{service} returned HTTP {status}") from exc
        raise ProviderError(f"{service} returned HTTP {status}") from exc
    except httpx.TimeoutException as exc:
        raise ProviderError(f"{service} request timed out") from exc
    except httpx.TransportError as exc:
        raise BackendUnavailableError(f"{service} unreachable: {exc}") from exc
    except ValueError as exc:
        raise ProviderError(f"{service} returned invalid JSON") from exc
