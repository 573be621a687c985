from __future__ import annotations

import asyncio
import random
from typing import Any, Dict, Optional

import httpx

from assist_gateway.errors import ProviderError, TimeoutExceeded, TransportFailure

TRANSIENT_STATUSES = {408, 409, 425, 429, 500, 502, 503, 504}
MAX_ERROR_BODY_CHARS = 2000


def build_httpx_client(
    *,
    base_url: str,
    headers: Dict[str, str],
    connect_timeout_sec: float,
    read_timeout_sec: float,
    max_connections: int = 30,
    max_keepalive_connections: int = 10,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    timeout = httpx.Timeout(connect=connect_timeout_sec, read=read_timeout_sec, write=read_timeout_sec, pool=5.0)
    limits = httpx.Limits(
        max_connections=max(1, int(max_connections)),
        max_keepalive_connections=max(1, int(max_keepalive_connections)),
    )
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        timeout=timeout,
        limits=limits,
        transport=transport,
    )


async def post_json_with_retries(
    client: httpx.AsyncClient,
    *,
    path: str,
    payload: Dict[str, Any],
    attempts: int = 1,
    base_backoff_sec: float = 0.5,
    timeout_sec: Optional[float] = None,
) -> Dict[str, Any]:
    """POST ``payload`` and return the decoded JSON body.

    Transient HTTP statuses and network errors are retried up to ``attempts``
    times with jittered exponential backoff. Whatever is left is raised as
    ``TimeoutExceeded``, ``ProviderError`` or ``TransportFailure``.
    """
    max_attempts = max(1, int(attempts))
    request_kwargs: Dict[str, Any] = {"json": payload}
    if timeout_sec is not None:
        request_kwargs["timeout"] = float(timeout_sec)
    for idx in range(max_attempts):
        last = idx + 1 >= max_attempts
        try:
            resp = await client.post(path, **request_kwargs)
        except httpx.TimeoutException as exc:
            if last:
                raise TimeoutExceeded(f"request to {path} timed out: {exc}") from exc
            await _sleep_backoff(idx, base_backoff_sec)
            continue
        except httpx.TransportError as exc:
            if last:
                raise TransportFailure(f"request to {path} failed: {type(exc).__name__}: {exc}") from exc
            await _sleep_backoff(idx, base_backoff_sec)
            continue

        if resp.status_code in TRANSIENT_STATUSES and not last:
            await _sleep_backoff(idx, base_backoff_sec)
            continue
        if resp.status_code >= 400:
            body = resp.text[:MAX_ERROR_BODY_CHARS]
            raise ProviderError(f"HTTP {resp.status_code} from {path}", status=resp.status_code, body=body)
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(
                f"invalid JSON body from {path}",
                status=resp.status_code,
                body=resp.text[:MAX_ERROR_BODY_CHARS],
            ) from exc
        if not isinstance(data, dict):
            raise ProviderError(f"unexpected JSON body from {path}", status=resp.status_code)
        return data
    raise TransportFailure(f"request to {path} exhausted retries")


async def _sleep_backoff(attempt_idx: int, base_backoff_sec: float) -> None:
    # bounded exponential backoff with jitter
    delay = min(8.0, max(0.05, float(base_backoff_sec)) * (2 ** attempt_idx))
    delay = delay * (0.8 + random.random() * 0.4)
    await asyncio.sleep(delay)
