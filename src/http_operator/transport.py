"""HTTP transport collaborator.

The engine sends exactly one request per call through an ``HttpTransport``
and receives a structured ``HttpResponse``. Network, TLS and timeout
failures raise ``TransportError``; a non-2xx response is not an error.
The transport performs no retries.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from .config import DEFAULT_WAIT_TIMEOUT_SECONDS
from .models import HttpResponse, RequestDetails

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when a request could not be exchanged with the remote system."""

    pass


class HttpTransport(Protocol):
    """Sends one request and returns one response."""

    async def send(
        self,
        method: str,
        url: str,
        body: str,
        headers: dict[str, list[str]],
        insecure_skip_tls_verify: bool = False,
        timeout: float | None = None,
    ) -> HttpResponse: ...


def collect_headers(headers: httpx.Headers) -> dict[str, list[str]]:
    """Group response headers by name, preserving repeated values in order."""
    collected: dict[str, list[str]] = {}
    for name, value in headers.multi_items():
        collected.setdefault(name, []).append(value)
    return collected


def flatten_headers(headers: dict[str, list[str]]) -> list[tuple[str, str]]:
    return [(name, value) for name, values in headers.items() for value in values]


class HttpxTransport:
    """Transport built on ``httpx.AsyncClient``.

    A client is created per call; TLS verification is a per-resource setting.
    """

    def __init__(
        self,
        default_timeout: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._default_timeout = default_timeout
        # Injectable for tests (httpx.MockTransport)
        self._transport = transport

    async def send(
        self,
        method: str,
        url: str,
        body: str,
        headers: dict[str, list[str]],
        insecure_skip_tls_verify: bool = False,
        timeout: float | None = None,
    ) -> HttpResponse:
        effective_timeout = timeout if timeout is not None else self._default_timeout
        logger.debug(
            "Sending HTTP request",
            extra={"method": method, "url": url, "timeout_seconds": effective_timeout},
        )
        try:
            async with httpx.AsyncClient(
                verify=not insecure_skip_tls_verify,
                timeout=effective_timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    url,
                    content=body.encode("utf-8") if body else None,
                    headers=flatten_headers(headers),
                )
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {url} timed out after {effective_timeout}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e
        except UnicodeEncodeError as e:
            # httpx encodes header values as ASCII
            raise TransportError(f"{method} {url} has a header that is not ASCII: {e}") from e

        logger.debug(
            "Received HTTP response",
            extra={"method": method, "url": url, "status_code": response.status_code},
        )
        return HttpResponse(
            status_code=response.status_code,
            body=response.text,
            headers=collect_headers(response.headers),
        )


async def dispatch(
    transport: HttpTransport,
    request: RequestDetails,
    insecure_skip_tls_verify: bool,
    timeout: float,
) -> HttpResponse:
    """Send a rendered request, bounded by ``timeout``.

    The deadline is handed to the transport and also enforced here.

    Raises:
        TransportError: On any transport failure, including deadline expiry.
    """
    try:
        return await asyncio.wait_for(
            transport.send(
                request.method,
                request.url,
                request.body,
                request.headers,
                insecure_skip_tls_verify=insecure_skip_tls_verify,
                timeout=timeout,
            ),
            timeout=timeout,
        )
    except TimeoutError as e:
        raise TransportError(
            f"{request.method} {request.url} did not complete within {timeout}s"
        ) from e
