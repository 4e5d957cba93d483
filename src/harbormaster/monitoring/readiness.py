"""HTTP readiness probing.

Polls an endpoint until it satisfies a success condition or the overall
timeout elapses. Three conditions are supported:

- ``status=True``: any HTTP response counts as ready
- ``status=<int>``: only that status code counts
- ``status=False``: a connection failure counts, which is how a caller
  confirms that something has gone away
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from harbormaster.core.constants import (
    DEFAULT_PROBE_REQUEST_TIMEOUT_MS,
    DEFAULT_PROBE_RETRY_DELAY_MS,
    DEFAULT_PROBE_TIMEOUT_MS,
)
from harbormaster.core.errors import ReadinessTimeout

logger = logging.getLogger(__name__)


class ReadinessProber:
    """Polls HTTP(S) endpoints for readiness."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialize the prober.

        Args:
            transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
        """
        self._transport = transport

    async def wait_for_fetch(
        self,
        url: str,
        *,
        status: bool | int = True,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: str | None = None,
        retry_delay_ms: int = DEFAULT_PROBE_RETRY_DELAY_MS,
        request_timeout_ms: int = DEFAULT_PROBE_REQUEST_TIMEOUT_MS,
        timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS,
        return_response: bool = False,
        raise_on_timeout: bool = False,
    ) -> Any:
        """Wait for ``url`` to satisfy ``status``.

        Returns:
            ``True`` on success, or the ``httpx.Response`` when
            ``return_response`` is set and a response was received.
            ``False`` (``None`` with ``return_response``) on timeout.

        Raises:
            ReadinessTimeout: On timeout when ``raise_on_timeout`` is set
        """
        start = time.monotonic()
        deadline = start + timeout_ms / 1000
        attempts = 0

        async with httpx.AsyncClient(
            transport=self._transport, timeout=request_timeout_ms / 1000
        ) as client:
            while time.monotonic() < deadline:
                attempts += 1
                elapsed_ms = int((time.monotonic() - start) * 1000)

                try:
                    response = await client.request(method, url, headers=headers, content=body)
                except httpx.HTTPError as e:
                    if status is False:
                        logger.debug(
                            f"{url} is not responding (as expected) after {attempts} attempts "
                            f"({elapsed_ms}ms)"
                        )
                        return True
                    logger.debug(f"Attempt {attempts}: request to {url} failed ({elapsed_ms}ms): {e}")
                else:
                    if status is True or (
                        status is not False and response.status_code == status
                    ):
                        logger.debug(
                            f"{url} responded with {response.status_code} after {attempts} "
                            f"attempts ({elapsed_ms}ms)"
                        )
                        return response if return_response else True
                    if status is not False:
                        logger.debug(
                            f"Attempt {attempts}: got status {response.status_code}, "
                            f"expected {status} ({elapsed_ms}ms)"
                        )

                remaining = deadline - time.monotonic()
                if remaining > 0:
                    await asyncio.sleep(min(retry_delay_ms / 1000, remaining))

        total_ms = int((time.monotonic() - start) * 1000)
        logger.debug(f"Timeout waiting for {url} after {attempts} attempts ({total_ms}ms)")
        if raise_on_timeout:
            raise ReadinessTimeout(
                f"Timeout waiting for {url} to satisfy status={status} after {timeout_ms}ms"
            )
        return None if return_response else False
