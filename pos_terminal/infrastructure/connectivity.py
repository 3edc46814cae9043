"""
Connectivity probe for the payment backend host.
"""

from __future__ import annotations

from typing import Optional

import httpx

from pos_terminal.loggers import logger


class HttpConnectivityProbe:
    """
    Reachability check by a lightweight HEAD request.

    Any HTTP answer counts as reachable; only transport failures and
    timeouts count as unreachable.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def is_reachable(self) -> bool:
        try:
            await self._client.head(self._url)
        except httpx.TransportError as e:
            logger.debug(f"Probe of {self._url} failed: {e}")
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
