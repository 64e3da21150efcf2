"""Async POST-JSON transport over httpx.

The only place that talks to the network. Library errors are translated into
TransportError here so nothing above this seam sees httpx exceptions.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from ecountgate.domain.errors import TransportError

logger = logging.getLogger(__name__)

BUSINESS_TIMEOUT_S = 180.0
AUTH_TIMEOUT_S = 30.0

DEFAULT_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class HttpTransport:
    """Posts JSON bodies and returns the raw httpx.Response.

    The status code and body are not interpreted; that is left to the caller.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(headers=DEFAULT_HEADERS, timeout=BUSINESS_TIMEOUT_S)

    async def post_json(
        self,
        url: str,
        body: Dict[str, Any],
        timeout_s: float = BUSINESS_TIMEOUT_S,
        endpoint: Optional[str] = None,
    ) -> httpx.Response:
        """Posts body as JSON to url within an absolute timeout.

        Raises:
            TransportError: TIMEOUT when timeout_s elapses, NETWORK_ERROR on
                connection-level failures.
        """
        label = endpoint or url
        logger.debug(f"POST {label}")
        try:
            response = await asyncio.wait_for(
                self._client.post(url, json=body, headers=DEFAULT_HEADERS, timeout=timeout_s),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning(f"Request to {label} timed out after {timeout_s:g}s")
            raise TransportError.timeout(label, timeout_s) from e
        except httpx.TransportError as e:
            logger.warning(f"Network error calling {label}: {e}")
            raise TransportError.network_error(label, e) from e
        logger.debug(f"POST {label} -> HTTP {response.status_code}")
        return response

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
