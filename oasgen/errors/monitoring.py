"""Monitoring sinks receiving the JSON form of handled errors."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx
from loguru import logger

MonitoringSink = Callable[[Dict[str, Any]], Union[None, bool, Awaitable[Any]]]


class HttpMonitoringSink:
    """Posts each error record to an HTTP collector.

    Delivery is best effort: transport failures and error responses are
    logged and reported as ``False``.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 5.0,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._client = client
        self.sent = 0
        self.failed = 0

    async def __call__(self, record: Dict[str, Any]) -> bool:
        try:
            if self._client is not None:
                response = await self._client.post(
                    self.endpoint, json=record, headers=self.headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.endpoint, json=record, headers=self.headers, timeout=self.timeout
                    )
            response.raise_for_status()
        except httpx.TimeoutException:
            self.failed += 1
            logger.warning(f"Monitoring sink timed out after {self.timeout}s posting to {self.endpoint}")
            return False
        except httpx.HTTPError as e:
            self.failed += 1
            logger.warning(f"Monitoring sink failed posting to {self.endpoint}: {e}")
            return False

        self.sent += 1
        logger.debug(f"Sent error {record.get('id')} to {self.endpoint}")
        return True

    def __repr__(self) -> str:
        return f"HttpMonitoringSink(endpoint={self.endpoint!r})"
