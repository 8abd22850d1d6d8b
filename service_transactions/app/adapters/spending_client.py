"""
Upstream spending API client for the Transaction Proxy Service.
"""

from datetime import date
from typing import Any, AsyncIterator, List, Optional, Sequence, Tuple

import httpx

from shared.logging import get_logger
from shared.errors import EncodingError, UpstreamError, UpstreamUnavailableError

from .json_stream import JsonArrayDecoder


class SpendingApiClient:
    """Streaming client for the public spending API transactions endpoint."""

    def __init__(
        self,
        base_url: str,
        connect_timeout: float = 30.0,
        read_timeout: float = 600.0,
        max_connections: int = 50,
        keepalive_expiry: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.logger = get_logger("transactions.upstream")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections,
                keepalive_expiry=keepalive_expiry
            ),
            headers={"Accept": "application/json"},
            transport=transport
        )

    @staticmethod
    def build_params(
        recipient_codes: Sequence[str],
        start_date: date,
        end_date: date
    ) -> List[Tuple[str, str]]:
        """Query parameters for a transactions request; recipient codes repeat."""
        params = [("recipt_edrpous", code) for code in recipient_codes]
        params.append(("startdate", start_date.isoformat()))
        params.append(("enddate", end_date.isoformat()))
        return params

    async def stream_transactions(
        self,
        recipient_codes: Sequence[str],
        start_date: date,
        end_date: date
    ) -> AsyncIterator[Any]:
        """Yield raw array elements as the response body arrives.

        Closing the iterator early closes the upstream response.

        Raises:
            UpstreamError: the API answered with a non-2xx status.
            UpstreamUnavailableError: the API could not be reached.
            EncodingError: the body is not a well-formed JSON array.
        """
        params = self.build_params(recipient_codes, start_date, end_date)

        try:
            async with self._client.stream("GET", "/transactions/", params=params) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    self.logger.error(
                        "Upstream request failed",
                        status_code=response.status_code,
                        response=body[:1000]
                    )
                    raise UpstreamError(response.status_code, body)

                decoder = JsonArrayDecoder()
                async for chunk in response.aiter_text():
                    for item in decoder.feed(chunk):
                        yield item
                decoder.finish()

        except httpx.TransportError as e:
            self.logger.error("Upstream unreachable", error=str(e), error_type=type(e).__name__)
            raise UpstreamUnavailableError(details={"error_type": type(e).__name__})
        except httpx.DecodingError as e:
            self.logger.error("Upstream response could not be decoded", error=str(e))
            raise EncodingError("Failed to decode upstream response")

    async def ping(self) -> bool:
        """Check that the upstream API answers at all."""
        try:
            await self._client.head("/")
            return True
        except httpx.HTTPError as e:
            self.logger.warning("Upstream ping failed", error=str(e))
            return False

    async def close(self):
        """Release the connection pool."""
        await self._client.aclose()
