"""
Downstream sinks for decoded shield events.

A sink receives each new ShieldEvent exactly once per relayer lifetime
(subject to deduplication) and raises DeliveryError when it cannot accept it.
"""

import logging
from typing import Protocol

import httpx

from .errors import DeliveryError
from .models import ShieldEvent

logger = logging.getLogger(__name__)


class ShieldSink(Protocol):
    async def deliver(self, event: ShieldEvent) -> None: ...


class LoggingSink:
    """Sink that only reports the shield intent in the log."""

    async def deliver(self, event: ShieldEvent) -> None:
        logger.info(
            f"Shield with inc address {event.destination_address} "
            f"token id {event.asset_id} and amount {event.amount_text} "
            f"(tx {event.transaction_id})"
        )


class HttpSink:
    """Sink that posts shield events as JSON to the minting service."""

    def __init__(self, url: str, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """
        Args:
            url: Endpoint of the minting service accepting shield requests
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def deliver(self, event: ShieldEvent) -> None:
        """
        Post the event to the minting service.

        Raises:
            DeliveryError: The request failed or was answered with an error status
        """
        payload = event.to_dict()
        logger.debug(f"Posting shield event to {self.url}: {payload}")
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeliveryError(
                f"minting service rejected {event.transaction_id}: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"could not reach minting service: {e}") from e

        logger.info(f"Delivered shield {event.transaction_id} to {self.url}")
