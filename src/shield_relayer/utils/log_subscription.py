"""
Log subscription utility for real-time Solana program log monitoring.

Provides a WebSocket ``logsSubscribe`` source that yields one RawLogBatch per
transaction mentioning the bridge program. Connection failures and refused
subscriptions surface as TransportError so the caller can decide how to
reconnect; unparsable frames are skipped.
"""

import logging
from collections import deque
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol

from solana.rpc.commitment import Commitment, Finalized
from solana.rpc.websocket_api import SolanaWsClientProtocol, SubscriptionError, connect
from solders.errors import SerdeJSONError
from solders.pubkey import Pubkey
from solders.rpc.config import RpcTransactionLogsFilterMentions
from solders.rpc.responses import LogsNotification, SubscriptionResult
from websockets.exceptions import WebSocketException

from ..errors import TransportError
from ..models import RawLogBatch


class LogSubscription(Protocol):
    async def recv(self) -> RawLogBatch: ...


class LogSource(Protocol):
    def subscribe(self) -> AbstractAsyncContextManager[LogSubscription]: ...


def to_raw_log_batch(notification: LogsNotification) -> RawLogBatch:
    """Convert a solders logs notification into a RawLogBatch."""
    value = notification.result.value
    return RawLogBatch(
        transaction_id=str(value.signature),
        failed=value.err is not None,
        lines=tuple(value.logs),
        error=value.err,
    )


class SolanaLogSubscription:
    """An open logs subscription on a Solana WebSocket connection."""

    def __init__(self, websocket: SolanaWsClientProtocol, subscription_id: int) -> None:
        self.websocket = websocket
        self.subscription_id = subscription_id
        self._pending: deque[RawLogBatch] = deque()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def recv(self) -> RawLogBatch:
        """
        Wait for the next log batch.

        Raises:
            TransportError: The connection dropped or the node refused the subscription
        """
        while not self._pending:
            try:
                messages: list[Any] = await self.websocket.recv()
            except SerdeJSONError as e:
                self.logger.warning(f"Skipping unparsable frame on subscription {self.subscription_id}: {e}")
                continue
            except SubscriptionError as e:
                raise TransportError(f"log subscription {self.subscription_id} refused: {e}") from e
            except (WebSocketException, OSError) as e:
                raise TransportError(f"log subscription {self.subscription_id} dropped: {e}") from e

            for message in messages:
                if isinstance(message, LogsNotification):
                    batch = to_raw_log_batch(message)
                    self.logger.debug(f"Received logs for {batch.transaction_id}: {batch.lines}")
                    self._pending.append(batch)
                else:
                    self.logger.debug(f"Ignoring non-log message: {type(message).__name__}")

        return self._pending.popleft()


class SolanaLogSource:
    """
    Source of bridge program logs via Solana ``logsSubscribe``.

    Each call to subscribe() opens a new WebSocket connection and releases the
    subscription and connection when the context exits, whatever the reason.
    """

    def __init__(self, ws_url: str, program_id: Pubkey, commitment: Commitment = Finalized) -> None:
        """
        Args:
            ws_url: WebSocket RPC endpoint URL
            program_id: Bridge program whose logs are monitored
            commitment: Commitment level of the subscription
        """
        self.ws_url = ws_url
        self.program_id = program_id
        self.commitment = commitment
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[SolanaLogSubscription]:
        """
        Open a logs subscription filtered to the program id.

        Raises:
            TransportError: The connection or subscription could not be established
        """
        self.logger.info(f"Connecting to WebSocket: {self.ws_url}")
        try:
            async with connect(self.ws_url) as websocket:
                subscription = await self._open(websocket)
                try:
                    yield subscription
                finally:
                    await self._close(websocket, subscription.subscription_id)
        except (WebSocketException, OSError) as e:
            raise TransportError(f"WebSocket connection to {self.ws_url} failed: {e}") from e

    async def _open(self, websocket: SolanaWsClientProtocol) -> SolanaLogSubscription:
        await websocket.logs_subscribe(
            RpcTransactionLogsFilterMentions(self.program_id),
            commitment=self.commitment,
        )
        try:
            first_resp = await websocket.recv()
        except (SubscriptionError, SerdeJSONError) as e:
            raise TransportError(f"logsSubscribe for {self.program_id} failed: {e}") from e
        if not first_resp or not isinstance(first_resp[0], SubscriptionResult):
            raise TransportError(f"Unexpected logsSubscribe response: {first_resp!r}")

        subscription_id = first_resp[0].result
        self.logger.info(
            f"Subscribed to logs mentioning {self.program_id} "
            f"at {self.commitment} commitment (subscription {subscription_id})"
        )
        return SolanaLogSubscription(websocket, subscription_id)

    async def _close(self, websocket: SolanaWsClientProtocol, subscription_id: int) -> None:
        try:
            await websocket.logs_unsubscribe(subscription_id)
            self.logger.info(f"Unsubscribed from logs (subscription {subscription_id})")
        except (WebSocketException, OSError) as e:
            # Connection already gone; closing the socket releases the subscription
            self.logger.warning(f"Error during unsubscribe: {e}")
