"""
Shield Relayer implementation.

This module contains the subscription loop that receives bridge program logs,
drives each batch through validation, decoding and deduplication, and hands
new shield events to the downstream sink. Transport failures are retried by
resubscribing; per-batch failures are logged and skipped.
"""

import asyncio
import logging
from enum import Enum
from typing import Any

from .config import RelayerConfig
from .dedup import DedupTracker, SqliteDedupStore
from .errors import (
    DeliveryError,
    FailedTransaction,
    MalformedPayload,
    TransportError,
    TrustViolation,
    ValidationRejection,
)
from .event_codec import EventCodec
from .log_validator import LogValidator
from .models import RawLogBatch, ShieldEvent
from .sinks import HttpSink, LoggingSink, ShieldSink
from .utils.log_subscription import LogSource, LogSubscription, SolanaLogSource

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """State of the subscription loop."""
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    RECEIVING = "receiving"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class ShieldRelayer:
    """
    Subscription loop relaying Shield events to a downstream sink.

    Data flow: log source -> LogValidator -> EventCodec -> DedupTracker -> sink.
    """

    STAT_KEYS = (
        "received",
        "delivered",
        "duplicates",
        "failed",
        "rejected",
        "malformed",
        "trust_violations",
        "delivery_errors",
        "reconnects",
    )

    def __init__(
        self,
        config: RelayerConfig,
        log_source: LogSource | None = None,
        sink: ShieldSink | None = None,
        dedup: DedupTracker | None = None,
    ) -> None:
        """
        Initialize the Shield Relayer.

        Args:
            config: Relayer configuration
            log_source: Source of program logs, defaults to a Solana WebSocket subscription
            sink: Destination for decoded events, defaults from config.monitoring.sink_url
            dedup: Tracker of delivered transactions, defaults from config.monitoring.dedup_db_path
        """
        self.config = config
        self.monitoring = config.monitoring

        self.validator = LogValidator()
        self.codec = EventCodec(config.bridge.trusted_proxy)

        if dedup is None:
            store = SqliteDedupStore(self.monitoring.dedup_db_path) if self.monitoring.dedup_db_path else None
            dedup = DedupTracker(store)
        self.dedup = dedup

        if sink is None:
            sink = HttpSink(self.monitoring.sink_url) if self.monitoring.sink_url else LoggingSink()
        self.sink = sink

        self.log_source: LogSource = log_source or SolanaLogSource(
            ws_url=config.chain.ws_url,
            program_id=config.bridge.program_pubkey,
            commitment=config.chain.commitment,
        )

        self.state = ConnectionState.CLOSED
        self.running = False
        self.reconnect_attempts = 0
        self.stats: dict[str, int] = dict.fromkeys(self.STAT_KEYS, 0)

        # Async coordination
        self.shutdown_event = asyncio.Event()

    @classmethod
    def from_env(cls) -> "ShieldRelayer":
        """
        Create a ShieldRelayer instance from environment variables.

        Raises:
            ConfigurationError: If environment variables are invalid
        """
        config = RelayerConfig.from_env()
        config.log_config()
        return cls(config)

    async def process_batch(self, batch: RawLogBatch) -> ShieldEvent | None:
        """
        Validate, decode, deduplicate and deliver one log batch.

        Args:
            batch: Log batch received from the subscription

        Returns:
            The delivered ShieldEvent, None if the batch was skipped
        """
        self.stats["received"] += 1
        tx_id = batch.transaction_id

        try:
            self.validator.validate(batch)
            event = self.codec.decode(batch)
        except FailedTransaction as e:
            self.stats["failed"] += 1
            logger.info(f"The transaction {tx_id} failed: {e.error}")
            return None
        except ValidationRejection as e:
            self.stats["rejected"] += 1
            logger.debug(f"Skipping {tx_id}: {e}")
            return None
        except MalformedPayload as e:
            self.stats["malformed"] += 1
            logger.warning(f"Invalid shield logs in {tx_id}: {e}")
            return None
        except TrustViolation as e:
            self.stats["trust_violations"] += 1
            logger.error(f"Invalid incognito proxy {e.proxy_address!r} in {tx_id}, possible spoofed shield")
            return None

        if not self.dedup.claim(tx_id):
            self.stats["duplicates"] += 1
            logger.info(f"Shield {tx_id} already processed, skipping")
            return None

        try:
            await self.sink.deliver(event)
        except Exception as e:
            self.dedup.release(tx_id)
            self.stats["delivery_errors"] += 1
            logger.error(
                f"Failed to deliver shield {tx_id}: {e}",
                exc_info=not isinstance(e, DeliveryError),
            )
            return None

        self.stats["delivered"] += 1
        logger.info(f"Shield event relayed - TX: {tx_id[:10]}... {event}")
        return event

    async def _next_batch(self, subscription: LogSubscription) -> RawLogBatch | None:
        """Wait for the next batch, or None once shutdown is requested."""
        recv_task = asyncio.ensure_future(subscription.recv())
        shutdown_task = asyncio.ensure_future(self.shutdown_event.wait())
        try:
            done, _ = await asyncio.wait({recv_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (recv_task, shutdown_task) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if recv_task in done:
            return recv_task.result()
        return None

    async def _consume(self) -> None:
        """Subscribe and process batches until shutdown or a transport error."""
        self.state = ConnectionState.CONNECTING if self.reconnect_attempts == 0 else ConnectionState.RECONNECTING
        async with self.log_source.subscribe() as subscription:
            self.state = ConnectionState.SUBSCRIBED
            self.reconnect_attempts = 0
            logger.info("Log subscription established, waiting for shield events...")

            while not self.shutdown_event.is_set():
                self.state = ConnectionState.RECEIVING
                batch = await self._next_batch(subscription)
                if batch is None:
                    break

                try:
                    await self.process_batch(batch)
                except Exception as e:
                    logger.error(f"Error processing logs of {batch.transaction_id}: {e}", exc_info=True)

    async def _wait_for_shutdown(self, timeout: float) -> bool:
        """Sleep up to timeout seconds, returning True if shutdown was requested."""
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def _reconnect_delay(self) -> float:
        delay = self.monitoring.reconnect_base_delay * (2 ** (self.reconnect_attempts - 1))
        return min(delay, self.monitoring.reconnect_max_delay)

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.monitoring.status_interval)
            stats = self.get_stats()
            logger.info(
                f"Status: {stats['state']}, {stats['received']} batches received, "
                f"{stats['delivered']} delivered, {stats['duplicates']} duplicates, "
                f"{stats['trust_violations']} trust violations"
            )

    async def run(self) -> None:
        """
        Main event loop for the relayer service.

        Returns after stop() is called. Raises TransportError only when
        max_reconnect_attempts is configured and exhausted.
        """
        self.running = True
        logger.info("Shield Relayer starting...")
        logger.info(f"Watching program {self.config.bridge.program_id} at {self.config.chain.commitment}")

        status_task = asyncio.create_task(self._periodic_status_logger())
        try:
            while not self.shutdown_event.is_set():
                try:
                    await self._consume()
                except TransportError as e:
                    self.reconnect_attempts += 1
                    self.stats["reconnects"] += 1
                    max_attempts = self.monitoring.max_reconnect_attempts
                    if max_attempts is not None and self.reconnect_attempts > max_attempts:
                        logger.error(f"Max reconnect attempts reached: {e}")
                        raise

                    self.state = ConnectionState.RECONNECTING
                    delay = self._reconnect_delay()
                    logger.warning(
                        f"Log subscription failed (attempt {self.reconnect_attempts}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    if await self._wait_for_shutdown(delay):
                        break

        except TransportError:
            raise
        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            self.running = False
            self.state = ConnectionState.CLOSED
            status_task.cancel()
            await asyncio.gather(status_task, return_exceptions=True)
            logger.info("Shield Relayer stopped")

    def stop(self) -> None:
        """Stop the relayer service."""
        self.running = False
        self.shutdown_event.set()

    def get_stats(self) -> dict[str, Any]:
        """
        Get current relayer statistics.

        Returns:
            Dictionary with event counters, processed id count and loop state
        """
        return {
            **self.stats,
            "processed_ids": len(self.dedup),
            "state": self.state.value,
        }
