"""Unit tests for the ShieldRelayer subscription loop."""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import Mock

import pytest
from solders.pubkey import Pubkey

from shield_relayer.config import BridgeConfig, MonitoringConfig, RelayerConfig
from shield_relayer.dedup import DedupTracker
from shield_relayer.errors import DeliveryError, TransportError
from shield_relayer.event_codec import EventCodec
from shield_relayer.models import RawLogBatch, ShieldEvent
from shield_relayer.relayer import ConnectionState, ShieldRelayer

PROXY = "8WUP1RGTDTZGYBjkHQfjnwMbnnk25hnE6Du7vFpaq1QK"
PROGRAM_ID = "BKGhwbiTHdUxcuWzZtDWyioRBieDEXTtgEk8u1zskZnk"


class FakeSubscription:
    """Subscription fed from a queue; exceptions in the queue are raised."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self.queue = queue

    async def recv(self) -> RawLogBatch:
        item = await self.queue.get()
        if isinstance(item, Exception):
            raise item
        return item


class FakeLogSource:
    """Log source that can fail its first connection attempts."""

    def __init__(self, fail_connects: int = 0) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()
        self.fail_connects = fail_connects
        self.connects = 0
        self.released = 0

    @asynccontextmanager
    async def subscribe(self):
        self.connects += 1
        if self.connects <= self.fail_connects:
            raise TransportError("connection refused")
        try:
            yield FakeSubscription(self.queue)
        finally:
            self.released += 1


class RecordingSink:
    """Sink that records events and can fail a number of deliveries."""

    def __init__(self, failures: list[Exception] | None = None) -> None:
        self.events: list[ShieldEvent] = []
        self.failures = list(failures or [])

    async def deliver(self, event: ShieldEvent) -> None:
        if self.failures:
            raise self.failures.pop(0)
        self.events.append(event)


def make_config(**monitoring) -> RelayerConfig:
    monitoring.setdefault("reconnect_base_delay", 0.01)
    monitoring.setdefault("reconnect_max_delay", 0.02)
    return RelayerConfig(
        bridge=BridgeConfig(program_id=PROGRAM_ID, trusted_proxy=PROXY),
        monitoring=MonitoringConfig(**monitoring),
    )


def shield_batch(tx_id: str, proxy: str = PROXY, amount: str = "100000") -> RawLogBatch:
    event = ShieldEvent(proxy, "12shR6fDe7ZcprYn6rjLwiLc", "TOKEN1", amount)
    return EventCodec.encode_batch(event, transaction_id=tx_id, program_id=PROGRAM_ID)


async def wait_until(condition, timeout: float = 2.0) -> None:
    """Poll condition until it holds or fail after timeout."""
    async def poll():
        while not condition():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(poll(), timeout=timeout)


def make_relayer(source=None, sink=None, **monitoring) -> ShieldRelayer:
    return ShieldRelayer(
        make_config(**monitoring),
        log_source=source or FakeLogSource(),
        sink=sink or RecordingSink(),
        dedup=DedupTracker(),
    )


class TestProcessBatch:
    """Test suite for processing single log batches."""

    @pytest.mark.asyncio
    async def test_valid_batch_is_delivered(self):
        sink = RecordingSink()
        relayer = make_relayer(sink=sink)

        event = await relayer.process_batch(shield_batch("sig1"))

        assert event is not None
        assert sink.events == [event]
        assert event.transaction_id == "sig1"
        assert relayer.get_stats()["delivered"] == 1
        assert relayer.get_stats()["processed_ids"] == 1

    @pytest.mark.asyncio
    async def test_failed_batch_never_decoded(self):
        """Test the codec is not invoked for failed transactions."""
        sink = RecordingSink()
        relayer = make_relayer(sink=sink)
        relayer.codec = Mock(wraps=relayer.codec)
        batch = RawLogBatch(
            transaction_id="sigF",
            failed=True,
            lines=shield_batch("sigF").lines,
            error={"InstructionError": [0, "Custom(1)"]},
        )

        assert await relayer.process_batch(batch) is None

        relayer.codec.decode.assert_not_called()
        assert sink.events == []
        assert relayer.get_stats()["failed"] == 1

    @pytest.mark.asyncio
    async def test_untrusted_proxy_not_delivered(self):
        sink = RecordingSink()
        relayer = make_relayer(sink=sink)
        spoofed = str(Pubkey.new_unique())

        assert await relayer.process_batch(shield_batch("sigS", proxy=spoofed)) is None

        assert sink.events == []
        assert relayer.get_stats()["trust_violations"] == 1
        # A rejected batch does not consume its transaction id
        assert relayer.dedup.should_process("sigS")

    @pytest.mark.asyncio
    async def test_short_and_malformed_batches_counted(self):
        relayer = make_relayer()
        short = RawLogBatch(transaction_id="s1", failed=False, lines=("a", "b"))
        lines = list(shield_batch("s2").lines)
        lines[6] = "Program log: Shield:INC:only,two"
        malformed = RawLogBatch(transaction_id="s2", failed=False, lines=tuple(lines))

        assert await relayer.process_batch(short) is None
        assert await relayer.process_batch(malformed) is None

        stats = relayer.get_stats()
        assert stats["rejected"] == 1
        assert stats["malformed"] == 1
        assert stats["delivered"] == 0

    @pytest.mark.asyncio
    async def test_duplicate_batch_delivered_once(self):
        sink = RecordingSink()
        relayer = make_relayer(sink=sink)

        await relayer.process_batch(shield_batch("sig1"))
        assert await relayer.process_batch(shield_batch("sig1")) is None

        assert len(sink.events) == 1
        assert relayer.get_stats()["duplicates"] == 1

    @pytest.mark.asyncio
    async def test_failed_delivery_can_be_retried(self):
        """Test a sink failure releases the id so a redelivery is processed."""
        sink = RecordingSink(failures=[DeliveryError("minting service down")])
        relayer = make_relayer(sink=sink)

        assert await relayer.process_batch(shield_batch("sig1")) is None
        assert relayer.dedup.should_process("sig1")

        assert await relayer.process_batch(shield_batch("sig1")) is not None
        assert len(sink.events) == 1
        assert relayer.get_stats()["delivery_errors"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_sink_error_is_contained(self):
        sink = RecordingSink(failures=[RuntimeError("bug in sink")])
        relayer = make_relayer(sink=sink)

        assert await relayer.process_batch(shield_batch("sig1")) is None
        assert relayer.get_stats()["delivery_errors"] == 1

    @pytest.mark.asyncio
    async def test_non_numeric_amount_still_delivered(self):
        sink = RecordingSink()
        relayer = make_relayer(sink=sink)

        event = await relayer.process_batch(shield_batch("sig1", amount="1e5"))

        assert event is not None
        assert event.amount is None
        assert sink.events[0].amount_text == "1e5"


class TestSubscriptionLoop:
    """Test suite for the run loop lifecycle."""

    @pytest.mark.asyncio
    async def test_loop_survives_bad_batches(self):
        """Test malformed and failed batches do not stop later deliveries."""
        source = FakeLogSource()
        sink = RecordingSink()
        relayer = make_relayer(source=source, sink=sink)

        source.queue.put_nowait(shield_batch("sig1"))
        source.queue.put_nowait(RawLogBatch(transaction_id="bad", failed=False, lines=(":::",)))
        source.queue.put_nowait(RawLogBatch(transaction_id="failed", failed=True, lines=(), error="err"))
        source.queue.put_nowait(shield_batch("sig2"))

        task = asyncio.create_task(relayer.run())
        await wait_until(lambda: len(sink.events) == 2)
        relayer.stop()
        await asyncio.wait_for(task, timeout=2)

        assert [e.transaction_id for e in sink.events] == ["sig1", "sig2"]
        assert relayer.state == ConnectionState.CLOSED
        assert source.released == 1

    @pytest.mark.asyncio
    async def test_stop_while_blocked_on_receive(self):
        """Test shutdown is observed promptly while waiting for logs."""
        source = FakeLogSource()
        relayer = make_relayer(source=source)

        task = asyncio.create_task(relayer.run())
        await wait_until(lambda: relayer.state == ConnectionState.RECEIVING)
        relayer.stop()
        await asyncio.wait_for(task, timeout=1)

        assert source.released == 1
        assert relayer.state == ConnectionState.CLOSED
        assert not relayer.running

    @pytest.mark.asyncio
    async def test_reconnects_after_subscription_drop(self):
        """Test a dropped subscription is re-established and delivery resumes."""
        source = FakeLogSource()
        sink = RecordingSink()
        relayer = make_relayer(source=source, sink=sink)

        source.queue.put_nowait(shield_batch("sig1"))
        source.queue.put_nowait(TransportError("connection reset"))
        # Redelivery of sig1 after reconnect must not be delivered twice
        source.queue.put_nowait(shield_batch("sig1"))
        source.queue.put_nowait(shield_batch("sig2"))

        task = asyncio.create_task(relayer.run())
        await wait_until(lambda: len(sink.events) == 2)
        relayer.stop()
        await asyncio.wait_for(task, timeout=2)

        assert [e.transaction_id for e in sink.events] == ["sig1", "sig2"]
        assert source.connects == 2
        assert source.released == 2
        stats = relayer.get_stats()
        assert stats["reconnects"] == 1
        assert stats["duplicates"] == 1

    @pytest.mark.asyncio
    async def test_retries_failed_connects(self):
        source = FakeLogSource(fail_connects=3)
        sink = RecordingSink()
        relayer = make_relayer(source=source, sink=sink)
        source.queue.put_nowait(shield_batch("sig1"))

        task = asyncio.create_task(relayer.run())
        await wait_until(lambda: len(sink.events) == 1)
        relayer.stop()
        await asyncio.wait_for(task, timeout=2)

        assert source.connects == 4
        assert relayer.reconnect_attempts == 0

    @pytest.mark.asyncio
    async def test_gives_up_after_max_reconnect_attempts(self):
        source = FakeLogSource(fail_connects=100)
        relayer = make_relayer(source=source, max_reconnect_attempts=2)

        with pytest.raises(TransportError):
            await asyncio.wait_for(relayer.run(), timeout=2)

        assert source.connects == 3
        assert relayer.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_cancellation_releases_subscription(self):
        source = FakeLogSource()
        relayer = make_relayer(source=source)

        task = asyncio.create_task(relayer.run())
        await wait_until(lambda: relayer.state == ConnectionState.RECEIVING)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert source.released == 1
        assert relayer.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_stop_during_backoff(self):
        source = FakeLogSource(fail_connects=100)
        relayer = make_relayer(source=source, reconnect_base_delay=5, reconnect_max_delay=5)

        task = asyncio.create_task(relayer.run())
        await wait_until(lambda: relayer.state == ConnectionState.RECONNECTING)
        relayer.stop()
        await asyncio.wait_for(task, timeout=1)

        assert source.connects == 1

    def test_reconnect_delay_is_capped(self):
        relayer = make_relayer(reconnect_base_delay=1, reconnect_max_delay=10)

        delays = []
        for attempt in range(1, 7):
            relayer.reconnect_attempts = attempt
            delays.append(relayer._reconnect_delay())

        assert delays == [1, 2, 4, 8, 10, 10]
