"""
Codec for the Shield event payload embedded in program log lines.

The bridge program reports a shield as free-form log text. The payload line
is made of ``:``-separated segments; the last segment carries a
comma-separated record of exactly four fields::

    Program log: Shield:INC:<proxy>,<destination>,<asset>,<amount>

Anyone can emit log lines that mention the program, so every split step is
bounds-checked and every deviation is reported as a typed rejection.
"""

import logging

from .errors import MalformedPayload, TrustViolation
from .log_validator import PAYLOAD_LINE
from .models import RawLogBatch, ShieldEvent

logger = logging.getLogger(__name__)

SEGMENT_SEPARATOR = ":"
FIELD_SEPARATOR = ","
MIN_SEGMENTS = 3
FIELD_COUNT = 4
DEFAULT_PREFIX = "Program log: Shield:INC"

SPL_TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


def parse_amount(amount_text: str) -> int | None:
    """Parse an amount as a non-negative decimal integer, None if it is not one."""
    if amount_text.isascii() and amount_text.isdigit():
        return int(amount_text)
    return None


class EventCodec:
    """Encodes and decodes ShieldEvent payload lines."""

    def __init__(self, trusted_proxy: str) -> None:
        """
        Args:
            trusted_proxy: Incognito proxy address every payload must name
        """
        if not trusted_proxy:
            raise ValueError("trusted_proxy must not be empty")
        self.trusted_proxy = trusted_proxy

    def decode(self, batch: RawLogBatch) -> ShieldEvent:
        """
        Decode the payload line of a validated log batch.

        Args:
            batch: Log batch that passed LogValidator

        Returns:
            The decoded ShieldEvent

        Raises:
            MalformedPayload: The payload line does not have the expected shape
            TrustViolation: The payload names an untrusted proxy
        """
        tx_id = batch.transaction_id
        if len(batch.lines) <= PAYLOAD_LINE:
            raise MalformedPayload(f"no payload line at index {PAYLOAD_LINE}", tx_id)

        proxy, destination, asset_id, amount_text = self.split_payload(batch.lines[PAYLOAD_LINE], tx_id)

        if proxy != self.trusted_proxy:
            raise TrustViolation(proxy, tx_id)

        amount = parse_amount(amount_text)
        if amount is None:
            logger.warning(f"Shield amount {amount_text!r} in {tx_id} is not a non-negative integer")

        return ShieldEvent(
            proxy_address=proxy,
            destination_address=destination,
            asset_id=asset_id,
            amount_text=amount_text,
            amount=amount,
            transaction_id=tx_id,
        )

    @staticmethod
    def split_payload(line: str, transaction_id: str | None = None) -> tuple[str, str, str, str]:
        """
        Split a payload line into its four raw fields.

        Raises:
            MalformedPayload: On any shape deviation
        """
        segments = line.split(SEGMENT_SEPARATOR)
        if len(segments) < MIN_SEGMENTS:
            raise MalformedPayload(
                f"expected at least {MIN_SEGMENTS} ':' segments, got {len(segments)}: {line!r}",
                transaction_id,
            )

        # Prefixes may carry extra segments; the record is always the last one.
        # Fields are taken verbatim so the proxy comparison is exact.
        payload = segments[-1]
        fields = payload.split(FIELD_SEPARATOR)
        # Exactly four fields: a longer record is rejected, not truncated to its first four
        if len(fields) != FIELD_COUNT:
            raise MalformedPayload(
                f"expected {FIELD_COUNT} payload fields, got {len(fields)}: {payload!r}",
                transaction_id,
            )

        proxy, destination, asset_id, amount_text = fields
        if not proxy or not destination:
            raise MalformedPayload(f"empty proxy or destination in {payload!r}", transaction_id)

        return proxy, destination, asset_id, amount_text

    @staticmethod
    def encode(event: ShieldEvent, prefix: str = DEFAULT_PREFIX) -> str:
        """
        Encode an event into a payload line.

        Raises:
            MalformedPayload: A field contains a separator and cannot be encoded
        """
        fields = (event.proxy_address, event.destination_address, event.asset_id, event.amount_text)
        for value in fields:
            if SEGMENT_SEPARATOR in value or FIELD_SEPARATOR in value:
                raise MalformedPayload(f"field {value!r} contains a separator")
        if prefix.count(SEGMENT_SEPARATOR) < MIN_SEGMENTS - 2:
            raise MalformedPayload(f"prefix {prefix!r} has too few ':' segments")

        return f"{prefix}{SEGMENT_SEPARATOR}{FIELD_SEPARATOR.join(fields)}"

    @classmethod
    def encode_batch(cls, event: ShieldEvent, transaction_id: str, program_id: str = "") -> RawLogBatch:
        """Build the full log batch the bridge program emits for a shield."""
        program = program_id or "BridgeProgram"
        lines = (
            f"Program {program} invoke [1]",
            "Program log: Instruction: Shield",
            "Program log: Calling the token program to transfer token from user account to vault",
            f"Program {SPL_TOKEN_PROGRAM} invoke [2]",
            "Program log: Instruction: Transfer",
            f"Program {SPL_TOKEN_PROGRAM} success",
            cls.encode(event),
            f"Program {program} success",
        )
        return RawLogBatch(transaction_id=transaction_id, failed=False, lines=lines)
