"""
Structural validation of raw program log batches.

A batch is checked before any decoding happens: the transaction must have
succeeded, carry enough lines to hold the shield payload, and its instruction
line must name the Shield instruction of the bridge program.
"""

from .errors import FailedTransaction, NotShieldInstruction, ValidationRejection
from .models import RawLogBatch

SHIELD_TAG = "Shield"
UNSHIELD_TAG = "Unshield"

# Line positions within the bridge program's Shield emission
INSTRUCTION_LINE = 1
PAYLOAD_LINE = 6
MIN_LINES = PAYLOAD_LINE + 1


class LogValidator:
    """Checks that a log batch is a successful Shield instruction."""

    def validate(self, batch: RawLogBatch) -> None:
        """
        Validate a raw log batch without decoding it.

        Args:
            batch: Log batch received from the subscription

        Raises:
            FailedTransaction: The chain reported the transaction as failed
            ValidationRejection: The batch is too short to hold a payload
            NotShieldInstruction: The batch belongs to another instruction
        """
        if batch.failed:
            raise FailedTransaction(batch.error, batch.transaction_id)

        if len(batch.lines) < MIN_LINES:
            raise ValidationRejection(
                f"expected at least {MIN_LINES} log lines, got {len(batch.lines)}",
                batch.transaction_id,
            )

        instruction_line = batch.lines[INSTRUCTION_LINE]
        if SHIELD_TAG not in instruction_line:
            kind = "unshield" if UNSHIELD_TAG in instruction_line else "unknown"
            raise NotShieldInstruction(
                f"not a shield instruction ({kind}): {instruction_line!r}",
                batch.transaction_id,
            )

    def is_valid(self, batch: RawLogBatch) -> bool:
        try:
            self.validate(batch)
        except ValidationRejection:
            return False
        return True
