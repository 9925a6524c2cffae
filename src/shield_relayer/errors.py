"""
Shield Relayer exceptions.

Custom exception classes for the event path (subscription, validation,
decoding, delivery) and the origination path (building, signing, submitting).
"""

from typing import Any


class BridgeError(Exception):
    """Base exception for the Shield Relayer."""
    pass


class ConfigurationError(BridgeError, ValueError):
    """Configuration is missing or invalid."""
    pass


class TransportError(BridgeError):
    """Subscription or network communication failed."""
    pass


class DeliveryError(BridgeError):
    """The downstream sink did not accept a shield event."""
    pass


class ShieldRejection(BridgeError):
    """A log batch was rejected and will be skipped.

    Attributes:
        transaction_id: Signature of the rejected transaction, when known
    """

    def __init__(self, message: str, transaction_id: str | None = None) -> None:
        super().__init__(message)
        self.transaction_id = transaction_id


class ValidationRejection(ShieldRejection):
    """The log batch is structurally not a shield event."""
    pass


class FailedTransaction(ValidationRejection):
    """The chain reported the transaction as failed."""

    def __init__(self, error: Any, transaction_id: str | None = None) -> None:
        super().__init__(f"transaction failed on chain: {error}", transaction_id)
        self.error = error


class NotShieldInstruction(ValidationRejection):
    """The instruction tag line does not name a Shield instruction."""
    pass


class MalformedPayload(ShieldRejection):
    """The shield payload line could not be decoded."""
    pass


class TrustViolation(ShieldRejection):
    """The payload names a proxy other than the trusted Incognito proxy."""

    def __init__(self, proxy_address: str, transaction_id: str | None = None) -> None:
        super().__init__(f"untrusted incognito proxy {proxy_address!r}", transaction_id)
        self.proxy_address = proxy_address


class OriginationError(BridgeError):
    """Building or submitting a shield transaction failed."""
    pass


class InvalidInstructionShape(OriginationError):
    """The shield instruction parameters or account list are malformed."""
    pass


class MissingSigner(OriginationError):
    """A required signer position has no matching signer handle."""

    def __init__(self, pubkey: Any) -> None:
        super().__init__(f"no signer available for required account {pubkey}")
        self.pubkey = pubkey


class SubmissionRejected(OriginationError):
    """The chain declined the submitted transaction."""
    pass
