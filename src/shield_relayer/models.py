"""
Shared data models for the Shield Relayer.

This module contains the immutable records passed between the relayer
components: decoded shield events, raw log batches received from the chain
and the typed parameters used to originate shield transactions.
"""

from dataclasses import dataclass, field
from typing import Any

from solders.instruction import AccountMeta
from solders.keypair import Keypair
from solders.pubkey import Pubkey


@dataclass(frozen=True, slots=True)
class ShieldEvent:
    """Represents a decoded Shield event from the bridge program logs.

    Attributes:
        proxy_address: Incognito proxy account named in the log payload
        destination_address: Incognito address that receives the minted pToken
        asset_id: Identifier of the shielded asset as printed in the log
        amount_text: Amount exactly as found in the log (authoritative value)
        amount: Parsed amount, None when the text is not a non-negative integer
        transaction_id: Signature of the transaction that emitted the event
    """
    proxy_address: str
    destination_address: str
    asset_id: str
    amount_text: str
    amount: int | None = None
    transaction_id: str | None = field(default=None, compare=False)

    def __str__(self) -> str:
        """Human-readable string representation."""
        return (
            f"ShieldEvent(destination={self.destination_address[:12]}..., "
            f"asset={self.asset_id}, amount={self.amount_text})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "proxy_address": self.proxy_address,
            "destination_address": self.destination_address,
            "asset_id": self.asset_id,
            "amount": self.amount_text,
            "transaction_id": self.transaction_id,
        }


@dataclass(frozen=True, slots=True)
class RawLogBatch:
    """One notification from the program log subscription.

    Attributes:
        transaction_id: Signature of the transaction the logs belong to
        failed: True when the chain reports the transaction failed
        lines: Log lines in emission order
        error: Chain-reported error object when failed is True
    """
    transaction_id: str
    failed: bool
    lines: tuple[str, ...]
    error: Any = None


@dataclass(frozen=True, slots=True)
class AccountRef:
    """An account passed to the shield instruction."""
    address: Pubkey
    is_writable: bool = False
    is_signer: bool = False

    def to_account_meta(self) -> AccountMeta:
        return AccountMeta(pubkey=self.address, is_signer=self.is_signer, is_writable=self.is_writable)


@dataclass(frozen=True)
class TransactionSpec:
    """Typed parameters for originating a shield transaction.

    The account order is significant to the bridge program (position encodes
    role) and is never changed between here and the built instruction.
    """
    payer: Keypair
    accounts: tuple[AccountRef, ...]
    amount: int
    destination_address: str
    additional_signers: tuple[Keypair, ...] = ()

    @property
    def signers(self) -> tuple[Keypair, ...]:
        """Payer first, followed by every additional signer not equal to it."""
        payer_key = self.payer.pubkey()
        extra = tuple(s for s in self.additional_signers if s.pubkey() != payer_key)
        return (self.payer, *extra)
