"""Lookup of signer handles by public key."""

from collections.abc import Iterable, Iterator

from solders.keypair import Keypair
from solders.pubkey import Pubkey


class SignerSet:
    """A small, read-only set of signer handles."""

    def __init__(self, signers: Iterable[Keypair]) -> None:
        self._signers: tuple[Keypair, ...] = tuple(signers)

    def resolve(self, pubkey: Pubkey) -> Keypair | None:
        """Return the signer whose public key is pubkey, or None."""
        for candidate in self._signers:
            if candidate.pubkey() == pubkey:
                return candidate
        return None

    @property
    def pubkeys(self) -> list[Pubkey]:
        return [signer.pubkey() for signer in self._signers]

    def __iter__(self) -> Iterator[Keypair]:
        return iter(self._signers)

    def __len__(self) -> int:
        return len(self._signers)
