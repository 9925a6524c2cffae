#!/usr/bin/env python3
"""Signing and submission of Shield transactions.

Every required signer position of a transaction must be matched to a signer
handle before anything is sent; a partially signed transaction is never
submitted. Failures are classified as chain-side (SubmissionRejected) or
network-side (TransportError) and never retried here.
"""

import logging
from collections.abc import Iterable

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Finalized
from solana.rpc.core import RPCException
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .errors import MissingSigner, SubmissionRejected, TransportError
from .utils.signers import SignerSet

logger = logging.getLogger(__name__)


class Submitter:
    """Signs transactions with a signer set and sends them to the cluster."""

    def __init__(self, client: AsyncClient, commitment: Commitment = Finalized) -> None:
        """
        Args:
            client: Solana JSON-RPC client
            commitment: Commitment used when fetching the recent blockhash
        """
        self.client = client
        self.commitment = commitment

    @staticmethod
    def required_signers(tx: Transaction) -> list[Pubkey]:
        """Public keys of every signature position in the transaction message."""
        message = tx.message
        return list(message.account_keys[:message.header.num_required_signatures])

    def resolve_signers(self, tx: Transaction, signers: SignerSet) -> list[Keypair]:
        """
        Match each required signer position to a signer handle.

        Raises:
            MissingSigner: A required position has no matching handle
        """
        resolved = []
        for pubkey in self.required_signers(tx):
            if (signer := signers.resolve(pubkey)) is None:
                logger.error(f"Unable to sign transaction: missing signer {pubkey}")
                raise MissingSigner(pubkey)
            resolved.append(signer)
        return resolved

    async def sign_and_send(self, tx: Transaction, signers: SignerSet | Iterable[Keypair]) -> str:
        """
        Sign tx with a recent blockhash and submit it.

        Args:
            tx: Unsigned transaction from TxBuilder
            signers: Signer handles; extra handles are ignored

        Returns:
            The transaction signature

        Raises:
            MissingSigner: A required signer is not available (nothing is sent)
            SubmissionRejected: The cluster declined the transaction
            TransportError: The cluster could not be reached
        """
        signer_set = signers if isinstance(signers, SignerSet) else SignerSet(signers)
        keypairs = self.resolve_signers(tx, signer_set)

        try:
            latest = await self.client.get_latest_blockhash(commitment=self.commitment)
            signed = Transaction(keypairs, tx.message, latest.value.blockhash)
            response = await self.client.send_transaction(signed)
        except RPCException as e:
            logger.error(f"Unable to send transaction: {e}")
            raise SubmissionRejected(f"transaction rejected by cluster: {e}") from e
        except (SolanaRpcException, httpx.HTTPError, OSError) as e:
            logger.error(f"Unable to reach cluster: {e}")
            raise TransportError(f"transaction submission failed: {e}") from e

        signature = str(response.value)
        logger.info(f"✓ Transaction submitted successfully: {signature}")
        return signature
