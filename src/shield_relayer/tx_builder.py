#!/usr/bin/env python3
"""Construction of Shield instruction transactions.

The bridge program's Shield instruction takes a tag byte, the amount as a
little-endian u64 and the UTF-8 Incognito destination address, and expects
its accounts in a fixed order:

    0. shield maker (signer)
    1. shield maker token account (writable)
    2. vault token account (writable)
    3. rent sysvar
    4. incognito proxy
    5. SPL token program
"""

import logging
import struct
from dataclasses import dataclass

from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.sysvar import RENT
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID

from .errors import InvalidInstructionShape
from .models import AccountRef, TransactionSpec

logger = logging.getLogger(__name__)

SHIELD_INSTRUCTION_TAG = 0
MAX_U64 = 2**64 - 1


@dataclass(frozen=True, slots=True)
class AccountRole:
    """Requirements for one position of the Shield account list."""
    name: str
    is_signer: bool = False
    is_writable: bool = False
    address: Pubkey | None = None


SHIELD_ACCOUNT_ROLES: tuple[AccountRole, ...] = (
    AccountRole("shield maker", is_signer=True),
    AccountRole("shield maker token account", is_writable=True),
    AccountRole("vault token account", is_writable=True),
    AccountRole("rent sysvar", address=RENT),
    AccountRole("incognito proxy"),
    AccountRole("token program", address=TOKEN_PROGRAM_ID),
)


def encode_shield_data(amount: int, destination_address: str) -> bytes:
    """
    Encode Shield instruction data.

    Raises:
        InvalidInstructionShape: Amount outside u64 or empty destination
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or not 0 <= amount <= MAX_U64:
        raise InvalidInstructionShape(f"amount must be an unsigned 64-bit integer, got {amount!r}")
    if not destination_address:
        raise InvalidInstructionShape("destination address must not be empty")

    return struct.pack("<BQ", SHIELD_INSTRUCTION_TAG, amount) + destination_address.encode("utf-8")


class TxBuilder:
    """Builds unsigned Shield transactions for the bridge program."""

    def __init__(self, program_id: Pubkey) -> None:
        self.program_id = program_id

    def validate_accounts(self, accounts: tuple[AccountRef, ...]) -> list[AccountMeta]:
        """
        Check the account list against the Shield account layout.

        The order is kept as given. The shield maker position is always
        compiled as a signer.

        Raises:
            InvalidInstructionShape: Wrong count, writability or fixed address
        """
        if len(accounts) != len(SHIELD_ACCOUNT_ROLES):
            raise InvalidInstructionShape(
                f"shield instruction takes {len(SHIELD_ACCOUNT_ROLES)} accounts, got {len(accounts)}"
            )

        metas = []
        for index, (role, ref) in enumerate(zip(SHIELD_ACCOUNT_ROLES, accounts)):
            if role.is_writable and not ref.is_writable:
                raise InvalidInstructionShape(f"account {index} ({role.name}) must be writable")
            if role.address is not None and ref.address != role.address:
                raise InvalidInstructionShape(
                    f"account {index} ({role.name}) must be {role.address}, got {ref.address}"
                )
            metas.append(AccountMeta(
                pubkey=ref.address,
                is_signer=ref.is_signer or role.is_signer,
                is_writable=ref.is_writable,
            ))
        return metas

    def build_instruction(self, spec: TransactionSpec) -> Instruction:
        data = encode_shield_data(spec.amount, spec.destination_address)
        return Instruction(self.program_id, data, self.validate_accounts(spec.accounts))

    def build(self, spec: TransactionSpec) -> Transaction:
        """
        Build an unsigned Shield transaction paid for by spec.payer.

        Args:
            spec: Shield parameters and account list

        Returns:
            Unsigned transaction; the blockhash is set when it is signed

        Raises:
            InvalidInstructionShape: The parameters or accounts are malformed
        """
        instruction = self.build_instruction(spec)
        message = Message([instruction], spec.payer.pubkey())
        logger.debug(
            f"Built shield of {spec.amount} to {spec.destination_address[:12]}... "
            f"requiring {message.header.num_required_signatures} signatures"
        )
        return Transaction.new_unsigned(message)
