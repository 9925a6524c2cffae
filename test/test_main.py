"""Unit tests for the command line entry point."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.sysvar import RENT
from spl.token.constants import TOKEN_PROGRAM_ID

import main
from shield_relayer.config import BridgeConfig, RelayerConfig
from shield_relayer.errors import ConfigurationError
from shield_relayer.tx_builder import encode_shield_data

PROXY = "8WUP1RGTDTZGYBjkHQfjnwMbnnk25hnE6Du7vFpaq1QK"
PROGRAM_ID = "BKGhwbiTHdUxcuWzZtDWyioRBieDEXTtgEk8u1zskZnk"
DESTINATION = "12shR6fDe7ZcprYn6rjLwiLc"


@pytest.fixture
def config():
    return RelayerConfig(bridge=BridgeConfig(program_id=PROGRAM_ID, trusted_proxy=PROXY))


@pytest.fixture
def keypairs(monkeypatch):
    """Fee payer and shield maker keypairs exposed through the environment."""
    fee_payer, shield_maker = Keypair(), Keypair()
    monkeypatch.setenv("FEE_PAYER_KEY", str(fee_payer))
    monkeypatch.setenv("SHIELD_MAKER_KEY", str(shield_maker))
    return fee_payer, shield_maker


@pytest.fixture
def rpc_client():
    """Patch AsyncClient in main with a mock returning a blockhash and a signature."""
    client = MagicMock()
    client.get_latest_blockhash = AsyncMock(return_value=MagicMock(value=MagicMock(blockhash=Hash.new_unique())))
    client.send_transaction = AsyncMock(return_value=MagicMock(value=Signature.new_unique()))
    client_cls = MagicMock()
    client_cls.return_value.__aenter__.return_value = client
    with patch.object(main, "AsyncClient", client_cls):
        yield client


def shield_args(maker_token_account: str, vault_token_account: str, amount: int = 100000):
    return main.build_parser().parse_args([
        "shield",
        "--amount", str(amount),
        "--destination", DESTINATION,
        "--maker-token-account", maker_token_account,
        "--vault-token-account", vault_token_account,
    ])


class TestShieldCommand:
    """Test suite for the shield subcommand."""

    @pytest.mark.asyncio
    async def test_submits_accounts_in_program_order(self, config, keypairs, rpc_client):
        """Test the command hands the bridge account list to the builder in order."""
        fee_payer, shield_maker = keypairs
        maker_token, vault_token = Pubkey.new_unique(), Pubkey.new_unique()

        signature = await main.shield(config, shield_args(str(maker_token), str(vault_token)))

        assert signature == str(rpc_client.send_transaction.return_value.value)
        sent = rpc_client.send_transaction.call_args[0][0]
        message = sent.message
        instruction = message.instructions[0]
        ordered = [message.account_keys[index] for index in bytes(instruction.accounts)]

        assert ordered == [
            shield_maker.pubkey(),
            maker_token,
            vault_token,
            RENT,
            Pubkey.from_string(PROXY),
            TOKEN_PROGRAM_ID,
        ]
        assert message.account_keys[0] == fee_payer.pubkey()
        assert message.account_keys[instruction.program_id_index] == Pubkey.from_string(PROGRAM_ID)
        assert bytes(instruction.data) == encode_shield_data(100000, DESTINATION)
        sent.verify()

    @pytest.mark.asyncio
    async def test_invalid_token_account(self, config, keypairs, rpc_client):
        with pytest.raises(ConfigurationError, match="token accounts"):
            await main.shield(config, shield_args("not-a-key", str(Pubkey.new_unique())))

        rpc_client.send_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_maker_key(self, config, keypairs, rpc_client, monkeypatch):
        monkeypatch.delenv("SHIELD_MAKER_KEY")

        with pytest.raises(ConfigurationError, match="SHIELD_MAKER_KEY"):
            await main.shield(config, shield_args(str(Pubkey.new_unique()), str(Pubkey.new_unique())))

        rpc_client.send_transaction.assert_not_called()


class TestBuildParser:
    def test_listen_command(self):
        args = main.build_parser().parse_args(["--log-level", "DEBUG", "listen"])

        assert args.command == "listen"
        assert args.log_level == "DEBUG"

    def test_shield_requires_amount(self):
        with pytest.raises(SystemExit):
            main.build_parser().parse_args(["shield", "--destination", DESTINATION])
