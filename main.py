#!/usr/bin/env python3
"""Entry point for the Shield Relayer.

``listen`` relays Shield events from the bridge program logs until
interrupted. ``shield`` builds, signs and submits a single Shield transaction.
"""

import argparse
import asyncio
import logging
import os
import sys


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# Get logger for this module
logger = logging.getLogger(__name__)

from dotenv import load_dotenv
from solana.rpc.async_api import AsyncClient
from solders.pubkey import Pubkey
from solders.sysvar import RENT
from spl.token.constants import TOKEN_PROGRAM_ID

from shield_relayer.config import RelayerConfig, load_keypair_from_env
from shield_relayer.errors import ConfigurationError, OriginationError, TransportError
from shield_relayer.models import AccountRef, TransactionSpec
from shield_relayer.relayer import ShieldRelayer
from shield_relayer.submitter import Submitter
from shield_relayer.tx_builder import TxBuilder


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Shield Relayer - relay Solana bridge Shield events to Incognito",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  SOLANA_RPC_URL        - JSON-RPC endpoint (default: devnet)
  SOLANA_WS_URL         - WebSocket endpoint (default: derived from SOLANA_RPC_URL)
  BRIDGE_PROGRAM_ID     - Bridge program address
  INCOGNITO_PROXY       - Trusted incognito proxy address
  DEDUP_DB_PATH         - SQLite file for processed transactions (optional)
  SINK_URL              - Minting service endpoint (optional, logs only when unset)
  FEE_PAYER_KEY         - Base58 fee payer keypair (shield command)
  SHIELD_MAKER_KEY      - Base58 shield maker keypair (shield command)
  LOG_LEVEL             - Logging level (can be overridden with --log-level)

Variables are also read from a .env file in the working directory.
        """
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("listen", help="Relay Shield events until interrupted")

    shield = subparsers.add_parser("shield", help="Submit one Shield transaction")
    shield.add_argument("--amount", type=int, required=True, help="Amount in base units")
    shield.add_argument("--destination", required=True, help="Incognito destination address")
    shield.add_argument("--maker-token-account", required=True, help="Shield maker's token account")
    shield.add_argument("--vault-token-account", required=True, help="Bridge vault token account")
    return parser


async def listen(config: RelayerConfig) -> None:
    relayer = ShieldRelayer(config)
    try:
        await relayer.run()
    except asyncio.CancelledError:
        relayer.stop()
        raise


async def shield(config: RelayerConfig, args: argparse.Namespace) -> str:
    fee_payer = load_keypair_from_env("FEE_PAYER_KEY")
    shield_maker = load_keypair_from_env("SHIELD_MAKER_KEY")

    try:
        maker_token_account = Pubkey.from_string(args.maker_token_account)
        vault_token_account = Pubkey.from_string(args.vault_token_account)
    except ValueError:
        raise ConfigurationError("token accounts must be base58 public keys") from None

    spec = TransactionSpec(
        payer=fee_payer,
        additional_signers=(shield_maker,),
        accounts=(
            AccountRef(shield_maker.pubkey(), is_signer=True),
            AccountRef(maker_token_account, is_writable=True),
            AccountRef(vault_token_account, is_writable=True),
            AccountRef(RENT),
            AccountRef(config.bridge.proxy_pubkey),
            AccountRef(TOKEN_PROGRAM_ID),
        ),
        amount=args.amount,
        destination_address=args.destination,
    )

    tx = TxBuilder(config.bridge.program_pubkey).build(spec)
    async with AsyncClient(config.chain.rpc_url) as client:
        return await Submitter(client, config.chain.commitment).sign_and_send(tx, spec.signers)


async def main() -> None:
    """Main entry point for the Shield Relayer.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    load_dotenv()
    args: argparse.Namespace = build_parser().parse_args()
    setup_logging(args.log_level)

    logger.info(f"=== Shield Relayer Starting ({args.command}) ===")

    try:
        config: RelayerConfig = RelayerConfig.from_env()
        config.log_config()

        if args.command == "listen":
            await listen(config)
        else:
            signature = await shield(config, args)
            logger.info(f"Shield transaction signature: {signature}")

    except ConfigurationError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - SOLANA_RPC_URL: JSON-RPC endpoint of the cluster")
        logger.error("  - BRIDGE_PROGRAM_ID: Bridge program address")
        logger.error("  - INCOGNITO_PROXY: Trusted incognito proxy address")
        if args.command == "shield":
            logger.error("  - FEE_PAYER_KEY / SHIELD_MAKER_KEY: Base58 keypairs")
        sys.exit(1)

    except (OriginationError, TransportError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
        sys.exit(0)
