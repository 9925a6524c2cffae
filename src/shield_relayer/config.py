"""Configuration management for the Shield Relayer.

This module provides type-safe configuration dataclasses with validation
for the relayer. Configuration is loaded from environment variables once at
startup, with the devnet bridge deployment as the default.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import ClassVar
from urllib.parse import urlparse

from solana.rpc.commitment import Commitment, Finalized
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .errors import ConfigurationError

# Get logger for this module
logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://api.devnet.solana.com"
DEFAULT_PROGRAM_ID = "BKGhwbiTHdUxcuWzZtDWyioRBieDEXTtgEk8u1zskZnk"
DEFAULT_INCOGNITO_PROXY = "8WUP1RGTDTZGYBjkHQfjnwMbnnk25hnE6Du7vFpaq1QK"


def _convert_to_websocket_url(http_url: str) -> str:
    """Convert an HTTP RPC URL to its WebSocket counterpart."""
    if http_url.startswith("https://"):
        return http_url.replace("https://", "wss://", 1)
    if http_url.startswith("http://"):
        return http_url.replace("http://", "ws://", 1)
    return http_url


def _parse_pubkey(value: str, name: str) -> Pubkey:
    if not value:
        raise ConfigurationError(f"{name} is required")
    try:
        return Pubkey.from_string(value)
    except ValueError:
        raise ConfigurationError(f"Invalid {name}: {value!r} is not a base58 public key") from None


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for the Solana cluster.

    Attributes:
        rpc_url: HTTP(S) JSON-RPC endpoint used for submissions
        ws_url: WebSocket endpoint used for the log subscription
        commitment: Commitment level for subscriptions and blockhashes
    """

    rpc_url: str = DEFAULT_RPC_URL
    ws_url: str = ""
    commitment: Commitment = Finalized

    # Earlier commitment levels can report logs that are later rolled back
    REQUIRED_COMMITMENT: ClassVar[Commitment] = Finalized

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https'):
            raise ConfigurationError(
                f"Invalid RPC URL scheme: {parsed.scheme}. Expected http or https"
            )

        if not self.ws_url:
            object.__setattr__(self, 'ws_url', _convert_to_websocket_url(self.rpc_url))

        if urlparse(self.ws_url).scheme not in ('ws', 'wss'):
            raise ConfigurationError(
                f"Invalid WebSocket URL: {self.ws_url}. Expected ws or wss"
            )

        if self.commitment != self.REQUIRED_COMMITMENT:
            raise ConfigurationError(
                f"Unsupported commitment {self.commitment!r}: "
                f"shield events are only relayed at {self.REQUIRED_COMMITMENT!r}"
            )


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Identity of the bridge program and its trusted Incognito proxy."""

    program_id: str = DEFAULT_PROGRAM_ID
    trusted_proxy: str = DEFAULT_INCOGNITO_PROXY

    def __post_init__(self) -> None:
        _parse_pubkey(self.program_id, "bridge program id (BRIDGE_PROGRAM_ID)")
        _parse_pubkey(self.trusted_proxy, "incognito proxy (INCOGNITO_PROXY)")

    @property
    def program_pubkey(self) -> Pubkey:
        return Pubkey.from_string(self.program_id)

    @property
    def proxy_pubkey(self) -> Pubkey:
        return Pubkey.from_string(self.trusted_proxy)


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for the subscription loop and delivery."""
    reconnect_base_delay: float = 1.0  # seconds
    reconnect_max_delay: float = 60.0  # seconds
    max_reconnect_attempts: int | None = None  # None retries forever
    status_interval: int = 30  # seconds between status log lines
    dedup_db_path: str | None = None  # in-memory dedup when unset
    sink_url: str | None = None  # log-only sink when unset

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.reconnect_base_delay <= 0:
            raise ConfigurationError(
                f"Reconnect base delay must be positive, got {self.reconnect_base_delay}"
            )
        if self.reconnect_max_delay < self.reconnect_base_delay:
            raise ConfigurationError(
                f"Reconnect max delay ({self.reconnect_max_delay}) must not be "
                f"below the base delay ({self.reconnect_base_delay})"
            )
        if self.max_reconnect_attempts is not None and self.max_reconnect_attempts < 1:
            raise ConfigurationError(
                f"Max reconnect attempts must be at least 1, got {self.max_reconnect_attempts}"
            )
        if self.status_interval <= 0:
            raise ConfigurationError(f"Status interval must be positive, got {self.status_interval}")
        if self.sink_url and urlparse(self.sink_url).scheme not in ('http', 'https'):
            raise ConfigurationError(f"Invalid sink URL: {self.sink_url}")


@dataclass(frozen=True, slots=True)
class RelayerConfig:
    """Main configuration for the Shield Relayer.

    Attributes:
        chain: Solana cluster endpoints and commitment
        bridge: Bridge program and trusted proxy identity
        monitoring: Subscription loop and delivery settings
    """

    chain: ChainConfig = field(default_factory=ChainConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def from_env(cls) -> "RelayerConfig":
        """Load configuration from environment variables.

        Returns:
            RelayerConfig instance with loaded values

        Raises:
            ConfigurationError: If environment variables are invalid
        """
        chain = ChainConfig(
            rpc_url=os.environ.get("SOLANA_RPC_URL", DEFAULT_RPC_URL),
            ws_url=os.environ.get("SOLANA_WS_URL", ""),
            commitment=Commitment(os.environ.get("COMMITMENT", Finalized)),
        )

        bridge = BridgeConfig(
            program_id=os.environ.get("BRIDGE_PROGRAM_ID", DEFAULT_PROGRAM_ID),
            trusted_proxy=os.environ.get("INCOGNITO_PROXY", DEFAULT_INCOGNITO_PROXY),
        )

        try:
            base_delay = float(os.environ.get("RECONNECT_BASE_DELAY", "1"))
            max_delay = float(os.environ.get("RECONNECT_MAX_DELAY", "60"))
            max_attempts = os.environ.get("MAX_RECONNECT_ATTEMPTS")
            max_attempts = int(max_attempts) if max_attempts else None
            status_interval = int(os.environ.get("STATUS_INTERVAL", "30"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric monitoring setting: {e}") from None

        monitoring = MonitoringConfig(
            reconnect_base_delay=base_delay,
            reconnect_max_delay=max_delay,
            max_reconnect_attempts=max_attempts,
            status_interval=status_interval,
            dedup_db_path=os.environ.get("DEDUP_DB_PATH") or None,
            sink_url=os.environ.get("SINK_URL") or None,
        )

        return cls(chain=chain, bridge=bridge, monitoring=monitoring)

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Shield Relayer Configuration")
        logger.info("=" * 60)

        logger.info("Chain:")
        logger.info(f"  RPC URL: {self.chain.rpc_url}")
        logger.info(f"  WebSocket URL: {self.chain.ws_url}")
        logger.info(f"  Commitment: {self.chain.commitment}")

        logger.info("Bridge:")
        logger.info(f"  Program ID: {self.bridge.program_id}")
        logger.info(f"  Incognito Proxy: {self.bridge.trusted_proxy}")

        logger.info("Monitoring Settings:")
        logger.info(
            f"  Reconnect Delay: {self.monitoring.reconnect_base_delay}s "
            f"(max {self.monitoring.reconnect_max_delay}s)"
        )
        attempts = self.monitoring.max_reconnect_attempts
        logger.info(f"  Max Reconnect Attempts: {attempts if attempts else 'unlimited'}")
        logger.info(f"  Dedup Store: {self.monitoring.dedup_db_path or '[IN-MEMORY]'}")
        logger.info(f"  Sink: {'[HTTP]' if self.monitoring.sink_url else '[LOG ONLY]'}")

        logger.info("=" * 60)


def load_keypair_from_env(name: str) -> Keypair:
    """Load a base58-encoded keypair from the named environment variable.

    Raises:
        ConfigurationError: If the variable is missing or not a valid keypair
    """
    secret = os.environ.get(name)
    if not secret:
        raise ConfigurationError(f"{name} environment variable is required")
    try:
        return Keypair.from_base58_string(secret)
    except ValueError:
        raise ConfigurationError(f"{name} is not a valid base58 keypair") from None
