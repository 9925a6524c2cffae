"""
Shield Relayer package.

Relays Shield events from the Solana bridge program to the Incognito minting
side, and originates Shield transactions.
"""

from .config import RelayerConfig
from .dedup import DedupTracker
from .event_codec import EventCodec
from .log_validator import LogValidator
from .models import RawLogBatch, ShieldEvent, TransactionSpec
from .relayer import ShieldRelayer
from .submitter import Submitter
from .tx_builder import TxBuilder

__all__ = [
    "RelayerConfig",
    "ShieldRelayer",
    "EventCodec",
    "LogValidator",
    "DedupTracker",
    "TxBuilder",
    "Submitter",
    "ShieldEvent",
    "RawLogBatch",
    "TransactionSpec",
]
__version__ = "0.1.0"
