"""
Shielded Escrow Package

ARCHITECTURAL BOUNDARY:
=======================
The orchestrator is the ONLY component that sees an operation end to end.
Everything below it raises typed errors; only it builds user-facing results.

DIRECTION OF DEPENDENCY:
========================
connect → orchestrator → (coins, state_reader, circuits, wallet) → services

DESIGN PRINCIPLES:
==================
1. One wallet mode per session, chosen only in connect
2. Configuration threaded explicitly, never global
3. Transaction stages only move forward
4. Indexer answers are advisory; unconfirmed ids are approximate
"""

__version__ = "0.1.0"

from .errors import (
    EscrowError,
    EscrowErrorCode,
    InvalidAddress,
    InsufficientBalance,
    IncompatibleSigner,
    SignerNotEnabled,
    IndexerUnavailable,
    ProofTimeout,
    SubmissionRejected,
    OperationInProgress,
    WalletNotSynced,
    ServiceUnavailable,
    EscrowNotIndexed,
    EscrowAlreadyReleased,
    MalformedState,
    CircuitError,
    UnknownCircuit,
    UnsupportedCapability,
    IntentAlreadyConsumed,
    SessionAlreadyClaimed,
    ConfigError,
)

from .contracts import (
    ValueRecord,
    TransactionStage,
    StageKind,
    WalletMode,
    EscrowIntent,
    EscrowFailure,
    EscrowStateView,
    WalletBalance,
    CreateEscrowResult,
    ReleaseEscrowResult,
)

from .config import EscrowConfig, NetworkId
from .address import ShieldedAddress, parse_shielded_address, encode_shielded_address
from .orchestrator import EscrowOrchestrator, OperationTrace
from .connect import connect_local, connect_delegated
from .private_state import PrivateStateStore
