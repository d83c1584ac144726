"""
Escrow Contracts

Immutable data structures flowing through the escrow pipeline.

BOUNDARY: every component speaks these types.
Service-specific shapes are mapped into them once, at the wallet session
and service client boundaries, and never inspected again downstream.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple
from datetime import datetime, timezone
from enum import Enum
import hashlib
import json
import uuid

from .errors import EscrowError, EscrowErrorCode, StageOrderError


# =============================================================================
# ENUMS
# =============================================================================

class WalletMode(Enum):
    """Who holds the keys. Fixed for the lifetime of a session."""
    LOCAL = "local"          # seed held here, custody daemon started from it
    DELEGATED = "delegated"  # browser-resident signer reached through a bridge


class StageKind(Enum):
    """Transaction stages, in the only order they may be visited."""
    UNPROVED = 1
    BALANCED = 2
    PROVED = 3
    SUBMITTED = 4
    CONFIRMED = 5


class StateSource(Enum):
    """Where a contract state snapshot came from."""
    INDEXER = "indexer"
    PLACEHOLDER = "placeholder"


class TransactionStatus(Enum):
    """Indexer view of a submitted transaction."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    UNKNOWN = "unknown"  # not yet indexed - a legitimate answer


class IntentKind(Enum):
    CREATE = "create"
    RELEASE = "release"


# =============================================================================
# VALUE RECORDS
# =============================================================================

NATIVE_COLOR = bytes(32)  # zero-valued type tag of the native token

# Wire type tags are 35 bytes: 2-byte prefix, 32-byte color, 1 trailing byte
_WIRE_TYPE_LEN = 35


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ValueRecord:
    """
    A spendable unit of shielded value (a coin).

    INVARIANTS:
    - nonce and color are exactly 32 bytes
    - value > 0
    - merkle_index is None until the record is confirmed on-chain
    """
    nonce: bytes
    color: bytes
    value: int
    merkle_index: Optional[int] = None

    def __post_init__(self):
        if len(self.nonce) != 32:
            raise ValueError(f"nonce must be 32 bytes, got {len(self.nonce)}")
        if len(self.color) != 32:
            raise ValueError(f"color must be 32 bytes, got {len(self.color)}")
        if self.value <= 0:
            raise ValueError(f"value must be positive, got {self.value}")
        if self.merkle_index is not None and self.merkle_index < 0:
            raise ValueError("merkle_index must be non-negative")

    @property
    def is_native(self) -> bool:
        return self.color == NATIVE_COLOR

    @property
    def is_qualified(self) -> bool:
        return self.merkle_index is not None

    def qualify(self, merkle_index: int) -> 'ValueRecord':
        """Attach the finalized position needed to spend this record."""
        return replace(self, merkle_index=merkle_index)

    def commitment(self, owner: str = "") -> str:
        """
        Stable commitment over the record contents and its owner.

        The position is not part of the commitment; that is what lets a
        commitment be looked up in chain state to find the position.
        """
        content = (
            self.nonce
            + self.color
            + self.value.to_bytes(16, 'big')
            + owner.encode('utf-8')
        )
        return hashlib.sha256(content).hexdigest()

    def to_dict(self) -> dict:
        data = {
            'nonce': self.nonce.hex(),
            'color': self.color.hex(),
            'value': self.value,
        }
        if self.merkle_index is not None:
            data['mt_index'] = self.merkle_index
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'ValueRecord':
        """
        Build from a service payload.

        Accepts either `color` (32-byte hex) or the custody service's
        `type` (35-byte token type, color sits at bytes 2..34).
        """
        if 'color' in data:
            color = bytes.fromhex(data['color'])
        else:
            type_bytes = bytes.fromhex(data['type'])
            color = type_bytes[2:34] if len(type_bytes) == _WIRE_TYPE_LEN else type_bytes
        index = data.get('mt_index', data.get('merkle_index'))
        return cls(
            nonce=bytes.fromhex(data['nonce']),
            color=color,
            value=int(data['value']),
            merkle_index=int(index) if index is not None else None,
        )


# =============================================================================
# TRANSACTION STAGES
# =============================================================================

@dataclass(frozen=True)
class TransactionStage:
    """
    One transaction as it moves through the pipeline.

    GUARANTEES:
    ===========
    1. Strictly forward-moving: advance() only accepts the next stage
    2. No stage is re-entered; history lists every stage visited
    3. tx_id is fixed at construction (hash of the unproved body)
    """
    kind: StageKind
    tx_id: str
    body: bytes
    circuit_ids: Tuple[str, ...]
    new_records: Tuple[ValueRecord, ...] = field(default_factory=tuple)
    history: Tuple[StageKind, ...] = field(default_factory=tuple)

    @classmethod
    def unproved(
        cls,
        body: bytes,
        circuit_ids: Tuple[str, ...],
        new_records: Tuple[ValueRecord, ...] = ()
    ) -> 'TransactionStage':
        return cls(
            kind=StageKind.UNPROVED,
            tx_id=hashlib.sha256(body).hexdigest(),
            body=body,
            circuit_ids=tuple(circuit_ids),
            new_records=tuple(new_records),
            history=(StageKind.UNPROVED,),
        )

    def require(self, kind: StageKind):
        if self.kind != kind:
            raise StageOrderError(
                f"Transaction {self.tx_id[:12]} is {self.kind.name}, expected {kind.name}"
            )

    def advance(self, kind: StageKind, body: Optional[bytes] = None) -> 'TransactionStage':
        """Move to the immediate successor stage, optionally replacing the body."""
        if kind.value != self.kind.value + 1:
            raise StageOrderError(
                f"Illegal transition {self.kind.name} -> {kind.name}"
            )
        return replace(
            self,
            kind=kind,
            body=self.body if body is None else body,
            history=self.history + (kind,),
        )


@dataclass(frozen=True)
class SubmissionReceipt:
    tx_id: str
    receipt_id: str
    submitted_at: datetime


@dataclass(frozen=True)
class PipelineOutcome:
    """Result of one balance -> prove -> submit run."""
    transaction: TransactionStage
    receipt: SubmissionReceipt
    proof_seconds: float
    elapsed_seconds: float


# =============================================================================
# SESSION VIEWS
# =============================================================================

@dataclass(frozen=True)
class SessionState:
    """
    Custody-side view of a session.

    `records` is None in delegated mode: the signer does not expose its
    spendable records.
    """
    address: str
    coin_public_key: bytes
    encryption_public_key: str
    balances: Dict[str, int]
    records: Optional[Tuple[ValueRecord, ...]] = None
    synced: bool = True

    @property
    def native_balance(self) -> int:
        return self.balances.get(NATIVE_COLOR.hex(), 0)


@dataclass(frozen=True)
class WalletBalance:
    amount: int
    address: str


@dataclass(frozen=True)
class EscrowStateView:
    """
    Read-only view of the contract's escrow counter.

    approximate=True means this is an estimate (indexer lag, fallback
    default, or held at the high-water mark), never ground truth.
    """
    contract_address: str
    last_escrow_id: int
    approximate: bool
    observed_at: datetime = field(default_factory=_utcnow)


# =============================================================================
# INTENTS
# =============================================================================

@dataclass(frozen=True)
class EscrowIntent:
    """
    A pending user request. Immutable; consumed exactly once.
    """
    intent_id: str
    kind: IntentKind
    recipient_address: Optional[str] = None
    amount: Optional[int] = None
    escrow_id: Optional[int] = None

    def __post_init__(self):
        if self.kind == IntentKind.CREATE:
            if not self.recipient_address or self.amount is None:
                raise ValueError("create intent needs recipient_address and amount")
            if self.escrow_id is not None:
                raise ValueError("create intent takes no escrow_id")
        else:
            if self.escrow_id is None:
                raise ValueError("release intent needs escrow_id")
            if self.recipient_address is not None or self.amount is not None:
                raise ValueError("release intent takes only escrow_id")

    @classmethod
    def create(cls, recipient_address: str, amount: int) -> 'EscrowIntent':
        return cls(
            intent_id=uuid.uuid4().hex,
            kind=IntentKind.CREATE,
            recipient_address=recipient_address,
            amount=amount,
        )

    @classmethod
    def release(cls, escrow_id: int) -> 'EscrowIntent':
        return cls(intent_id=uuid.uuid4().hex, kind=IntentKind.RELEASE, escrow_id=escrow_id)


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class EscrowFailure:
    """
    User-facing failure. Built only by the orchestrator.
    """
    code: EscrowErrorCode
    message: str
    retryable: bool
    occurred_at: datetime = field(default_factory=_utcnow)
    reason: Optional[str] = None  # node-supplied rejection text

    @classmethod
    def from_error(cls, error: EscrowError) -> 'EscrowFailure':
        return cls(
            code=error.code,
            message=error.message,
            retryable=error.retryable,
            reason=getattr(error, 'reason', None),
        )


@dataclass(frozen=True)
class CreateEscrowResult:
    """
    INVARIANT: Either (success=True, escrow_id set) or (success=False, error set)
    """
    success: bool
    escrow_id: Optional[int] = None
    proof_seconds: float = 0.0
    elapsed_seconds: float = 0.0
    approximate: bool = True
    tx_id: Optional[str] = None
    selected_record: Optional[ValueRecord] = None
    error: Optional[EscrowFailure] = None

    def __post_init__(self):
        if self.success and self.escrow_id is None:
            raise ValueError("Successful create must carry an escrow_id")
        if not self.success and self.error is None:
            raise ValueError("Failed create must carry an error")

    @classmethod
    def failure(cls, error: EscrowFailure) -> 'CreateEscrowResult':
        return cls(success=False, error=error)


@dataclass(frozen=True)
class ReleaseEscrowResult:
    """
    INVARIANT: Either (success=True, tx_id set) or (success=False, error set)
    """
    success: bool
    escrow_id: int
    proof_seconds: float = 0.0
    elapsed_seconds: float = 0.0
    tx_id: Optional[str] = None
    error: Optional[EscrowFailure] = None

    def __post_init__(self):
        if self.success and self.tx_id is None:
            raise ValueError("Successful release must carry a tx_id")
        if not self.success and self.error is None:
            raise ValueError("Failed release must carry an error")

    @classmethod
    def failure(cls, escrow_id: int, error: EscrowFailure) -> 'ReleaseEscrowResult':
        return cls(success=False, escrow_id=escrow_id, error=error)


def canonical_json(data) -> bytes:
    """Canonical JSON bytes: sorted keys, no whitespace."""
    return json.dumps(data, sort_keys=True, separators=(',', ':')).encode('utf-8')
