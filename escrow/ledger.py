"""
Escrow Ledger

Typed views over the escrow contract's public state blob and the
shielded pool chain state.

PRINCIPLES:
===========
1. Snapshots are immutable; a new read replaces the old one wholesale
2. An absent blob is the empty ledger, a malformed one is an error
3. Record positions come from authenticated chain state, never estimates
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple
import json

from .contracts import ValueRecord, StateSource, canonical_json
from .errors import MalformedState


@dataclass(frozen=True)
class EscrowEntry:
    """One escrow held by the contract."""
    escrow_id: int
    recipient: bytes  # recipient coin public key
    record: ValueRecord
    released: bool = False

    def to_dict(self) -> dict:
        return {
            'recipient': self.recipient.hex(),
            'record': self.record.to_dict(),
            'released': self.released,
        }

    @classmethod
    def from_dict(cls, escrow_id: int, data: dict) -> 'EscrowEntry':
        return cls(
            escrow_id=escrow_id,
            recipient=bytes.fromhex(data['recipient']),
            record=ValueRecord.from_dict(data['record']),
            released=bool(data.get('released', False)),
        )


@dataclass(frozen=True)
class EscrowLedger:
    """
    Decoded public state of the escrow contract.

    INVARIANT: every escrow id is in 1..last_escrow_id
    """
    last_escrow_id: int = 0
    escrows: Tuple[EscrowEntry, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.last_escrow_id < 0:
            raise MalformedState("last_escrow_id must not be negative")
        for entry in self.escrows:
            if not 1 <= entry.escrow_id <= self.last_escrow_id:
                raise MalformedState(
                    f"Escrow id {entry.escrow_id} outside 1..{self.last_escrow_id}"
                )

    def get(self, escrow_id: int) -> Optional[EscrowEntry]:
        for entry in self.escrows:
            if entry.escrow_id == escrow_id:
                return entry
        return None

    def find(
        self,
        recipient: bytes,
        record: ValueRecord,
        after: int = 0
    ) -> Optional[EscrowEntry]:
        """
        Escrow holding exactly `record` for `recipient`, position ignored.

        Only escrows with an id above `after` are considered.
        """
        for entry in self.escrows:
            if entry.escrow_id <= after:
                continue
            if entry.recipient == recipient and entry.record.commitment() == record.commitment():
                return entry
        return None

    def with_escrow(self, recipient: bytes, record: ValueRecord) -> 'EscrowLedger':
        escrow_id = self.last_escrow_id + 1
        entry = EscrowEntry(escrow_id=escrow_id, recipient=recipient, record=record)
        return EscrowLedger(last_escrow_id=escrow_id, escrows=self.escrows + (entry,))

    def with_released(self, escrow_id: int) -> 'EscrowLedger':
        escrows = tuple(
            replace(e, released=True) if e.escrow_id == escrow_id else e
            for e in self.escrows
        )
        return replace(self, escrows=escrows)

    def encode(self) -> bytes:
        return canonical_json({
            'last_escrow_id': self.last_escrow_id,
            'escrows': {str(e.escrow_id): e.to_dict() for e in self.escrows},
        })

    @classmethod
    def decode(cls, raw: Optional[bytes]) -> 'EscrowLedger':
        if not raw:
            return cls()
        try:
            data = json.loads(raw.decode('utf-8'))
            escrows = tuple(
                EscrowEntry.from_dict(int(k), v)
                for k, v in sorted(data.get('escrows', {}).items(), key=lambda kv: int(kv[0]))
            )
            return cls(last_escrow_id=int(data['last_escrow_id']), escrows=escrows)
        except MalformedState:
            raise
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise MalformedState(f"Cannot decode contract state: {e}")


@dataclass(frozen=True)
class ShieldedChainState:
    """
    Shielded pool accumulator state.

    The commitment at position i has merkle index i; first_free is the
    next index to be assigned.
    """
    first_free: int = 0
    commitments: Tuple[str, ...] = field(default_factory=tuple)

    def index_of(self, commitment: str) -> Optional[int]:
        try:
            return self.commitments.index(commitment)
        except ValueError:
            return None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'ShieldedChainState':
        if not data:
            return cls()
        try:
            commitments = tuple(str(c) for c in data.get('commitments', []))
            first_free = int(data.get('firstFree', data.get('first_free', len(commitments))))
        except (TypeError, ValueError) as e:
            raise MalformedState(f"Cannot decode chain state: {e}")
        if first_free < len(commitments):
            raise MalformedState(
                f"firstFree {first_free} below commitment count {len(commitments)}"
            )
        return cls(first_free=first_free, commitments=commitments)

    def to_dict(self) -> dict:
        return {'firstFree': self.first_free, 'commitments': list(self.commitments)}


@dataclass(frozen=True)
class ContractStateSnapshot:
    """
    Observed public state of the escrow contract at a point in time.

    Placeholder snapshots (delegated mode, indexer not caught up) are
    always approximate.
    """
    contract_address: str
    raw: bytes
    ledger: EscrowLedger
    source: StateSource
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    block_height: Optional[int] = None

    @property
    def last_escrow_id(self) -> int:
        return self.ledger.last_escrow_id

    @property
    def approximate(self) -> bool:
        return self.source == StateSource.PLACEHOLDER

    @classmethod
    def from_raw(
        cls,
        contract_address: str,
        raw: bytes,
        block_height: Optional[int] = None
    ) -> 'ContractStateSnapshot':
        return cls(
            contract_address=contract_address,
            raw=raw,
            ledger=EscrowLedger.decode(raw),
            source=StateSource.INDEXER,
            block_height=block_height,
        )

    @classmethod
    def placeholder(cls, contract_address: str) -> 'ContractStateSnapshot':
        """Canonical empty state, used when the indexer has nothing yet."""
        ledger = EscrowLedger()
        return cls(
            contract_address=contract_address,
            raw=ledger.encode(),
            ledger=ledger,
            source=StateSource.PLACEHOLDER,
        )
