"""
Circuit Invocation

Evaluates an escrow circuit against observed contract and chain state
and produces the unproved transaction it implies.

INVARIANT: invoke() is a PURE FUNCTION
Same circuit, args, state snapshots, caller key and private state →
identical transaction body. No network I/O, no proving, no retries: a
non-deterministic result here is a bug, not a transient fault.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple
import hashlib
import os

from .contracts import TransactionStage, ValueRecord, canonical_json
from .errors import (
    CircuitError, EscrowAlreadyReleased, EscrowNotIndexed, UnknownCircuit
)
from .ledger import ContractStateSnapshot, EscrowLedger, ShieldedChainState

TX_FORMAT_VERSION = 1
EMPTY_PRIVATE_STATE = b"{}"

CREATE = "create"
RELEASE = "release"

INFLOW_SALT_LEN = 16


def inflow_nonce(contract_address: str, escrow_id: int, funding_nonce: bytes) -> bytes:
    """
    Nonce for the record an escrow locks.

    Never the funding coin's own nonce: two escrows funded from the same
    coin for the same recipient and amount must still commit differently.
    The salt keeps nonces apart when the escrow id is only an estimate.
    """
    seed = (
        b"inflow|" + contract_address.encode('utf-8')
        + b"|" + str(escrow_id).encode('ascii')
        + b"|" + funding_nonce
        + b"|" + os.urandom(INFLOW_SALT_LEN)
    )
    return hashlib.sha256(seed).digest()


@dataclass(frozen=True)
class CircuitContext:
    contract_address: str
    ledger: EscrowLedger
    chain_state: ShieldedChainState
    caller_key: bytes
    private_state: bytes


@dataclass(frozen=True)
class CircuitOutput:
    next_ledger: EscrowLedger
    new_records: Tuple[ValueRecord, ...]
    transcript: Dict[str, Any]
    result: Any = None
    next_private_state: Optional[bytes] = None


@dataclass(frozen=True)
class CircuitInvocation:
    """Everything one circuit call produced."""
    circuit_id: str
    transaction: TransactionStage
    new_records: Tuple[ValueRecord, ...]
    next_ledger: EscrowLedger
    result: Any
    next_private_state: bytes


class Circuit(ABC):
    """A state-transition function of the escrow contract."""

    circuit_id: str = ""
    arity: int = 0

    @abstractmethod
    def evaluate(self, context: CircuitContext, args: Tuple) -> CircuitOutput:
        pass


class CreateEscrowCircuit(Circuit):
    """create(recipientPublicKey, valueRecord) -> new escrow id"""

    circuit_id = CREATE
    arity = 2

    def evaluate(self, context: CircuitContext, args: Tuple) -> CircuitOutput:
        recipient, record = args
        if not isinstance(recipient, bytes) or len(recipient) != 32:
            raise CircuitError("create: recipient must be a 32-byte coin public key")
        if not isinstance(record, ValueRecord):
            raise CircuitError("create: second argument must be a ValueRecord")

        next_ledger = context.ledger.with_escrow(recipient, record)
        escrow_id = next_ledger.last_escrow_id
        return CircuitOutput(
            next_ledger=next_ledger,
            new_records=(record,),
            transcript={
                'escrowId': escrow_id,
                'recipient': recipient.hex(),
                'inflow': record.commitment(context.contract_address),
                'value': record.value,
            },
            result=escrow_id,
        )


class ReleaseEscrowCircuit(Circuit):
    """
    release(escrowId)

    The escrow's record is qualified by finding its commitment in the
    authenticated chain state. A record whose creating transaction the
    indexer has not absorbed yet cannot be qualified, and the call fails
    with EscrowNotIndexed rather than guessing a position.
    """

    circuit_id = RELEASE
    arity = 1

    def evaluate(self, context: CircuitContext, args: Tuple) -> CircuitOutput:
        (escrow_id,) = args
        if not isinstance(escrow_id, int) or escrow_id < 1:
            raise CircuitError(f"release: invalid escrow id {escrow_id!r}")

        entry = context.ledger.get(escrow_id)
        if entry is None:
            raise EscrowNotIndexed(
                escrow_id,
                f"observed contract state ends at escrow {context.ledger.last_escrow_id}",
            )
        if entry.released:
            raise EscrowAlreadyReleased(escrow_id)

        commitment = entry.record.commitment(context.contract_address)
        index = context.chain_state.index_of(commitment)
        if index is None:
            raise EscrowNotIndexed(escrow_id, "escrow record not in shielded chain state")
        qualified = entry.record.qualify(index)

        output = ValueRecord(
            nonce=self._output_nonce(context.contract_address, escrow_id, qualified),
            color=qualified.color,
            value=qualified.value,
        )
        return CircuitOutput(
            next_ledger=context.ledger.with_released(escrow_id),
            new_records=(output,),
            transcript={
                'escrowId': escrow_id,
                'spent': {'commitment': commitment, 'mtIndex': index},
                'recipient': entry.recipient.hex(),
                'output': output.commitment(entry.recipient.hex()),
            },
            result=qualified,
        )

    @staticmethod
    def _output_nonce(contract_address: str, escrow_id: int, record: ValueRecord) -> bytes:
        seed = (
            b"release|" + contract_address.encode('utf-8')
            + b"|" + str(escrow_id).encode('ascii')
            + b"|" + record.nonce
        )
        return hashlib.sha256(seed).digest()


ESCROW_CIRCUITS = (CreateEscrowCircuit(), ReleaseEscrowCircuit())


class CircuitInvocationBuilder:
    """
    GUARANTEES:
    ===========
    1. Same inputs → same transaction body and tx_id
    2. Inputs are never mutated
    3. Unknown circuits and bad arguments fail before anything is built
    """

    def __init__(self, contract_address: str, circuits: Iterable[Circuit] = ESCROW_CIRCUITS):
        self._contract_address = contract_address
        self._circuits = {c.circuit_id: c for c in circuits}

    @property
    def circuit_ids(self) -> Tuple[str, ...]:
        return tuple(sorted(self._circuits))

    def invoke(
        self,
        circuit_id: str,
        args: Tuple,
        contract_state: ContractStateSnapshot,
        chain_state: ShieldedChainState,
        caller_key: bytes,
        private_state: bytes = EMPTY_PRIVATE_STATE
    ) -> CircuitInvocation:
        circuit = self._circuits.get(circuit_id)
        if circuit is None:
            raise UnknownCircuit(circuit_id)
        args = tuple(args)
        if len(args) != circuit.arity:
            raise CircuitError(
                f"{circuit_id}: expected {circuit.arity} arguments, got {len(args)}"
            )

        context = CircuitContext(
            contract_address=self._contract_address,
            ledger=contract_state.ledger,
            chain_state=chain_state,
            caller_key=caller_key,
            private_state=private_state,
        )
        output = circuit.evaluate(context, args)

        body = canonical_json({
            'version': TX_FORMAT_VERSION,
            'contract': self._contract_address,
            'circuit': circuit_id,
            'caller': caller_key.hex(),
            'stateBefore': hashlib.sha256(contract_state.ledger.encode()).hexdigest(),
            'stateAfter': hashlib.sha256(output.next_ledger.encode()).hexdigest(),
            'transcript': output.transcript,
            'newCoins': [r.to_dict() for r in output.new_records],
        })
        next_private = (
            output.next_private_state
            if output.next_private_state is not None else private_state
        )
        return CircuitInvocation(
            circuit_id=circuit_id,
            transaction=TransactionStage.unproved(body, (circuit_id,), output.new_records),
            new_records=output.new_records,
            next_ledger=output.next_ledger,
            result=output.result,
            next_private_state=next_private,
        )
