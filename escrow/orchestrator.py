"""
Escrow Orchestrator

The only component with end-to-end visibility of an escrow operation:

    intent -> record selection -> execution state read -> circuit call
           -> balance -> prove -> submit -> advisory confirmation read

GUARANTEES:
===========
1. Single-flight: at most one create/release in flight; a concurrent
   call is refused with OPERATION_IN_PROGRESS and the running call is
   left alone
2. Typed errors become EscrowFailure results here and nowhere else
3. Every create/release call leaves an OperationTrace
4. Escrow ids are exact only when confirmed; otherwise approximate
5. Intents are consumed exactly once
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Set, Tuple, Union
import asyncio
import hashlib
import logging
import time

from .address import parse_shielded_address
from .circuits import CREATE, RELEASE, CircuitInvocationBuilder, inflow_nonce
from .coins import CoinSelector
from .config import EscrowConfig
from .contracts import (
    CreateEscrowResult, EscrowFailure, EscrowIntent, EscrowStateView,
    IntentKind, ReleaseEscrowResult, StageKind, TransactionStage,
    TransactionStatus, ValueRecord, WalletBalance, WalletMode
)
from .errors import (
    CircuitError, EscrowError, EscrowErrorCode, EscrowNotIndexed,
    IntentAlreadyConsumed, OperationInProgress
)
from .ledger import ShieldedChainState
from .private_state import PrivateStateStore
from .state_reader import ContractStateReader
from .wallet.base import WalletSession

logger = logging.getLogger(__name__)

EscrowResult = Union[CreateEscrowResult, ReleaseEscrowResult]


# =============================================================================
# TRACES
# =============================================================================

@dataclass(frozen=True)
class OperationTrace:
    """
    Audit record of one create/release call.

    `stages` lists every transaction stage the call reached, in order.
    """
    trace_id: str
    operation: str
    started_at: datetime
    completed_at: datetime
    success: bool
    stages: Tuple[StageKind, ...] = ()
    tx_id: Optional[str] = None
    error_code: Optional[EscrowErrorCode] = None
    proof_seconds: float = 0.0

    def duration_ms(self) -> float:
        return (self.completed_at - self.started_at).total_seconds() * 1000


@dataclass
class _TraceRecorder:
    operation: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    stages: List[StageKind] = field(default_factory=list)

    def stage(self, tx: TransactionStage):
        self.stages.append(tx.kind)
        logger.info("%s: transaction %s -> %s", self.operation, tx.tx_id[:12], tx.kind.name)

    def finish(self, result: EscrowResult) -> OperationTrace:
        completed_at = datetime.now(timezone.utc)
        digest = hashlib.sha256(
            f"{self.operation}|{self.started_at.isoformat()}".encode()
        ).hexdigest()
        return OperationTrace(
            trace_id=f"op_{digest[:12]}",
            operation=self.operation,
            started_at=self.started_at,
            completed_at=completed_at,
            success=result.success,
            stages=tuple(self.stages),
            tx_id=result.tx_id,
            error_code=result.error.code if result.error else None,
            proof_seconds=result.proof_seconds,
        )


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class EscrowOrchestrator:
    """
    Drives escrow operations over one wallet session.

    Built by connect_local / connect_delegated; the session, selector,
    state reader policy and private state id already reflect the mode.
    """

    def __init__(
        self,
        config: EscrowConfig,
        session: WalletSession,
        selector: CoinSelector,
        reader: ContractStateReader,
        store: PrivateStateStore,
        private_state_id: str,
        builder: Optional[CircuitInvocationBuilder] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        session.claim()
        self._config = config
        self._session = session
        self._selector = selector
        self._reader = reader
        self._store = store
        self._private_state_id = private_state_id
        self._builder = builder or CircuitInvocationBuilder(config.contract_address)
        self._sleep = sleep

        self._running: Optional[str] = None
        self._consumed: Set[str] = set()
        self._traces: List[OperationTrace] = []

    @property
    def config(self) -> EscrowConfig:
        return self._config

    @property
    def mode(self) -> WalletMode:
        return self._session.mode

    @property
    def session(self) -> WalletSession:
        return self._session

    @property
    def in_flight(self) -> Optional[str]:
        return self._running

    # =========================================================================
    # READ-ONLY
    # =========================================================================

    async def escrow_state(self) -> EscrowStateView:
        """Never fails; degraded reads come back approximate."""
        return await self._reader.read_view(self._config.contract_address)

    async def balance(self) -> WalletBalance:
        return await self._session.read_balance()

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def create_escrow(self, recipient_address: str, amount: int) -> CreateEscrowResult:
        trace = _TraceRecorder('create')
        busy = self._busy()
        if busy is not None:
            return self._record(trace, CreateEscrowResult.failure(busy))

        self._running = f"create({amount})"
        try:
            result = await self._create(recipient_address, amount, trace)
        except EscrowError as e:
            logger.warning("create_escrow failed: %s", e.message)
            result = CreateEscrowResult.failure(EscrowFailure.from_error(e))
        except Exception as e:
            logger.exception("create_escrow failed unexpectedly")
            result = CreateEscrowResult.failure(self._internal(e))
        finally:
            self._running = None
        return self._record(trace, result)

    async def release_escrow(self, escrow_id: int) -> ReleaseEscrowResult:
        trace = _TraceRecorder('release')
        busy = self._busy()
        if busy is not None:
            return self._record(trace, ReleaseEscrowResult.failure(escrow_id, busy))

        self._running = f"release({escrow_id})"
        try:
            result = await self._release(escrow_id, trace)
        except EscrowError as e:
            logger.warning("release_escrow(%s) failed: %s", escrow_id, e.message)
            result = ReleaseEscrowResult.failure(escrow_id, EscrowFailure.from_error(e))
        except Exception as e:
            logger.exception("release_escrow(%s) failed unexpectedly", escrow_id)
            result = ReleaseEscrowResult.failure(escrow_id, self._internal(e))
        finally:
            self._running = None
        return self._record(trace, result)

    async def execute(self, intent: EscrowIntent) -> EscrowResult:
        """
        Dispatch an intent. An intent refused because another operation
        is in flight is not consumed and may be resubmitted.
        """
        if intent.intent_id in self._consumed:
            raise IntentAlreadyConsumed(f"Intent {intent.intent_id} was already executed")
        if self._running is None:
            self._consumed.add(intent.intent_id)

        if intent.kind == IntentKind.CREATE:
            return await self.create_escrow(intent.recipient_address, intent.amount)
        return await self.release_escrow(intent.escrow_id)

    def get_traces(self) -> List[OperationTrace]:
        return list(self._traces)

    async def close(self):
        await self._session.close()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _create(
        self,
        recipient_address: str,
        amount: int,
        trace: _TraceRecorder
    ) -> CreateEscrowResult:
        started = time.monotonic()
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise CircuitError(f"create: amount must be a positive integer, got {amount!r}")

        recipient = parse_shielded_address(recipient_address, self._config.network_id)
        selected = await self._selector.select(amount)

        contract = self._config.contract_address
        snapshot = await self._reader.read_for_execution(contract)
        caller = await self._session.read_state()
        private_state = await self._load_private_state()

        # Change goes back to the wallet during balancing
        record = ValueRecord(
            nonce=inflow_nonce(contract, snapshot.last_escrow_id + 1, selected.nonce),
            color=selected.color,
            value=amount,
        )

        invocation = self._builder.invoke(
            CREATE,
            (recipient.coin_public_key, record),
            snapshot,
            ShieldedChainState(),
            caller.coin_public_key,
            private_state,
        )
        expected_id = invocation.result
        trace.stage(invocation.transaction)

        outcome = await self._session.run(invocation.transaction, on_stage=trace.stage)
        await self._save_private_state(invocation.next_private_state)

        escrow_id, approximate = await self._confirm_create(
            outcome.receipt.receipt_id, recipient.coin_public_key, record,
            snapshot.last_escrow_id, expected_id, outcome.transaction, trace
        )
        logger.info(
            "Escrow %s%s created for %d (proof %.1fs)",
            escrow_id, " (approximate)" if approximate else "", amount, outcome.proof_seconds
        )
        return CreateEscrowResult(
            success=True,
            escrow_id=escrow_id,
            proof_seconds=outcome.proof_seconds,
            elapsed_seconds=time.monotonic() - started,
            approximate=approximate,
            tx_id=outcome.receipt.receipt_id,
            selected_record=selected,
        )

    async def _confirm_create(
        self,
        receipt_id: str,
        recipient: bytes,
        record: ValueRecord,
        prior_id: int,
        expected_id: int,
        submitted: TransactionStage,
        trace: _TraceRecorder
    ) -> Tuple[int, bool]:
        """
        Advisory read after submission. Never fails the operation: the
        transaction is already on its way.

        Only an escrow created after `prior_id`, the last id seen before
        submission, can confirm this one.
        """
        contract = self._config.contract_address
        try:
            status = await self._reader.transaction_status(receipt_id)
            snapshot = await self._reader.read(contract)
        except EscrowError as e:
            logger.warning("Confirmation read failed (%s), escrow id is approximate", e.message)
            return max(self._reader.high_water(contract), expected_id), True

        observed = snapshot.last_escrow_id if snapshot else self._reader.high_water(contract)
        if status == TransactionStatus.CONFIRMED and snapshot and observed >= expected_id:
            entry = snapshot.ledger.find(recipient, record, after=prior_id)
            if entry is not None:
                trace.stage(submitted.advance(StageKind.CONFIRMED))
                return entry.escrow_id, False
        return max(observed, expected_id), True

    async def _release(self, escrow_id: int, trace: _TraceRecorder) -> ReleaseEscrowResult:
        started = time.monotonic()
        contract = self._config.contract_address
        caller = await self._session.read_state()
        private_state = await self._load_private_state()

        attempts = self._config.qualification_attempts
        invocation = None
        for attempt in range(1, attempts + 1):
            snapshot = await self._reader.read_for_execution(contract)
            chain_state = await self._reader.read_chain_state(contract)
            try:
                invocation = self._builder.invoke(
                    RELEASE, (escrow_id,), snapshot, chain_state,
                    caller.coin_public_key, private_state,
                )
                break
            except EscrowNotIndexed as e:
                if attempt == attempts:
                    raise
                logger.info(
                    "%s (attempt %d/%d), waiting %.1fs for the indexer",
                    e.message, attempt, attempts, self._config.qualification_delay_seconds
                )
                await self._sleep(self._config.qualification_delay_seconds)

        trace.stage(invocation.transaction)
        outcome = await self._session.run(invocation.transaction, on_stage=trace.stage)
        await self._save_private_state(invocation.next_private_state)

        logger.info("Escrow %d released (proof %.1fs)", escrow_id, outcome.proof_seconds)
        return ReleaseEscrowResult(
            success=True,
            escrow_id=escrow_id,
            proof_seconds=outcome.proof_seconds,
            elapsed_seconds=time.monotonic() - started,
            tx_id=outcome.receipt.receipt_id,
        )

    async def _load_private_state(self) -> bytes:
        return await asyncio.to_thread(self._store.get, self._private_state_id)

    async def _save_private_state(self, state: bytes):
        await asyncio.to_thread(self._store.put, self._private_state_id, state)

    def _busy(self) -> Optional[EscrowFailure]:
        if self._running is None:
            return None
        logger.info("Refusing escrow operation: %s in flight", self._running)
        return EscrowFailure.from_error(OperationInProgress(self._running))

    @staticmethod
    def _internal(error: Exception) -> EscrowFailure:
        return EscrowFailure(
            code=EscrowErrorCode.INTERNAL_ERROR,
            message=str(error) or type(error).__name__,
            retryable=False,
        )

    def _record(self, trace: _TraceRecorder, result: EscrowResult) -> EscrowResult:
        self._traces.append(trace.finish(result))
        return result
