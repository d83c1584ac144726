"""
Wallet Session Interface

The one surface the orchestrator drives, whichever side holds the keys.

GUARANTEES:
===========
1. Stages are visited strictly in order: balance, then prove, then submit
2. Proving is bounded; on expiry the in-flight call is cancelled
3. Service-specific shapes are mapped to TransactionStage here and
   nowhere else
4. A failed run aborts; there is no partial resume
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, List, Optional
import asyncio
import logging
import time

from ..address import parse_shielded_address
from ..config import DEFAULT_PROOF_TIMEOUT_SECONDS
from ..contracts import (
    PipelineOutcome, SessionState, StageKind, SubmissionReceipt,
    TransactionStage, ValueRecord, WalletBalance, WalletMode
)
from ..errors import (
    InvalidAddress, MalformedState, ProofTimeout, SessionAlreadyClaimed,
    UnsupportedCapability, WalletNotSynced
)

logger = logging.getLogger(__name__)

StageListener = Callable[[TransactionStage], None]

_WIRE_TYPE_HEX_LEN = 70


def _color_key(key: str) -> str:
    # 35-byte wire type tags carry the color at bytes 2..34
    if len(key) == _WIRE_TYPE_HEX_LEN:
        return key[4:68]
    return key


def session_state_from_dict(data: dict, include_records: bool) -> SessionState:
    """
    Map a custody or signer state payload into a SessionState.

    Expected shape:
        {address, coinPublicKey, encryptionPublicKey, balances,
         availableCoins, syncProgress: {synced}}
    """
    if not isinstance(data, dict):
        raise MalformedState("wallet state is not an object")
    try:
        address = str(data['address'])
        if data.get('coinPublicKey'):
            coin_key = bytes.fromhex(data['coinPublicKey'])
            encryption_key = str(data.get('encryptionPublicKey', ''))
        else:
            parsed = parse_shielded_address(address)
            coin_key = parsed.coin_public_key
            encryption_key = parsed.encryption_public_key.hex()
        balances = {
            _color_key(k): int(v) for k, v in (data.get('balances') or {}).items()
        }
        records = None
        if include_records:
            records = tuple(
                ValueRecord.from_dict(c) for c in data.get('availableCoins') or []
            )
        sync = data.get('syncProgress') or {}
        synced = bool(sync.get('synced', True))
    except (KeyError, TypeError, ValueError, InvalidAddress) as e:
        raise MalformedState(f"unusable wallet state: {e}")

    return SessionState(
        address=address,
        coin_public_key=coin_key,
        encryption_public_key=encryption_key,
        balances=balances,
        records=records,
        synced=synced,
    )


class WalletSession(ABC):
    """Base class for Local and Delegated sessions."""

    mode: WalletMode

    def __init__(
        self,
        proof_timeout_seconds: float = DEFAULT_PROOF_TIMEOUT_SECONDS,
        sync_poll_interval_seconds: float = 1.0
    ):
        self._proof_timeout_seconds = proof_timeout_seconds
        self._sync_poll_interval_seconds = sync_poll_interval_seconds
        self._claimed = False

    @property
    def proof_timeout_seconds(self) -> float:
        return self._proof_timeout_seconds

    # =========================================================================
    # STATE
    # =========================================================================

    @abstractmethod
    async def read_state(self) -> SessionState:
        pass

    async def read_balance(self) -> WalletBalance:
        state = await self.read_state()
        return WalletBalance(amount=state.native_balance, address=state.address)

    async def read_records(self) -> List[ValueRecord]:
        raise UnsupportedCapability(
            f"{self.mode.value} sessions do not expose spendable records"
        )

    async def wait_until_synced(self, timeout: float) -> SessionState:
        """Poll at a fixed interval until the wallet reports synced."""

        async def poll() -> SessionState:
            while True:
                state = await self.read_state()
                if state.synced:
                    return state
                logger.debug("Wallet not synced, polling again in %.1fs",
                             self._sync_poll_interval_seconds)
                await asyncio.sleep(self._sync_poll_interval_seconds)

        try:
            state = await asyncio.wait_for(poll(), timeout)
        except asyncio.TimeoutError:
            raise WalletNotSynced(f"Wallet did not sync within {timeout}s")
        logger.info("Wallet synced: %s", state.address)
        return state

    # =========================================================================
    # PIPELINE
    # =========================================================================

    async def balance(self, tx: TransactionStage) -> TransactionStage:
        tx.require(StageKind.UNPROVED)
        body = await self._balance(tx)
        return tx.advance(StageKind.BALANCED, body)

    async def prove(self, tx: TransactionStage) -> TransactionStage:
        tx.require(StageKind.BALANCED)
        try:
            body = await asyncio.wait_for(self._prove(tx), self._proof_timeout_seconds)
        except asyncio.TimeoutError:
            raise ProofTimeout(self._proof_timeout_seconds)
        return tx.advance(StageKind.PROVED, body)

    async def submit(self, tx: TransactionStage) -> SubmissionReceipt:
        tx.require(StageKind.PROVED)
        receipt_id = await self._submit(tx)
        return SubmissionReceipt(
            tx_id=tx.tx_id,
            receipt_id=receipt_id,
            submitted_at=datetime.now(timezone.utc),
        )

    async def run(
        self,
        tx: TransactionStage,
        on_stage: Optional[StageListener] = None
    ) -> PipelineOutcome:
        """balance -> prove -> submit, strictly sequential."""
        started = time.monotonic()
        notify = on_stage or (lambda stage: None)

        balanced = await self.balance(tx)
        notify(balanced)
        logger.info("Transaction %s balanced", tx.tx_id[:12])

        proof_started = time.monotonic()
        proved = await self.prove(balanced)
        proof_seconds = time.monotonic() - proof_started
        notify(proved)
        logger.info("Transaction %s proved in %.1fs", tx.tx_id[:12], proof_seconds)

        receipt = await self.submit(proved)
        submitted = proved.advance(StageKind.SUBMITTED)
        notify(submitted)
        logger.info("Transaction %s submitted (receipt %s)", tx.tx_id[:12], receipt.receipt_id)

        return PipelineOutcome(
            transaction=submitted,
            receipt=receipt,
            proof_seconds=proof_seconds,
            elapsed_seconds=time.monotonic() - started,
        )

    @abstractmethod
    async def _balance(self, tx: TransactionStage) -> bytes:
        pass

    @abstractmethod
    async def _prove(self, tx: TransactionStage) -> bytes:
        pass

    @abstractmethod
    async def _submit(self, tx: TransactionStage) -> str:
        pass

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def claim(self):
        """Bind this session to its single owner."""
        if self._claimed:
            raise SessionAlreadyClaimed("Wallet session already backs an orchestrator")
        self._claimed = True

    async def close(self):
        return None
