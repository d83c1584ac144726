"""
Delegated Wallet Session

Keys and coin bookkeeping live in an external signer. Every pipeline
step is forwarded to the delegation handle; spendable records are never
visible from this side.
"""

from __future__ import annotations

from ..config import DEFAULT_PROOF_TIMEOUT_SECONDS
from ..contracts import SessionState, TransactionStage, WalletMode
from ..services.signer import DelegationHandle
from .base import WalletSession, session_state_from_dict


class DelegatedWalletSession(WalletSession):

    mode = WalletMode.DELEGATED

    def __init__(
        self,
        handle: DelegationHandle,
        proof_timeout_seconds: float = DEFAULT_PROOF_TIMEOUT_SECONDS,
        sync_poll_interval_seconds: float = 1.0
    ):
        super().__init__(proof_timeout_seconds, sync_poll_interval_seconds)
        self._handle = handle

    @property
    def handle(self) -> DelegationHandle:
        return self._handle

    async def read_state(self) -> SessionState:
        return session_state_from_dict(await self._handle.state(), include_records=False)

    async def _balance(self, tx: TransactionStage) -> bytes:
        return await self._handle.balance_transaction(tx.body, tx.new_records)

    async def _prove(self, tx: TransactionStage) -> bytes:
        return await self._handle.prove_transaction(tx.body)

    async def _submit(self, tx: TransactionStage) -> str:
        return await self._handle.submit_transaction(tx.body)

    async def close(self):
        await self._handle.close()
