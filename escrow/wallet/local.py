"""
Local Wallet Session

The seed is held here. A custody daemon is started from it and keeps the
wallet synchronized; balancing and submission go through the daemon,
proving goes to the proof server with artifacts fetched per circuit.
"""

from __future__ import annotations
from typing import List, Optional
import asyncio
import logging

from ..config import DEFAULT_PROOF_TIMEOUT_SECONDS, NetworkId
from ..contracts import SessionState, TransactionStage, ValueRecord, WalletMode
from ..services.artifacts import ArtifactProvider
from ..services.custody import CustodyServiceClient, WalletEndpoints
from ..services.prover import ProofServerClient
from .base import WalletSession, session_state_from_dict

logger = logging.getLogger(__name__)


class LocalWalletSession(WalletSession):

    mode = WalletMode.LOCAL

    def __init__(
        self,
        custody: CustodyServiceClient,
        wallet_id: str,
        prover: ProofServerClient,
        artifacts: ArtifactProvider,
        proof_timeout_seconds: float = DEFAULT_PROOF_TIMEOUT_SECONDS,
        sync_poll_interval_seconds: float = 1.0
    ):
        super().__init__(proof_timeout_seconds, sync_poll_interval_seconds)
        self._custody = custody
        self._wallet_id = wallet_id
        self._prover = prover
        self._artifacts = artifacts
        self._closed = False

    @classmethod
    async def open(
        cls,
        custody: CustodyServiceClient,
        seed: str,
        network_id: NetworkId,
        prover: ProofServerClient,
        artifacts: ArtifactProvider,
        endpoints: Optional[WalletEndpoints] = None,
        **kwargs
    ) -> 'LocalWalletSession':
        """Start a custody wallet from `seed` and wrap it in a session."""
        wallet_id = await custody.open_wallet(seed, network_id.value, endpoints)
        logger.info("Opened custody wallet %s on %s", wallet_id, network_id.value)
        return cls(custody, wallet_id, prover, artifacts, **kwargs)

    @property
    def wallet_id(self) -> str:
        return self._wallet_id

    async def read_state(self) -> SessionState:
        data = await self._custody.wallet_state(self._wallet_id)
        return session_state_from_dict(data, include_records=True)

    async def read_records(self) -> List[ValueRecord]:
        state = await self.read_state()
        return list(state.records or ())

    async def _balance(self, tx: TransactionStage) -> bytes:
        return await self._custody.balance_transaction(
            self._wallet_id, tx.body, tx.new_records
        )

    async def _prove(self, tx: TransactionStage) -> bytes:
        artifacts = await asyncio.gather(
            *(self._artifacts.get(c) for c in tx.circuit_ids)
        )
        return await self._prover.prove(tx.body, artifacts)

    async def _submit(self, tx: TransactionStage) -> str:
        return await self._custody.submit_transaction(self._wallet_id, tx.body)

    async def close(self):
        if self._closed:
            return
        self._closed = True
        await self._custody.close_wallet(self._wallet_id)
        logger.info("Closed custody wallet %s", self._wallet_id)
