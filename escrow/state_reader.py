"""
Contract State Reader

Reads the escrow contract's public state from the indexer and decides
what to do when the indexer has not caught up.

POLICY:
=======
- Display reads (read_view): never fail. Absent, malformed or unreachable
  state yields last_escrow_id = 0 flagged approximate, plus a warning.
- Execution reads (read_for_execution): delegated to the fallback policy
  chosen at connection time:
    RetryPolicy       local mode, fixed-interval bounded retry, then
                      IndexerUnavailable
    EmptyStatePolicy  delegated mode, canonical empty state substituted
                      at once; the signer resolves consistency while
                      balancing
- Views never decrease: a read below the highest id already observed is
  reported at the high-water mark, flagged approximate.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, Optional
import asyncio
import logging

from .contracts import EscrowStateView, StateSource, TransactionStatus
from .errors import IndexerUnavailable, MalformedState, ServiceUnavailable
from .ledger import ContractStateSnapshot, ShieldedChainState
from .services.indexer import IndexerClient

logger = logging.getLogger(__name__)

SnapshotFetch = Callable[[], Awaitable[Optional[ContractStateSnapshot]]]
Sleep = Callable[[float], Awaitable[None]]


# =============================================================================
# FALLBACK POLICIES
# =============================================================================

class UnavailableStatePolicy(ABC):
    """What an execution read does when the indexer has nothing usable."""

    @abstractmethod
    async def resolve(self, fetch: SnapshotFetch, contract_address: str) -> ContractStateSnapshot:
        pass


class RetryPolicy(UnavailableStatePolicy):
    """Fixed-interval retry with an explicit attempt cap."""

    def __init__(self, attempts: int, delay_seconds: float, sleep: Sleep = asyncio.sleep):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def resolve(self, fetch: SnapshotFetch, contract_address: str) -> ContractStateSnapshot:
        last_problem = "not yet indexed"
        for attempt in range(1, self.attempts + 1):
            try:
                snapshot = await fetch()
            except (ServiceUnavailable, MalformedState) as e:
                snapshot = None
                last_problem = e.message
            else:
                last_problem = "not yet indexed"
            if snapshot is not None:
                return snapshot
            if attempt < self.attempts:
                logger.debug(
                    "Contract %s state unavailable (%s), attempt %d/%d, retrying in %.1fs",
                    contract_address, last_problem, attempt, self.attempts, self.delay_seconds
                )
                await self._sleep(self.delay_seconds)
        raise IndexerUnavailable(
            f"Contract {contract_address} state unavailable after "
            f"{self.attempts} attempts: {last_problem}"
        )


class EmptyStatePolicy(UnavailableStatePolicy):
    """Substitute the canonical empty state instead of retrying."""

    async def resolve(self, fetch: SnapshotFetch, contract_address: str) -> ContractStateSnapshot:
        try:
            snapshot = await fetch()
        except (ServiceUnavailable, MalformedState) as e:
            logger.warning("Contract %s state query failed (%s)", contract_address, e.message)
            snapshot = None
        if snapshot is None:
            logger.warning(
                "Contract %s not indexed yet - using empty state placeholder", contract_address
            )
            return ContractStateSnapshot.placeholder(contract_address)
        return snapshot


# =============================================================================
# READER
# =============================================================================

class ContractStateReader:

    def __init__(self, indexer: IndexerClient, fallback: UnavailableStatePolicy):
        self._indexer = indexer
        self._fallback = fallback
        self._high_water: Dict[str, int] = {}

    @property
    def fallback(self) -> UnavailableStatePolicy:
        return self._fallback

    def high_water(self, contract_address: str) -> int:
        """Highest last_escrow_id ever observed from the indexer."""
        return self._high_water.get(contract_address, 0)

    async def read(self, contract_address: str) -> Optional[ContractStateSnapshot]:
        """
        One raw read. None means the indexer has no state yet.

        Raises ServiceUnavailable or MalformedState.
        """
        raw = await self._indexer.query_contract_state(contract_address)
        if raw is None:
            return None
        snapshot = ContractStateSnapshot.from_raw(
            contract_address, raw.raw, block_height=raw.block_height
        )
        if snapshot.last_escrow_id > self.high_water(contract_address):
            self._high_water[contract_address] = snapshot.last_escrow_id
        return snapshot

    async def read_view(self, contract_address: str) -> EscrowStateView:
        try:
            snapshot = await self.read(contract_address)
        except (ServiceUnavailable, MalformedState) as e:
            logger.warning("Failed to query contract state: %s", e.message)
            snapshot = None

        if snapshot is None:
            logger.warning(
                "Contract state for %s unavailable - using default state", contract_address
            )
            observed, approximate = 0, True
        else:
            observed, approximate = snapshot.last_escrow_id, False

        mark = self.high_water(contract_address)
        if observed < mark:
            return EscrowStateView(contract_address, mark, approximate=True)
        return EscrowStateView(contract_address, observed, approximate=approximate)

    async def read_for_execution(self, contract_address: str) -> ContractStateSnapshot:
        snapshot = await self._fallback.resolve(
            lambda: self.read(contract_address), contract_address
        )
        if snapshot.source == StateSource.PLACEHOLDER:
            logger.info("Executing against placeholder state for %s", contract_address)
        return snapshot

    async def read_chain_state(self, contract_address: str) -> ShieldedChainState:
        """Shielded pool state; absent state degrades to the empty pool."""
        data = await self._indexer.query_chain_state(contract_address)
        if data is None:
            logger.warning("Chain state for %s not indexed - using empty pool", contract_address)
            return ShieldedChainState()
        return ShieldedChainState.from_dict(data)

    async def transaction_status(self, tx_id: str) -> TransactionStatus:
        return await self._indexer.query_transaction(tx_id)
