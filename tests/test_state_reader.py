"""
Contract State Reader Tests

INVARIANTS TESTED:
1. Display reads never fail; degraded reads are approximate at 0
2. Repeated reads without a state change agree
3. Observed last_escrow_id never decreases
4. Local fallback retries a bounded number of times, then fails
5. Delegated fallback substitutes the empty state at once
"""

import asyncio
import logging

import pytest

from escrow.contracts import StateSource, TransactionStatus
from escrow.errors import IndexerUnavailable
from escrow.ledger import EscrowLedger
from escrow.state_reader import ContractStateReader, EmptyStatePolicy, RetryPolicy

from .fixtures import (
    CONTRACT_ADDRESS, RECIPIENT_COIN_KEY, FakeChain, FakeIndexer, make_record, no_sleep
)


def reader_for(chain, fallback=None, fail=False):
    indexer = FakeIndexer(chain, fail=fail)
    return ContractStateReader(indexer, fallback or RetryPolicy(3, 0.0, sleep=no_sleep)), indexer


class TestReadView:

    def test_absent_state_defaults_to_zero(self, caplog):
        reader, _ = reader_for(FakeChain(deployed=False))
        with caplog.at_level(logging.WARNING):
            view = asyncio.run(reader.read_view(CONTRACT_ADDRESS))

        assert view.last_escrow_id == 0
        assert view.approximate
        assert "default state" in caplog.text

    def test_unreachable_indexer_defaults_to_zero(self):
        reader, _ = reader_for(FakeChain(deployed=False), fail=True)
        view = asyncio.run(reader.read_view(CONTRACT_ADDRESS))
        assert view.last_escrow_id == 0
        assert view.approximate

    def test_indexed_state_is_exact(self):
        chain = FakeChain(deployed=False)
        chain.seed_escrow(RECIPIENT_COIN_KEY, make_record(5))
        reader, _ = reader_for(chain)

        view = asyncio.run(reader.read_view(CONTRACT_ADDRESS))

        assert view.last_escrow_id == 1
        assert not view.approximate

    def test_two_reads_agree(self):
        chain = FakeChain(deployed=False)
        chain.seed_escrow(RECIPIENT_COIN_KEY, make_record(5))
        chain.seed_escrow(RECIPIENT_COIN_KEY, make_record(6, seed=2))
        reader, _ = reader_for(chain)

        first = asyncio.run(reader.read_view(CONTRACT_ADDRESS))
        second = asyncio.run(reader.read_view(CONTRACT_ADDRESS))

        assert first.last_escrow_id == second.last_escrow_id == 2

    def test_view_holds_at_high_water_mark(self):
        chain = FakeChain(deployed=False)
        chain.seed_escrow(RECIPIENT_COIN_KEY, make_record(5))
        chain.seed_escrow(RECIPIENT_COIN_KEY, make_record(6, seed=2))
        reader, indexer = reader_for(chain)
        asyncio.run(reader.read_view(CONTRACT_ADDRESS))

        # Indexer answers from a lagging replica
        chain.ledger = EscrowLedger().with_escrow(RECIPIENT_COIN_KEY, make_record(5))
        view = asyncio.run(reader.read_view(CONTRACT_ADDRESS))

        assert view.last_escrow_id == 2
        assert view.approximate

    def test_outage_after_observation_holds_mark(self):
        chain = FakeChain(deployed=False)
        chain.seed_escrow(RECIPIENT_COIN_KEY, make_record(5))
        reader, indexer = reader_for(chain)
        asyncio.run(reader.read_view(CONTRACT_ADDRESS))

        indexer.fail = True
        view = asyncio.run(reader.read_view(CONTRACT_ADDRESS))

        assert view.last_escrow_id == 1
        assert view.approximate


class TestRetryPolicy:

    def test_retries_then_fails(self):
        reader, indexer = reader_for(FakeChain(deployed=False))
        with pytest.raises(IndexerUnavailable, match="3 attempts"):
            asyncio.run(reader.read_for_execution(CONTRACT_ADDRESS))
        assert indexer.contract_queries == 3

    def test_unreachable_indexer_fails_after_cap(self):
        reader, indexer = reader_for(FakeChain(deployed=False), fail=True)
        with pytest.raises(IndexerUnavailable, match="connection refused"):
            asyncio.run(reader.read_for_execution(CONTRACT_ADDRESS))
        assert indexer.contract_queries == 3

    def test_fixed_delay_between_attempts(self):
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        reader, _ = reader_for(
            FakeChain(deployed=False), fallback=RetryPolicy(4, 2.5, sleep=record_sleep)
        )
        with pytest.raises(IndexerUnavailable):
            asyncio.run(reader.read_for_execution(CONTRACT_ADDRESS))
        assert delays == [2.5, 2.5, 2.5]

    def test_succeeds_once_indexed(self):
        chain = FakeChain(deployed=False)
        calls = []

        async def index_while_waiting(seconds):
            calls.append(seconds)
            chain.seed_escrow(RECIPIENT_COIN_KEY, make_record(5))

        reader, _ = reader_for(chain, fallback=RetryPolicy(3, 1.0, sleep=index_while_waiting))
        snapshot = asyncio.run(reader.read_for_execution(CONTRACT_ADDRESS))

        assert snapshot.last_escrow_id == 1
        assert snapshot.source == StateSource.INDEXER
        assert len(calls) == 1

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(0, 1.0)


class TestEmptyStatePolicy:

    def test_substitutes_placeholder_without_retry(self):
        reader, indexer = reader_for(FakeChain(deployed=False), fallback=EmptyStatePolicy())
        snapshot = asyncio.run(reader.read_for_execution(CONTRACT_ADDRESS))

        assert snapshot.source == StateSource.PLACEHOLDER
        assert snapshot.last_escrow_id == 0
        assert indexer.contract_queries == 1

    def test_substitutes_placeholder_on_outage(self):
        reader, _ = reader_for(FakeChain(deployed=False), fallback=EmptyStatePolicy(), fail=True)
        snapshot = asyncio.run(reader.read_for_execution(CONTRACT_ADDRESS))
        assert snapshot.approximate

    def test_uses_real_state_when_present(self):
        chain = FakeChain(deployed=False)
        chain.seed_escrow(RECIPIENT_COIN_KEY, make_record(5))
        reader, _ = reader_for(chain, fallback=EmptyStatePolicy())

        snapshot = asyncio.run(reader.read_for_execution(CONTRACT_ADDRESS))

        assert snapshot.source == StateSource.INDEXER
        assert snapshot.last_escrow_id == 1


class TestChainStateAndStatus:

    def test_absent_chain_state_is_empty(self):
        reader, _ = reader_for(FakeChain(deployed=False))
        state = asyncio.run(reader.read_chain_state(CONTRACT_ADDRESS))
        assert state.first_free == 0
        assert state.commitments == ()

    def test_chain_state_positions(self):
        chain = FakeChain(deployed=False)
        record = make_record(5)
        chain.seed_escrow(RECIPIENT_COIN_KEY, record)
        reader, _ = reader_for(chain)

        state = asyncio.run(reader.read_chain_state(CONTRACT_ADDRESS))

        assert state.index_of(record.commitment(CONTRACT_ADDRESS)) == 0

    def test_unknown_transaction(self):
        reader, _ = reader_for(FakeChain(deployed=False))
        status = asyncio.run(reader.transaction_status("tx-404"))
        assert status == TransactionStatus.UNKNOWN
