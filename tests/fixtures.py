"""
Test Fixtures

In-memory stand-ins for the external collaborators, sharing one fake
chain so a submitted transaction can be observed back through the
indexer. All fixtures are explicit - no random generation.
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, List, Optional
import asyncio
import json

from escrow.address import encode_shielded_address
from escrow.coins import FirstFitSelector, PlaceholderSelector
from escrow.config import EscrowConfig, NetworkId
from escrow.contracts import NATIVE_COLOR, TransactionStatus, ValueRecord
from escrow.errors import ServiceUnavailable, SubmissionRejected
from escrow.ledger import EscrowLedger
from escrow.orchestrator import EscrowOrchestrator
from escrow.private_state import PrivateStateStore
from escrow.services.artifacts import ArtifactProvider, CircuitArtifacts
from escrow.services.custody import CustodyServiceClient
from escrow.services.indexer import IndexerClient, RawContractState
from escrow.services.prover import ProofServerClient
from escrow.services.signer import DelegationHandle, ServiceUris
from escrow.state_reader import ContractStateReader, EmptyStatePolicy, RetryPolicy
from escrow.wallet.delegated import DelegatedWalletSession
from escrow.wallet.local import LocalWalletSession


# =============================================================================
# CONSTANTS
# =============================================================================

CONTRACT_ADDRESS = "0200c0ffee"

OWNER_COIN_KEY = bytes([0x11]) * 32
OWNER_ENC_KEY = bytes([0x12]) * 34
RECIPIENT_COIN_KEY = bytes([0x21]) * 32
RECIPIENT_ENC_KEY = bytes([0x22]) * 34

OWNER_ADDRESS = encode_shielded_address(OWNER_COIN_KEY, OWNER_ENC_KEY, NetworkId.TESTNET)
RECIPIENT_ADDRESS = encode_shielded_address(
    RECIPIENT_COIN_KEY, RECIPIENT_ENC_KEY, NetworkId.TESTNET
)

OTHER_COLOR = bytes([0x07]) * 32


def make_config(**overrides) -> EscrowConfig:
    values = dict(
        contract_address=CONTRACT_ADDRESS,
        indexer_url="http://indexer.test/api/v1/graphql",
        node_url="http://node.test",
        proof_server_url="http://prover.test",
        custody_url="http://custody.test",
        network_id=NetworkId.TESTNET,
        state_retry_attempts=3,
        state_retry_delay_seconds=0.0,
        qualification_attempts=3,
        qualification_delay_seconds=0.0,
        sync_poll_interval_seconds=0.0,
    )
    values.update(overrides)
    return EscrowConfig(**values)


def make_record(value: int, seed: int = 1, color: bytes = NATIVE_COLOR) -> ValueRecord:
    return ValueRecord(nonce=bytes([seed]) * 32, color=color, value=value)


async def no_sleep(seconds: float) -> None:
    return None


# =============================================================================
# FAKE CHAIN
# =============================================================================

class FakeChain:
    """
    Contract ledger plus shielded commitments.

    With auto_index=False, submitted transactions stay pending (and
    invisible to the indexer) until index_pending() is called.
    """

    def __init__(
        self,
        contract_address: str = CONTRACT_ADDRESS,
        auto_index: bool = True,
        deployed: bool = True
    ):
        self.contract_address = contract_address
        self.auto_index = auto_index
        self.ledger: Optional[EscrowLedger] = EscrowLedger() if deployed else None
        self.commitments: List[str] = []
        self.statuses: Dict[str, TransactionStatus] = {}
        self.pending: List[tuple] = []
        self.submitted: List[dict] = []

    def submit(self, body: bytes) -> str:
        tx = json.loads(body.decode('utf-8'))
        tx_id = f"tx-{len(self.submitted) + 1}"
        self.submitted.append(tx)
        self.statuses[tx_id] = TransactionStatus.PENDING
        self.pending.append((tx_id, tx))
        if self.auto_index:
            self.index_pending()
        return tx_id

    def index_pending(self):
        for tx_id, tx in self.pending:
            self._apply(tx)
            self.statuses[tx_id] = TransactionStatus.CONFIRMED
        self.pending = []

    def _apply(self, tx: dict):
        ledger = self.ledger or EscrowLedger()
        transcript = tx['transcript']
        if tx['circuit'] == 'create':
            record = ValueRecord.from_dict(tx['newCoins'][0])
            self.ledger = ledger.with_escrow(bytes.fromhex(transcript['recipient']), record)
            self.commitments.append(transcript['inflow'])
        else:
            self.ledger = ledger.with_released(transcript['escrowId'])
            self.commitments.append(transcript['output'])

    def seed_escrow(self, recipient: bytes, record: ValueRecord, indexed: bool = True) -> int:
        """Place an escrow directly on the ledger."""
        self.ledger = (self.ledger or EscrowLedger()).with_escrow(recipient, record)
        if indexed:
            self.commitments.append(record.commitment(self.contract_address))
        return self.ledger.last_escrow_id


class FakeIndexer(IndexerClient):

    def __init__(self, chain: FakeChain, fail: bool = False):
        super().__init__("http://indexer.test")
        self.chain = chain
        self.fail = fail
        self.contract_queries = 0

    def _maybe_fail(self):
        if self.fail:
            raise ServiceUnavailable(self.service_name, "connection refused")

    async def query_contract_state(self, address: str) -> Optional[RawContractState]:
        self.contract_queries += 1
        self._maybe_fail()
        if self.chain.ledger is None:
            return None
        return RawContractState(address=address, raw=self.chain.ledger.encode(), block_height=10)

    async def query_chain_state(self, address: str) -> Optional[dict]:
        self._maybe_fail()
        if self.chain.ledger is None:
            return None
        return {'firstFree': len(self.chain.commitments), 'commitments': list(self.chain.commitments)}

    async def query_transaction(self, tx_id: str) -> TransactionStatus:
        self._maybe_fail()
        return self.chain.statuses.get(tx_id, TransactionStatus.UNKNOWN)


# =============================================================================
# FAKE SERVICES
# =============================================================================

def wallet_state_payload(
    records: List[ValueRecord],
    address: str = OWNER_ADDRESS,
    synced: bool = True
) -> dict:
    return {
        'address': address,
        'coinPublicKey': OWNER_COIN_KEY.hex(),
        'encryptionPublicKey': OWNER_ENC_KEY.hex(),
        'balances': {NATIVE_COLOR.hex(): sum(r.value for r in records if r.is_native)},
        'availableCoins': [r.to_dict() for r in records],
        'syncProgress': {'synced': synced},
    }


class FakeCustody(CustodyServiceClient):

    def __init__(
        self,
        chain: FakeChain,
        records: List[ValueRecord],
        unsynced_polls: int = 0,
        reject_reason: Optional[str] = None
    ):
        super().__init__("http://custody.test")
        self.chain = chain
        self.records = list(records)
        self.unsynced_polls = unsynced_polls
        self.reject_reason = reject_reason
        self.calls: List[str] = []
        self.closed = False
        self.endpoints = None

    async def open_wallet(self, seed: str, network_id: str, endpoints=None) -> str:
        self.calls.append('open')
        self.endpoints = endpoints
        return "wallet-1"

    async def wallet_state(self, wallet_id: str) -> dict:
        self.calls.append('state')
        synced = self.unsynced_polls <= 0
        self.unsynced_polls -= 1
        return wallet_state_payload(self.records, synced=synced)

    async def balance_transaction(self, wallet_id, body, new_records) -> bytes:
        self.calls.append('balance')
        return body

    async def submit_transaction(self, wallet_id: str, body: bytes) -> str:
        self.calls.append('submit')
        if self.reject_reason is not None:
            raise SubmissionRejected(self.reject_reason)
        return self.chain.submit(body)

    async def close_wallet(self, wallet_id: str):
        self.calls.append('close')
        self.closed = True


class FakeProver(ProofServerClient):

    def __init__(self, delay: float = 0.0, calls: Optional[List[str]] = None):
        super().__init__("http://prover.test")
        self.delay = delay
        self.calls = calls if calls is not None else []
        self.cancelled = False

    async def prove(self, body, artifacts) -> bytes:
        self.calls.append('prove')
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return body


class FakeArtifacts(ArtifactProvider):

    def __init__(self):
        super().__init__("http://prover.test")
        self.requested: List[str] = []

    async def get(self, circuit_id: str) -> CircuitArtifacts:
        self.requested.append(circuit_id)
        return CircuitArtifacts(circuit_id, b"pk", b"vk", b"ir")


class FakeHandle(DelegationHandle):
    """Delegated signer that records every call it receives."""

    def __init__(
        self,
        chain: FakeChain,
        version: str = "1.1.0",
        enabled: bool = True,
        grant_enable: bool = True,
        reject_reason: Optional[str] = None,
        prove_delay: float = 0.0
    ):
        self.chain = chain
        self.version = version
        self.enabled = enabled
        self.grant_enable = grant_enable
        self.reject_reason = reject_reason
        self.prove_delay = prove_delay
        self.calls: List[str] = []

    async def api_version(self) -> str:
        self.calls.append('api_version')
        return self.version

    async def is_enabled(self) -> bool:
        self.calls.append('is_enabled')
        return self.enabled

    async def enable(self) -> None:
        self.calls.append('enable')
        self.enabled = self.grant_enable

    async def state(self) -> dict:
        self.calls.append('state')
        return {
            'address': OWNER_ADDRESS,
            'coinPublicKey': OWNER_COIN_KEY.hex(),
            'encryptionPublicKey': OWNER_ENC_KEY.hex(),
            'balances': {NATIVE_COLOR.hex(): 75000},
        }

    async def service_uris(self) -> ServiceUris:
        self.calls.append('service_uris')
        return ServiceUris(indexer_uri="http://indexer.test")

    async def balance_transaction(self, body, new_records) -> bytes:
        self.calls.append('balance')
        return body

    async def prove_transaction(self, body: bytes) -> bytes:
        self.calls.append('prove')
        if self.prove_delay:
            await asyncio.sleep(self.prove_delay)
        return body

    async def submit_transaction(self, body: bytes) -> str:
        self.calls.append('submit')
        if self.reject_reason is not None:
            raise SubmissionRejected(self.reject_reason)
        return self.chain.submit(body)


# =============================================================================
# WIRING
# =============================================================================

def make_local_session(
    chain: FakeChain,
    records: List[ValueRecord],
    proof_delay: float = 0.0,
    proof_timeout_seconds: float = 900.0,
    **custody_kwargs
) -> LocalWalletSession:
    custody = FakeCustody(chain, records, **custody_kwargs)
    prover = FakeProver(delay=proof_delay, calls=custody.calls)
    return LocalWalletSession(
        custody, "wallet-1", prover, FakeArtifacts(),
        proof_timeout_seconds=proof_timeout_seconds,
        sync_poll_interval_seconds=0.0,
    )


def make_local_orchestrator(
    tmp_path: Path,
    chain: FakeChain,
    records: List[ValueRecord],
    config: Optional[EscrowConfig] = None,
    indexer: Optional[FakeIndexer] = None,
    sleep=no_sleep,
    **session_kwargs
) -> EscrowOrchestrator:
    config = config or make_config()
    session = make_local_session(chain, records, **session_kwargs)
    reader = ContractStateReader(
        indexer or FakeIndexer(chain),
        RetryPolicy(config.state_retry_attempts, config.state_retry_delay_seconds, sleep=no_sleep),
    )
    return EscrowOrchestrator(
        config=config,
        session=session,
        selector=FirstFitSelector(session.read_records),
        reader=reader,
        store=PrivateStateStore(tmp_path / "state", config.private_state_store),
        private_state_id=config.private_state_id,
        sleep=sleep,
    )


def make_delegated_orchestrator(
    tmp_path: Path,
    chain: FakeChain,
    handle: Optional[FakeHandle] = None,
    config: Optional[EscrowConfig] = None
) -> EscrowOrchestrator:
    config = config or make_config()
    handle = handle or FakeHandle(chain)
    session = DelegatedWalletSession(handle, sync_poll_interval_seconds=0.0)
    return EscrowOrchestrator(
        config=config,
        session=session,
        selector=PlaceholderSelector(),
        reader=ContractStateReader(FakeIndexer(chain), EmptyStatePolicy()),
        store=PrivateStateStore(tmp_path / "state", config.private_state_store),
        private_state_id=OWNER_ADDRESS,
        sleep=no_sleep,
    )
