"""
Service Client Tests

HTTP clients exercised against httpx.MockTransport.

INVARIANTS TESTED:
1. Transport failures and non-2xx answers become ServiceUnavailable
2. Node rejections become SubmissionRejected with the reason verbatim
3. "Not yet indexed" is None / UNKNOWN, never an error
4. Artifacts are fetched once per circuit id
"""

import asyncio
import json

import httpx
import pytest

from escrow.contracts import TransactionStatus
from escrow.errors import MalformedState, ServiceUnavailable, SubmissionRejected
from escrow.ledger import EscrowLedger
from escrow.services import (
    ArtifactProvider, CircuitArtifacts, CustodyServiceClient, HttpSignerBridge,
    IndexerClient, ProofServerClient, WalletEndpoints, version_satisfies
)

from .fixtures import CONTRACT_ADDRESS, RECIPIENT_COIN_KEY, make_config, make_record


def transport(handler):
    return httpx.MockTransport(handler)


def graphql(data=None, errors=None):
    def handler(request):
        body = {'data': data}
        if errors:
            body['errors'] = errors
        return httpx.Response(200, json=body)
    return handler


# =============================================================================
# BASE CLIENT BEHAVIOUR
# =============================================================================

class TestServiceClientFailures:

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = CustodyServiceClient("http://custody.test", transport=transport(handler))
        with pytest.raises(ServiceUnavailable) as exc_info:
            asyncio.run(client.wallet_state("w1"))
        assert exc_info.value.service == "custody"
        assert exc_info.value.retryable

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = IndexerClient("http://indexer.test", transport=transport(handler))
        with pytest.raises(ServiceUnavailable, match="timed out"):
            asyncio.run(client.query_contract_state(CONTRACT_ADDRESS))

    def test_server_error_status(self):
        client = ProofServerClient(
            "http://prover.test", transport=transport(lambda r: httpx.Response(503))
        )
        with pytest.raises(ServiceUnavailable) as exc_info:
            asyncio.run(client.prove(b"tx", []))
        assert exc_info.value.status == 503

    def test_invalid_json(self):
        client = CustodyServiceClient(
            "http://custody.test",
            transport=transport(lambda r: httpx.Response(200, text="<html>")),
        )
        with pytest.raises(MalformedState):
            asyncio.run(client.wallet_state("w1"))


# =============================================================================
# INDEXER
# =============================================================================

class TestIndexerClient:

    def test_contract_state_decoded_from_hex(self):
        ledger = EscrowLedger().with_escrow(RECIPIENT_COIN_KEY, make_record(5))
        handler = graphql({'contractState': {
            'address': CONTRACT_ADDRESS, 'state': ledger.encode().hex(), 'blockHeight': 42,
        }})
        client = IndexerClient("http://indexer.test", transport=transport(handler))

        raw = asyncio.run(client.query_contract_state(CONTRACT_ADDRESS))

        assert raw.raw == ledger.encode()
        assert raw.block_height == 42

    def test_not_indexed_is_none(self):
        client = IndexerClient(
            "http://indexer.test", transport=transport(graphql({'contractState': None}))
        )
        assert asyncio.run(client.query_contract_state(CONTRACT_ADDRESS)) is None

    def test_query_sends_graphql_variables(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={'data': {'zswapChainState': None}})

        client = IndexerClient("http://indexer.test/api/v1/graphql", transport=transport(handler))
        assert asyncio.run(client.query_chain_state(CONTRACT_ADDRESS)) is None
        assert seen[0]['variables'] == {'address': CONTRACT_ADDRESS}
        assert 'zswapChainState' in seen[0]['query']

    def test_graphql_errors(self):
        client = IndexerClient(
            "http://indexer.test",
            transport=transport(graphql(errors=[{'message': 'rate limited'}])),
        )
        with pytest.raises(ServiceUnavailable, match="rate limited"):
            asyncio.run(client.query_contract_state(CONTRACT_ADDRESS))

    def test_non_hex_state_is_malformed(self):
        client = IndexerClient(
            "http://indexer.test",
            transport=transport(graphql({'contractState': {'state': 'zz'}})),
        )
        with pytest.raises(MalformedState):
            asyncio.run(client.query_contract_state(CONTRACT_ADDRESS))

    @pytest.mark.parametrize("node,expected", [
        ({'hash': 'h', 'status': 'CONFIRMED'}, TransactionStatus.CONFIRMED),
        ({'hash': 'h', 'status': 'pending'}, TransactionStatus.PENDING),
        ({'hash': 'h', 'status': 'weird'}, TransactionStatus.UNKNOWN),
        (None, TransactionStatus.UNKNOWN),
    ])
    def test_transaction_status(self, node, expected):
        client = IndexerClient(
            "http://indexer.test", transport=transport(graphql({'transaction': node}))
        )
        assert asyncio.run(client.query_transaction("h")) == expected


# =============================================================================
# CUSTODY
# =============================================================================

class TestCustodyServiceClient:

    def test_open_and_balance(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, request.content))
            if request.url.path == "/wallets":
                return httpx.Response(201, json={'walletId': 'w-9'})
            return httpx.Response(200, json={'tx': b"balanced".hex()})

        client = CustodyServiceClient("http://custody.test", transport=transport(handler))
        wallet_id = asyncio.run(client.open_wallet("seed", "testnet"))
        body = asyncio.run(client.balance_transaction(wallet_id, b"tx", [make_record(5)]))

        assert wallet_id == "w-9"
        assert body == b"balanced"
        assert 'endpoints' not in json.loads(seen[0][2])
        payload = json.loads(seen[1][2])
        assert seen[1][1] == "/wallets/w-9/balance"
        assert payload['tx'] == b"tx".hex()
        assert payload['newCoins'][0]['value'] == 5

    def test_open_sends_endpoints(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(201, json={'walletId': 'w-1'})

        config = make_config(indexer_ws_url="ws://indexer.test/ws")
        client = CustodyServiceClient("http://custody.test", transport=transport(handler))
        asyncio.run(client.open_wallet("seed", "testnet", WalletEndpoints.from_config(config)))

        assert seen[0]['endpoints'] == {
            'indexer': "http://indexer.test/api/v1/graphql",
            'indexerWS': "ws://indexer.test/ws",
            'proverServer': "http://prover.test",
            'substrateNode': "http://node.test",
        }

    def test_rejection_reason_verbatim(self):
        reason = "Transaction rejected: insufficient fee for 3 inputs"

        def handler(request):
            return httpx.Response(422, json={'reason': reason})

        client = CustodyServiceClient("http://custody.test", transport=transport(handler))
        with pytest.raises(SubmissionRejected) as exc_info:
            asyncio.run(client.submit_transaction("w1", b"tx"))
        assert exc_info.value.reason == reason
        assert not exc_info.value.retryable

    def test_rejection_without_json_uses_text(self):
        client = CustodyServiceClient(
            "http://custody.test",
            transport=transport(lambda r: httpx.Response(400, text="bad nullifier")),
        )
        with pytest.raises(SubmissionRejected) as exc_info:
            asyncio.run(client.submit_transaction("w1", b"tx"))
        assert exc_info.value.reason == "bad nullifier"

    def test_submit_returns_tx_id(self):
        client = CustodyServiceClient(
            "http://custody.test",
            transport=transport(lambda r: httpx.Response(200, json={'txId': 'abc'})),
        )
        assert asyncio.run(client.submit_transaction("w1", b"tx")) == "abc"

    def test_missing_wallet_id(self):
        client = CustodyServiceClient(
            "http://custody.test", transport=transport(lambda r: httpx.Response(200, json={}))
        )
        with pytest.raises(MalformedState):
            asyncio.run(client.open_wallet("seed", "testnet"))


# =============================================================================
# SIGNER BRIDGE
# =============================================================================

class TestSignerBridge:

    def test_api_info(self):
        client = HttpSignerBridge(
            "http://bridge.test",
            transport=transport(
                lambda r: httpx.Response(200, json={'apiVersion': '1.4.2', 'enabled': True})
            ),
        )
        assert asyncio.run(client.api_version()) == "1.4.2"
        assert asyncio.run(client.is_enabled())

    def test_service_uris(self):
        client = HttpSignerBridge(
            "http://bridge.test",
            transport=transport(lambda r: httpx.Response(200, json={
                'indexerUri': 'http://i', 'proverServerUri': 'http://p',
            })),
        )
        uris = asyncio.run(client.service_uris())
        assert uris.indexer_uri == 'http://i'
        assert uris.prover_server_uri == 'http://p'
        assert uris.substrate_node_uri is None

    def test_prove_uses_proof_timeout(self):
        seen = {}

        def handler(request):
            seen[request.url.path] = request.extensions['timeout']
            return httpx.Response(200, json={'tx': b"proved".hex(), 'enabled': True})

        client = HttpSignerBridge(
            "http://bridge.test", prove_timeout=900.0, timeout=5.0, transport=transport(handler)
        )
        assert asyncio.run(client.prove_transaction(b"tx")) == b"proved"
        asyncio.run(client.is_enabled())

        assert seen['/prove']['read'] == 900.0
        assert seen['/api']['read'] == 5.0

    def test_for_config(self):
        config = make_config(proof_timeout_seconds=600.0, request_timeout_seconds=12.0)
        client = HttpSignerBridge.for_config("http://bridge.test", config)
        assert client.prove_timeout == 600.0
        assert client.base_url == "http://bridge.test"

    def test_submit_rejection(self):
        client = HttpSignerBridge(
            "http://bridge.test",
            transport=transport(lambda r: httpx.Response(409, json={'reason': 'double spend'})),
        )
        with pytest.raises(SubmissionRejected, match="double spend"):
            asyncio.run(client.submit_transaction(b"tx"))


class TestVersionRange:

    @pytest.mark.parametrize("version,allowed", [
        ("1.0.0", True),
        ("1.7", True),
        ("v1.2.3", True),
        ("2.0", False),
        ("0.9.9", False),
        ("", False),
        ("one", False),
    ])
    def test_major_wildcard(self, version, allowed):
        assert version_satisfies(version, "1.x") is allowed

    def test_minor_wildcard(self):
        assert version_satisfies("1.2.9", "1.2.x")
        assert not version_satisfies("1.3.0", "1.2.x")

    def test_exact(self):
        assert version_satisfies("1.2.3", "1.2.3")
        assert not version_satisfies("1.2.4", "1.2.3")

    @pytest.mark.parametrize("version_range", [">=1.0.0", "^1.0.0", "~1.4", "1.x || 2.x"])
    def test_npm_ranges(self, version_range):
        assert version_satisfies("1.4.0", version_range)

    def test_caret_excludes_next_major(self):
        assert not version_satisfies("2.0.0", "^1.0.0")

    def test_invalid_range(self):
        with pytest.raises(ValueError):
            version_satisfies("1.0.0", "not a range")


# =============================================================================
# PROVING
# =============================================================================

class TestProofArtifacts:

    def test_artifacts_cached_per_circuit(self):
        requests = []

        def handler(request):
            requests.append(request.url.path)
            return httpx.Response(200, content=request.url.path.encode())

        provider = ArtifactProvider("http://artifacts.test", transport=transport(handler))

        first = asyncio.run(provider.get('create'))
        second = asyncio.run(provider.get('create'))

        assert first == second
        assert first.prover_key == b"/keys/create.prover"
        assert first.zkir == b"/zkir/create.zkir"
        assert sorted(requests) == [
            "/keys/create.prover", "/keys/create.verifier", "/zkir/create.zkir"
        ]
        assert provider.cached_count == 3

    def test_verifier_keys(self):
        provider = ArtifactProvider(
            "http://artifacts.test",
            transport=transport(lambda r: httpx.Response(200, content=b"vk")),
        )
        keys = asyncio.run(provider.get_verifier_keys(['create', 'release']))
        assert keys == [('create', b"vk"), ('release', b"vk")]

    def test_prover_payload(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={'tx': b"proved".hex()})

        client = ProofServerClient("http://prover.test", transport=transport(handler))
        artifacts = [CircuitArtifacts('create', b"pk", b"vk", b"ir")]

        assert asyncio.run(client.prove(b"tx", artifacts)) == b"proved"
        assert seen[0]['circuits']['create']['proverKey'] == b"pk".hex()
        assert seen[0]['tx'] == b"tx".hex()
