"""
Custody Service Client

HTTP client for the locally-run wallet daemon that holds a seed-derived
wallet, keeps it synchronized with the chain, balances transactions
against its holdings and submits them to the node.

The daemon's internals (key derivation, encryption, sync algorithm) are
not ours; this module only speaks its wire format.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx

from ..config import EscrowConfig
from ..contracts import ValueRecord
from ..errors import MalformedState, SubmissionRejected
from .http import ServiceClient

# Statuses on which the node has looked at the transaction and said no
REJECTION_STATUSES = frozenset({400, 409, 422})


def raise_for_rejection(response: httpx.Response):
    """Map a node rejection to SubmissionRejected, keeping its reason verbatim."""
    if response.status_code not in REJECTION_STATUSES:
        return
    try:
        reason = response.json().get('reason')
    except (ValueError, AttributeError):
        reason = None
    raise SubmissionRejected(reason if reason else response.text)


def records_payload(records: Iterable[ValueRecord]) -> list:
    return [r.to_dict() for r in records]


def decode_hex_field(result: Any, name: str, service: str) -> bytes:
    try:
        return bytes.fromhex(result[name])
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedState(f"{service} response has no usable '{name}': {e}")


@dataclass(frozen=True)
class WalletEndpoints:
    """Services a custody wallet syncs against, proves with and submits to."""
    indexer_url: str
    indexer_ws_url: str
    proof_server_url: str
    node_url: str

    @classmethod
    def from_config(cls, config: EscrowConfig) -> 'WalletEndpoints':
        return cls(
            indexer_url=config.indexer_url,
            indexer_ws_url=config.resolved_indexer_ws_url,
            proof_server_url=config.proof_server_url,
            node_url=config.node_url,
        )

    def to_payload(self) -> dict:
        return {
            'indexer': self.indexer_url,
            'indexerWS': self.indexer_ws_url,
            'proverServer': self.proof_server_url,
            'substrateNode': self.node_url,
        }


class CustodyServiceClient(ServiceClient):
    """
    Endpoints:
        POST   /wallets               {seed, networkId, endpoints} -> {walletId}
        GET    /wallets/{id}/state
        POST   /wallets/{id}/balance  {tx, newCoins}    -> {tx}
        POST   /wallets/{id}/submit   {tx}              -> {txId}
        DELETE /wallets/{id}
    """

    service_name = "custody"

    async def open_wallet(
        self,
        seed: str,
        network_id: str,
        endpoints: Optional[WalletEndpoints] = None
    ) -> str:
        payload = {'seed': seed, 'networkId': network_id}
        if endpoints is not None:
            payload['endpoints'] = endpoints.to_payload()
        result = await self._post_json('/wallets', payload)
        try:
            return str(result['walletId'])
        except (KeyError, TypeError) as e:
            raise MalformedState(f"custody did not return a wallet id: {e}")

    async def wallet_state(self, wallet_id: str) -> dict:
        return await self._get_json(f"/wallets/{wallet_id}/state")

    async def balance_transaction(
        self,
        wallet_id: str,
        body: bytes,
        new_records: Iterable[ValueRecord]
    ) -> bytes:
        result = await self._post_json(
            f"/wallets/{wallet_id}/balance",
            {'tx': body.hex(), 'newCoins': records_payload(new_records)},
        )
        return decode_hex_field(result, 'tx', self.service_name)

    async def submit_transaction(self, wallet_id: str, body: bytes) -> str:
        response = await self._request(
            'POST', f"/wallets/{wallet_id}/submit", json={'tx': body.hex()}
        )
        raise_for_rejection(response)
        result = self._json(response)
        try:
            return str(result['txId'])
        except (KeyError, TypeError) as e:
            raise MalformedState(f"custody did not return a receipt id: {e}")

    async def close_wallet(self, wallet_id: str):
        self._check(await self._request('DELETE', f"/wallets/{wallet_id}"))
