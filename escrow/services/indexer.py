"""
Chain Indexer Client

GraphQL-over-HTTP queries against the chain indexing service.

"Not yet indexed" is a legitimate answer, not an error: every query
returns None (or TransactionStatus.UNKNOWN) when the indexer has no data.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import logging

from ..contracts import TransactionStatus
from ..errors import MalformedState, ServiceUnavailable
from .http import ServiceClient

logger = logging.getLogger(__name__)


CONTRACT_STATE_QUERY = """
query ContractState($address: String!) {
  contractState(address: $address) {
    address
    state
    blockHeight
  }
}
"""

CHAIN_STATE_QUERY = """
query ChainState($address: String!) {
  zswapChainState(address: $address) {
    firstFree
    commitments
  }
}
"""

TRANSACTION_QUERY = """
query Transaction($hash: String!) {
  transaction(hash: $hash) {
    hash
    status
  }
}
"""


@dataclass(frozen=True)
class RawContractState:
    """State blob exactly as the indexer returned it."""
    address: str
    raw: bytes
    block_height: Optional[int] = None


class IndexerClient(ServiceClient):
    """Read-only client. Queries may lag the chain tip arbitrarily."""

    service_name = "indexer"

    async def query(self, query: str, variables: dict) -> dict:
        """Run a GraphQL query, returning its `data` object."""
        result = await self._post_json(payload={'query': query, 'variables': variables})
        if not isinstance(result, dict):
            raise MalformedState("indexer response is not an object")
        if result.get('errors'):
            messages = '; '.join(
                str(e.get('message', e)) if isinstance(e, dict) else str(e)
                for e in result['errors']
            )
            raise ServiceUnavailable(self.service_name, f"GraphQL errors: {messages}")
        return result.get('data') or {}

    async def query_contract_state(self, address: str) -> Optional[RawContractState]:
        data = await self.query(CONTRACT_STATE_QUERY, {'address': address})
        node = data.get('contractState')
        if not node or not node.get('state'):
            logger.debug("Contract %s not yet indexed", address)
            return None
        try:
            raw = bytes.fromhex(node['state'])
        except (TypeError, ValueError) as e:
            raise MalformedState(f"Contract state is not hex: {e}")
        height = node.get('blockHeight')
        return RawContractState(
            address=node.get('address', address),
            raw=raw,
            block_height=int(height) if height is not None else None,
        )

    async def query_chain_state(self, address: str) -> Optional[dict]:
        data = await self.query(CHAIN_STATE_QUERY, {'address': address})
        return data.get('zswapChainState') or None

    async def query_transaction(self, tx_id: str) -> TransactionStatus:
        data = await self.query(TRANSACTION_QUERY, {'hash': tx_id})
        node = data.get('transaction')
        if not node:
            return TransactionStatus.UNKNOWN
        try:
            return TransactionStatus(str(node.get('status', '')).lower())
        except ValueError:
            return TransactionStatus.UNKNOWN
