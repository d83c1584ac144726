"""
Delegated Signer Handle
=======================

A delegated signer (browser-resident wallet extension) holds the keys
and does its own coin bookkeeping. The orchestrator reaches it through a
handle satisfying a semantic-versioned capability contract.

BOUNDARY ENFORCEMENT:
- The handle's API version is checked before anything else is used
- Transactions cross this boundary as hex bodies, mapped by the session
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional

import httpx
from semantic_version import NpmSpec, Version

from ..config import DEFAULT_PROOF_TIMEOUT_SECONDS, EscrowConfig
from ..contracts import ValueRecord
from ..errors import MalformedState
from .custody import decode_hex_field, raise_for_rejection, records_payload
from .http import ServiceClient


def version_satisfies(version: str, version_range: str) -> bool:
    """
    Check `version` against an npm-style range such as "1.x", "^1.2.0"
    or "1.x || 2.x". Partial versions like "1.7" are coerced; an
    unparseable version is never compatible.

    Raises ValueError for an invalid range.
    """
    spec = NpmSpec(version_range)
    try:
        candidate = Version.coerce(version.strip().lstrip('vV'))
    except ValueError:
        return False
    return spec.match(candidate)


@dataclass(frozen=True)
class ServiceUris:
    """Service endpoints the signer is configured with."""
    indexer_uri: Optional[str] = None
    prover_server_uri: Optional[str] = None
    substrate_node_uri: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'ServiceUris':
        data = data or {}
        return cls(
            indexer_uri=data.get('indexerUri'),
            prover_server_uri=data.get('proverServerUri'),
            substrate_node_uri=data.get('substrateNodeUri'),
        )


class DelegationHandle(ABC):
    """Capability contract of a delegated signer."""

    @abstractmethod
    async def api_version(self) -> str:
        pass

    @abstractmethod
    async def is_enabled(self) -> bool:
        pass

    @abstractmethod
    async def enable(self) -> None:
        pass

    @abstractmethod
    async def state(self) -> dict:
        pass

    @abstractmethod
    async def service_uris(self) -> ServiceUris:
        pass

    @abstractmethod
    async def balance_transaction(self, body: bytes, new_records: Iterable[ValueRecord]) -> bytes:
        pass

    @abstractmethod
    async def prove_transaction(self, body: bytes) -> bytes:
        pass

    @abstractmethod
    async def submit_transaction(self, body: bytes) -> str:
        """Returns the receipt id. Raises SubmissionRejected on node rejection."""
        pass

    async def close(self) -> None:
        """Delegated signers outlive the session; nothing to release by default."""
        return None


class HttpSignerBridge(ServiceClient, DelegationHandle):
    """
    Handle reached through a local bridge to the browser extension.

    Endpoints:
        GET  /api           -> {apiVersion, enabled}
        POST /enable
        GET  /state
        GET  /service-uris
        POST /balance       {tx, newCoins} -> {tx}
        POST /prove         {tx}           -> {tx}
        POST /submit        {tx}           -> {txId}

    Proving runs under `prove_timeout`; every other call under the
    ordinary request timeout.
    """

    service_name = "signer-bridge"

    def __init__(
        self,
        base_url: str,
        prove_timeout: float = DEFAULT_PROOF_TIMEOUT_SECONDS,
        **kwargs
    ):
        super().__init__(base_url, **kwargs)
        self._prove_timeout = prove_timeout

    @classmethod
    def for_config(
        cls,
        base_url: str,
        config: EscrowConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> 'HttpSignerBridge':
        return cls(
            base_url,
            prove_timeout=config.proof_timeout_seconds,
            timeout=config.request_timeout_seconds,
            transport=transport,
        )

    @property
    def prove_timeout(self) -> float:
        return self._prove_timeout

    async def _api_info(self) -> dict:
        info = await self._get_json('/api')
        if not isinstance(info, dict):
            raise MalformedState("signer bridge /api is not an object")
        return info

    async def api_version(self) -> str:
        return str((await self._api_info()).get('apiVersion', ''))

    async def is_enabled(self) -> bool:
        return bool((await self._api_info()).get('enabled', False))

    async def enable(self) -> None:
        self._check(await self._request('POST', '/enable'))

    async def state(self) -> dict:
        return await self._get_json('/state')

    async def service_uris(self) -> ServiceUris:
        return ServiceUris.from_dict(await self._get_json('/service-uris'))

    async def balance_transaction(self, body: bytes, new_records: Iterable[ValueRecord]) -> bytes:
        result = await self._post_json(
            '/balance', {'tx': body.hex(), 'newCoins': records_payload(new_records)}
        )
        return decode_hex_field(result, 'tx', self.service_name)

    async def prove_transaction(self, body: bytes) -> bytes:
        result = await self._post_json(
            '/prove', {'tx': body.hex()}, timeout=self._prove_timeout
        )
        return decode_hex_field(result, 'tx', self.service_name)

    async def submit_transaction(self, body: bytes) -> str:
        response = await self._request('POST', '/submit', json={'tx': body.hex()})
        raise_for_rejection(response)
        result = self._json(response)
        try:
            return str(result['txId'])
        except (KeyError, TypeError) as e:
            raise MalformedState(f"signer bridge did not return a receipt id: {e}")
