"""
Proof Artifact Provider

Fetches compiled circuit artifacts (prover key, verifier key, circuit IR)
by circuit identifier.

Artifacts are immutable per circuit id, so every successful fetch is
cached for the lifetime of the provider.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Tuple
import asyncio

from .http import ServiceClient


@dataclass(frozen=True)
class CircuitArtifacts:
    circuit_id: str
    prover_key: bytes
    verifier_key: bytes
    zkir: bytes


class ArtifactProvider(ServiceClient):
    """
    Layout under the base URL:

        keys/<circuit>.prover
        keys/<circuit>.verifier
        zkir/<circuit>.zkir
    """

    service_name = "artifacts"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._cache: Dict[Tuple[str, str], bytes] = {}

    async def _fetch(self, kind: str, path: str) -> bytes:
        key = (kind, path)
        if key not in self._cache:
            response = self._check(await self._request('GET', path))
            self._cache[key] = response.content
        return self._cache[key]

    async def get_prover_key(self, circuit_id: str) -> bytes:
        return await self._fetch('prover', f"/keys/{circuit_id}.prover")

    async def get_verifier_key(self, circuit_id: str) -> bytes:
        return await self._fetch('verifier', f"/keys/{circuit_id}.verifier")

    async def get_circuit_ir(self, circuit_id: str) -> bytes:
        return await self._fetch('zkir', f"/zkir/{circuit_id}.zkir")

    async def get_verifier_keys(self, circuit_ids: List[str]) -> List[Tuple[str, bytes]]:
        keys = await asyncio.gather(*(self.get_verifier_key(c) for c in circuit_ids))
        return list(zip(circuit_ids, keys))

    async def get(self, circuit_id: str) -> CircuitArtifacts:
        zkir, prover_key, verifier_key = await asyncio.gather(
            self.get_circuit_ir(circuit_id),
            self.get_prover_key(circuit_id),
            self.get_verifier_key(circuit_id),
        )
        return CircuitArtifacts(
            circuit_id=circuit_id,
            prover_key=prover_key,
            verifier_key=verifier_key,
            zkir=zkir,
        )

    @property
    def cached_count(self) -> int:
        return len(self._cache)
