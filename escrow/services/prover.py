"""
Proof Server Client

Sends a balanced transaction plus the artifacts of the circuits it calls
to the proof server and returns the proved transaction body.

Proving takes minutes. This client applies no deadline of its own beyond
the HTTP timeout it is built with; the wallet session bounds the call and
cancels it on expiry.
"""

from __future__ import annotations
from typing import Iterable

from ..errors import MalformedState
from .artifacts import CircuitArtifacts
from .http import ServiceClient


class ProofServerClient(ServiceClient):

    service_name = "proof-server"

    async def prove(self, body: bytes, artifacts: Iterable[CircuitArtifacts]) -> bytes:
        payload = {
            'tx': body.hex(),
            'circuits': {
                a.circuit_id: {
                    'proverKey': a.prover_key.hex(),
                    'verifierKey': a.verifier_key.hex(),
                    'zkir': a.zkir.hex(),
                }
                for a in artifacts
            },
        }
        result = await self._post_json('/prove', payload)
        try:
            return bytes.fromhex(result['tx'])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedState(f"proof server returned no proved tx: {e}")
