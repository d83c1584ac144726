"""
External Service Clients
========================

Clients for the collaborators the pipeline consumes but does not build:

- IndexerClient: chain indexing service (GraphQL over HTTP)
- CustodyServiceClient: local wallet daemon (seed-held keys)
- HttpSignerBridge: delegated signer behind a DelegationHandle
- ProofServerClient: proof generation
- ArtifactProvider: compiled circuit artifacts, cached per circuit id
"""

from .http import ServiceClient
from .indexer import IndexerClient, RawContractState
from .custody import CustodyServiceClient, WalletEndpoints
from .signer import DelegationHandle, HttpSignerBridge, ServiceUris, version_satisfies
from .prover import ProofServerClient
from .artifacts import ArtifactProvider, CircuitArtifacts

__all__ = [
    'ServiceClient',
    'IndexerClient',
    'RawContractState',
    'CustodyServiceClient',
    'WalletEndpoints',
    'DelegationHandle',
    'HttpSignerBridge',
    'ServiceUris',
    'version_satisfies',
    'ProofServerClient',
    'ArtifactProvider',
    'CircuitArtifacts',
]
