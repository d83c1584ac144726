"""
Connection Site

Builds a ready EscrowOrchestrator for one wallet mode.

BOUNDARY ENFORCEMENT:
This is the ONLY place that branches on the wallet mode. Everything
mode-specific (session, coin selector, execution-read fallback, private
state id) is chosen here and injected; downstream code never asks.
"""

from __future__ import annotations
from pathlib import Path
from typing import Optional
import logging

import httpx

from .coins import FirstFitSelector, PlaceholderSelector
from .config import EscrowConfig
from .errors import ConfigError, EscrowError, IncompatibleSigner, SignerNotEnabled
from .orchestrator import EscrowOrchestrator
from .private_state import PrivateStateStore
from .services.artifacts import ArtifactProvider
from .services.custody import CustodyServiceClient, WalletEndpoints
from .services.indexer import IndexerClient
from .services.prover import ProofServerClient
from .services.signer import DelegationHandle, HttpSignerBridge, version_satisfies
from .state_reader import ContractStateReader, EmptyStatePolicy, RetryPolicy
from .wallet.base import WalletSession
from .wallet.delegated import DelegatedWalletSession
from .wallet.local import LocalWalletSession

logger = logging.getLogger(__name__)

DEFAULT_SYNC_TIMEOUT_SECONDS = 300.0


def _open_store(config: EscrowConfig, store: Optional[PrivateStateStore]) -> PrivateStateStore:
    if store is not None:
        return store
    return PrivateStateStore(Path(config.storage_path), config.private_state_store)


async def _await_sync(session: WalletSession, timeout: float):
    try:
        return await session.wait_until_synced(timeout)
    except EscrowError:
        await session.close()
        raise


async def connect_local(
    config: EscrowConfig,
    seed: str,
    sync_timeout: float = DEFAULT_SYNC_TIMEOUT_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    store: Optional[PrivateStateStore] = None
) -> EscrowOrchestrator:
    """
    Start a custody wallet from `seed`, wait for it to sync and wire a
    local-mode orchestrator around it.
    """
    if not seed:
        raise ConfigError("A wallet seed is required in local mode")
    if not config.custody_url:
        raise ConfigError("custody_url is required in local mode")

    timeout = config.request_timeout_seconds
    custody = CustodyServiceClient(config.custody_url, timeout=timeout, transport=transport)
    # The session's proof deadline is authoritative; the HTTP timeout only backs it up
    prover = ProofServerClient(
        config.proof_server_url, timeout=config.proof_timeout_seconds, transport=transport
    )
    artifacts = ArtifactProvider(
        config.resolved_artifact_base_url, timeout=timeout, transport=transport
    )
    indexer = IndexerClient(config.indexer_url, timeout=timeout, transport=transport)

    session = await LocalWalletSession.open(
        custody, seed, config.network_id, prover, artifacts,
        endpoints=WalletEndpoints.from_config(config),
        proof_timeout_seconds=config.proof_timeout_seconds,
        sync_poll_interval_seconds=config.sync_poll_interval_seconds,
    )
    state = await _await_sync(session, sync_timeout)
    logger.info("Local wallet ready: %s (balance %d)", state.address, state.native_balance)

    return EscrowOrchestrator(
        config=config,
        session=session,
        selector=FirstFitSelector(session.read_records),
        reader=ContractStateReader(
            indexer,
            RetryPolicy(config.state_retry_attempts, config.state_retry_delay_seconds),
        ),
        store=_open_store(config, store),
        private_state_id=config.private_state_id,
    )


async def connect_delegated(
    config: EscrowConfig,
    handle: Optional[DelegationHandle] = None,
    sync_timeout: float = DEFAULT_SYNC_TIMEOUT_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    store: Optional[PrivateStateStore] = None
) -> EscrowOrchestrator:
    """
    Wire a delegated-mode orchestrator around an external signer.

    Without a `handle`, the signer is reached through the HTTP bridge at
    `config.signer_bridge_url`. The signer's API version is checked
    before any state is read.
    """
    if handle is None:
        if not config.signer_bridge_url:
            raise ConfigError("signer_bridge_url is required without a signer handle")
        handle = HttpSignerBridge.for_config(config.signer_bridge_url, config, transport)

    api_version = await handle.api_version()
    if not version_satisfies(api_version, config.signer_api_range):
        raise IncompatibleSigner(api_version, config.signer_api_range)

    if not await handle.is_enabled():
        await handle.enable()
        if not await handle.is_enabled():
            raise SignerNotEnabled("Signer declined to enable this application")

    uris = await handle.service_uris()
    indexer_url = uris.indexer_uri or config.indexer_url
    if indexer_url != config.indexer_url:
        logger.info("Using signer-configured indexer %s", indexer_url)
    indexer = IndexerClient(
        indexer_url, timeout=config.request_timeout_seconds, transport=transport
    )

    session = DelegatedWalletSession(
        handle,
        proof_timeout_seconds=config.proof_timeout_seconds,
        sync_poll_interval_seconds=config.sync_poll_interval_seconds,
    )
    state = await _await_sync(session, sync_timeout)
    logger.info("Delegated signer ready: %s (API %s)", state.address, api_version)

    return EscrowOrchestrator(
        config=config,
        session=session,
        selector=PlaceholderSelector(),
        reader=ContractStateReader(indexer, EmptyStatePolicy()),
        store=_open_store(config, store),
        private_state_id=state.address,
    )
