"""
Escrow Configuration

Loads and validates orchestrator configuration from a JSON file.

WHY FROZEN:
Configuration is threaded explicitly through construction of the
orchestrator, sessions and service clients. There is no process-wide
network id or proof timeout to mutate; a change means a new instance.
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Optional
import json

from semantic_version import NpmSpec

from .errors import ConfigError


class NetworkId(Enum):
    """Ledger networks an escrow contract can live on."""
    UNDEPLOYED = "undeployed"
    DEVNET = "devnet"
    TESTNET = "testnet"
    MAINNET = "mainnet"

    @property
    def address_suffix(self) -> str:
        """Suffix appended to shielded address prefixes on this network."""
        if self == NetworkId.MAINNET:
            return ""
        if self == NetworkId.TESTNET:
            return "_test"
        if self == NetworkId.DEVNET:
            return "_dev"
        return "_undeployed"


DEFAULT_PROOF_TIMEOUT_SECONDS = 900.0  # 15 minutes


@dataclass(frozen=True)
class EscrowConfig:
    """Everything the pipeline needs to reach its collaborators."""
    contract_address: str
    indexer_url: str
    node_url: str
    proof_server_url: str
    network_id: NetworkId = NetworkId.TESTNET
    indexer_ws_url: Optional[str] = None
    custody_url: Optional[str] = None
    signer_bridge_url: Optional[str] = None
    artifact_base_url: Optional[str] = None

    # Timeouts
    proof_timeout_seconds: float = DEFAULT_PROOF_TIMEOUT_SECONDS
    request_timeout_seconds: float = 30.0

    # Retry policy - explicit and bounded
    state_retry_attempts: int = 3
    state_retry_delay_seconds: float = 2.0
    qualification_attempts: int = 5
    qualification_delay_seconds: float = 5.0
    sync_poll_interval_seconds: float = 1.0

    signer_api_range: str = "1.x"

    # Private state
    private_state_store: str = "escrow-state"
    private_state_id: str = "escrow-state"
    storage_path: str = "./data/private_state"

    def __post_init__(self):
        if not self.contract_address:
            raise ConfigError("contract_address is required")
        for name in ('indexer_url', 'node_url', 'proof_server_url'):
            if not getattr(self, name):
                raise ConfigError(f"{name} is required")
        if self.proof_timeout_seconds <= 0:
            raise ConfigError("proof_timeout_seconds must be positive")
        if self.request_timeout_seconds <= 0:
            raise ConfigError("request_timeout_seconds must be positive")
        if self.state_retry_attempts < 1:
            raise ConfigError("state_retry_attempts must be at least 1")
        if self.qualification_attempts < 1:
            raise ConfigError("qualification_attempts must be at least 1")
        for name in ('state_retry_delay_seconds', 'qualification_delay_seconds',
                     'sync_poll_interval_seconds'):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        try:
            NpmSpec(self.signer_api_range)
        except ValueError:
            raise ConfigError(f"Invalid signer_api_range: {self.signer_api_range!r}")

    @property
    def resolved_indexer_ws_url(self) -> str:
        """WebSocket endpoint, derived from the HTTP one when not configured."""
        if self.indexer_ws_url:
            return self.indexer_ws_url
        return self.indexer_url.replace('http', 'ws', 1) + '/ws'

    @property
    def resolved_artifact_base_url(self) -> str:
        return self.artifact_base_url or self.proof_server_url

    def with_overrides(self, **overrides) -> 'EscrowConfig':
        return replace(self, **overrides)

    @classmethod
    def from_dict(cls, data: dict) -> 'EscrowConfig':
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        values = dict(data)
        if 'network_id' in values:
            try:
                values['network_id'] = NetworkId(str(values['network_id']).lower())
            except ValueError:
                raise ConfigError(f"Unknown network_id: {values['network_id']}")
        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigError(str(e))

    @classmethod
    def load(cls, config_path: Path) -> 'EscrowConfig':
        """Load configuration from a JSON file."""
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
        return cls.from_dict(config)
