"""
Escrow Error Taxonomy
=====================

Typed failures raised by every component below the orchestrator.

BOUNDARY ENFORCEMENT:
- Components raise, they never log-and-swallow
- The orchestrator is the ONLY place these become user-facing results
- Every error carries its code and whether the caller may retry
"""

from __future__ import annotations
from enum import Enum
from typing import Optional


class EscrowErrorCode(Enum):
    """Explicit failure codes for escrow operations."""
    INVALID_ADDRESS = "invalid_address"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    INCOMPATIBLE_SIGNER = "incompatible_signer"
    SIGNER_NOT_ENABLED = "signer_not_enabled"
    INDEXER_UNAVAILABLE = "indexer_unavailable"
    PROOF_TIMEOUT = "proof_timeout"
    SUBMISSION_REJECTED = "submission_rejected"
    OPERATION_IN_PROGRESS = "operation_in_progress"
    WALLET_NOT_SYNCED = "wallet_not_synced"
    SERVICE_UNAVAILABLE = "service_unavailable"
    ESCROW_NOT_INDEXED = "escrow_not_indexed"
    ESCROW_ALREADY_RELEASED = "escrow_already_released"
    MALFORMED_STATE = "malformed_state"
    CIRCUIT_ERROR = "circuit_error"
    UNSUPPORTED_CAPABILITY = "unsupported_capability"
    INTENT_CONSUMED = "intent_consumed"
    INTERNAL_ERROR = "internal_error"


class EscrowError(Exception):
    """Base class. Subclasses pin `code` and `retryable`."""

    code: EscrowErrorCode = EscrowErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidAddress(EscrowError):
    code = EscrowErrorCode.INVALID_ADDRESS


class InsufficientBalance(EscrowError):
    code = EscrowErrorCode.INSUFFICIENT_BALANCE

    def __init__(self, required: int):
        super().__init__(f"No coin found with sufficient balance (need {required})")
        self.required = required


class IncompatibleSigner(EscrowError):
    code = EscrowErrorCode.INCOMPATIBLE_SIGNER

    def __init__(self, api_version: str, required_range: str):
        super().__init__(
            f"Incompatible signer API {api_version} (required {required_range})"
        )
        self.api_version = api_version
        self.required_range = required_range


class SignerNotEnabled(EscrowError):
    code = EscrowErrorCode.SIGNER_NOT_ENABLED


class IndexerUnavailable(EscrowError):
    code = EscrowErrorCode.INDEXER_UNAVAILABLE
    retryable = True


class ProofTimeout(EscrowError):
    code = EscrowErrorCode.PROOF_TIMEOUT
    retryable = True

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Proof generation timed out after {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds


class SubmissionRejected(EscrowError):
    """Node rejected the transaction. `reason` is the node's text, verbatim."""
    code = EscrowErrorCode.SUBMISSION_REJECTED

    def __init__(self, reason: str):
        super().__init__(f"Submission rejected: {reason}")
        self.reason = reason


class OperationInProgress(EscrowError):
    code = EscrowErrorCode.OPERATION_IN_PROGRESS

    def __init__(self, running: str):
        super().__init__(f"Another escrow operation is in flight: {running}")
        self.running = running


class WalletNotSynced(EscrowError):
    code = EscrowErrorCode.WALLET_NOT_SYNCED
    retryable = True


class ServiceUnavailable(EscrowError):
    code = EscrowErrorCode.SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, service: str, detail: str, status: Optional[int] = None):
        super().__init__(f"{service} unavailable: {detail}")
        self.service = service
        self.status = status


class EscrowNotIndexed(EscrowError):
    code = EscrowErrorCode.ESCROW_NOT_INDEXED
    retryable = True

    def __init__(self, escrow_id: int, detail: str):
        super().__init__(f"Escrow {escrow_id} not indexed yet: {detail}")
        self.escrow_id = escrow_id


class EscrowAlreadyReleased(EscrowError):
    code = EscrowErrorCode.ESCROW_ALREADY_RELEASED

    def __init__(self, escrow_id: int):
        super().__init__(f"Escrow {escrow_id} has already been released")
        self.escrow_id = escrow_id


class MalformedState(EscrowError):
    code = EscrowErrorCode.MALFORMED_STATE


class CircuitError(EscrowError):
    code = EscrowErrorCode.CIRCUIT_ERROR


class UnknownCircuit(CircuitError):

    def __init__(self, circuit_id: str):
        super().__init__(f"Unknown circuit: {circuit_id}")
        self.circuit_id = circuit_id


class UnsupportedCapability(EscrowError):
    code = EscrowErrorCode.UNSUPPORTED_CAPABILITY


class IntentAlreadyConsumed(EscrowError):
    code = EscrowErrorCode.INTENT_CONSUMED


class SessionAlreadyClaimed(EscrowError):
    """A wallet session may back only one orchestrator."""


class StageOrderError(EscrowError):
    """A transaction stage was asked to move anywhere but forward by one."""


class ConfigError(ValueError):
    """Invalid configuration value."""
