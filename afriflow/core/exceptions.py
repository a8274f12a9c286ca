"""
AfriFlow Exception Hierarchy

All exceptions inherit from AfriFlowError for easy catching.

Categories:
    ValidationError     rejected before any funds move, never retried
    AuthorizationError  fatal for the current request
    TransientError      facilitator/network trouble, recovered by fallback
    StateError          operation illegal for the record's current state
    FatalError          programmer or accounting error, halts the operation
"""


class AfriFlowError(Exception):
    """Base exception for all AfriFlow errors"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


# ── Categories ────────────────────────────────────────────────

class ValidationError(AfriFlowError):
    """Raised when a request fails validation"""
    pass


class AuthorizationError(AfriFlowError):
    """Raised when a transfer authorization cannot be produced or trusted"""
    pass


class TransientError(AfriFlowError):
    """Raised for recoverable network or timeout failures"""
    pass


class StateError(AfriFlowError):
    """Raised when an operation is illegal for the current state"""
    pass


class FatalError(AfriFlowError):
    """Raised on programmer or accounting errors. Never swallow."""
    pass


# ── Validation ────────────────────────────────────────────────

class InvalidAmount(ValidationError):
    pass


class InvalidRecipient(ValidationError):
    pass


class UnsupportedToken(ValidationError):
    pass


class UnsupportedCorridor(ValidationError):
    pass


class InvalidMilestoneSet(ValidationError):
    pass


class InvalidBatch(ValidationError):
    pass


class InsufficientBalance(ValidationError):
    pass


class ConfigError(ValidationError):
    """Raised when configuration values are missing or out of bounds"""
    pass


# ── Authorization ─────────────────────────────────────────────

class MissingSigningKey(AuthorizationError):
    pass


class InvalidSignature(AuthorizationError):
    pass


class AuthorizationExpired(AuthorizationError):
    pass


# ── Transient ─────────────────────────────────────────────────

class FacilitatorError(TransientError):
    """Raised when the settlement facilitator is unreachable or refuses"""

    def __init__(self, message: str, status_code: int = None, details: dict = None):
        super().__init__(message, details)
        self.status_code = status_code


class DeadlineExceeded(TransientError):
    pass


# ── State ─────────────────────────────────────────────────────

class InvalidStateTransition(StateError):
    pass


class MilestoneNotPending(StateError):
    pass


class NotAuthorized(StateError):
    pass


class EscrowNotActive(StateError):
    pass


class NoDisputeActive(StateError):
    pass


class DisputeWindowExpired(StateError):
    pass


class ServicePaused(StateError):
    pass


class NotFound(StateError):
    pass


# ── Fatal ─────────────────────────────────────────────────────

class DuplicateId(FatalError):
    pass


class AccountingMismatch(FatalError):
    pass


# ── Combined ──────────────────────────────────────────────────

class SettlementFailed(AfriFlowError):
    """
    Raised when both the facilitator and the direct fallback failed.
    details carries both causes.
    """
    pass
