"""Error taxonomy for the rewards core.

Every error carries a stable ``code`` so callers at the boundary can map it
without parsing messages.
"""


class RewardsError(Exception):
    """Base exception for rewards core errors"""
    code = "rewards_error"


class ValidationError(RewardsError):
    """Bad input rejected locally, before any ledger mutation"""
    code = "validation_error"


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class InvalidAddress(ValidationError):
    code = "invalid_address"


class LimitExceeded(ValidationError):
    """Requested amount is above what the identity may still claim"""
    code = "limit_exceeded"


class StateConflictError(RewardsError):
    """Ledger state does not allow the transition"""
    code = "state_conflict"


class RequestAlreadyPending(StateConflictError):
    code = "request_already_pending"


class NoPendingRequest(StateConflictError):
    code = "no_pending_request"


class AuthorizationError(RewardsError):
    code = "authorization_error"


class Unauthorized(AuthorizationError):
    """Caller is not the designated approver"""
    code = "unauthorized"


class TransientNetworkError(RewardsError):
    """Telemetry failure that resolves to a zero score for one identity"""
    code = "transient_network_error"


class TelemetryTimeout(TransientNetworkError):
    code = "telemetry_timeout"


class TelemetryNotFound(TransientNetworkError):
    code = "telemetry_not_found"


class MalformedTelemetryResponse(RewardsError):
    code = "malformed_telemetry_response"


class LedgerUnavailableError(RewardsError):
    code = "ledger_unavailable"


class CredentialError(RewardsError):
    code = "credential_error"
