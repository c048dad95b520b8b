"""
Custom exception classes for the ledger engine.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict, Sequence


class HydroCredException(Exception):
    """Base exception class for the HydroCred ledger engine."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(HydroCredException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class ChainError(HydroCredException):
    """Raised when a blockchain call fails, carrying a user-facing error code."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code, details)


class EndpointUnavailable(HydroCredException):
    """Raised when no configured RPC endpoint answers the liveness probe."""

    def __init__(self, endpoints: Sequence[str], errors: Optional[Dict[str, str]] = None):
        super().__init__(
            f"All {len(endpoints)} RPC endpoints failed",
            "ENDPOINT_UNAVAILABLE",
            {"endpoints": list(endpoints), "errors": errors or {}}
        )


class ReadExhausted(HydroCredException):
    """Raised when every retry attempt of a read operation has failed."""

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException] = None):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Read '{operation}' failed after {attempts} attempts: {last_error}",
            "READ_EXHAUSTED",
            {"operation": operation, "attempts": attempts, "last_error": str(last_error)}
        )


class PartialFetchFailure(HydroCredException):
    """Raised when one or more event categories could not be fetched."""

    def __init__(self, failed: Dict[str, BaseException], succeeded: Sequence[str] = ()):
        self.failed = dict(failed)
        super().__init__(
            f"Event fetch failed for categories: {', '.join(sorted(failed))}",
            "PARTIAL_FETCH_FAILURE",
            {
                "failed": {name: str(err) for name, err in failed.items()},
                "succeeded": list(succeeded),
            }
        )


class MalformedEvent(HydroCredException):
    """Raised when a log entry lacks the fields its category requires."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "MALFORMED_EVENT", details)


class CursorStoreError(HydroCredException):
    """Raised when the sync cursor cannot be read or written."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CURSOR_STORE_ERROR", details)


# Aliases used by callers of the outbound interface
NoEndpointAvailable = EndpointUnavailable
AllAttemptsExhausted = ReadExhausted


def classify_chain_error(error: BaseException) -> ChainError:
    """
    Map a raw provider/RPC error onto a ChainError with a stable code.

    Args:
        error: Exception raised by web3 or the transport

    Returns:
        ChainError suitable for user-visible messaging
    """
    if isinstance(error, ChainError):
        return error

    code = getattr(error, "code", None)
    if code is None and error.args and isinstance(error.args[0], dict):
        code = error.args[0].get("code")
    message = str(error) or type(error).__name__
    lowered = message.lower()

    if code == 4001 or "user rejected" in lowered:
        return ChainError("Transaction rejected by user", "USER_REJECTED")
    if code == -32603:
        return ChainError("Internal JSON-RPC error", "RPC_ERROR")
    if "insufficient funds" in lowered:
        return ChainError("Insufficient funds for transaction", "INSUFFICIENT_FUNDS")
    if isinstance(error, TimeoutError) or "timed out" in lowered or "timeout" in lowered:
        return ChainError("Request to RPC endpoint timed out", "TIMEOUT")
    return ChainError(message, "UNKNOWN")
