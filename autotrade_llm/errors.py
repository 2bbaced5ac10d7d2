"""
Error taxonomy for the trading agent.

Infrastructure errors carry a ``retryable`` flag read by the retry policy.
Tool-level errors (TradingError, ValidationError) are turned into result
strings by the dispatcher and never reach the session loop.
"""

from typing import Any, Dict, Optional


class AutoTradeError(Exception):
    """Base exception with optional diagnostic context"""
    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context


class NetworkError(AutoTradeError):
    """Timeouts, DNS failures, connection resets"""
    retryable = True


class ApiError(AutoTradeError):
    """Remote API rejected the request (auth, permission, rate limit, server error)"""

    def __init__(self, message: str, status: Optional[int] = None, **context: Any):
        super().__init__(message, **context)
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status is not None and (self.status == 429 or 500 <= self.status < 600)


class TradingError(AutoTradeError):
    """Order rejected before submission (insufficient funds/shares, short eligibility)"""
    pass


class ValidationError(AutoTradeError):
    """Malformed tool arguments or ticker symbols"""
    pass


class ConfigurationError(AutoTradeError):
    """Missing credentials or invalid configuration, fatal at startup"""
    pass


class ThreadCorruptionError(AutoTradeError):
    """Persisted conversation thread violates a structural invariant"""

    def __init__(self, message: str, reason: str = "corrupted", **context: Any):
        super().__init__(message, **context)
        self.reason = reason
