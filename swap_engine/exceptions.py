"""
Exceptions for the swap execution engine.

Every error carries a ``retryable`` flag. The worker uses it to decide whether
a failed job goes back to the queue with backoff or whether the order is
failed immediately.
"""

from typing import Dict, Optional


class SwapEngineError(Exception):
    """
    Base exception for all swap engine errors.

    All other exceptions inherit from this class, making it easy
    to catch any engine-related error.
    """
    retryable: bool = False


class UnknownTokenError(SwapEngineError):
    """Raised when a token symbol or mint address is not registered."""

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Token {token} not supported")


class InvalidTokenPairError(SwapEngineError):
    """Raised when the input and output tokens are the same."""

    def __init__(self, token_in: str, token_out: str):
        self.token_in = token_in
        self.token_out = token_out
        super().__init__("Token input and output must be different")


class VenueQuoteError(SwapEngineError):
    """
    Raised when a single venue fails to produce a quote.

    The aggregator absorbs these as long as another venue succeeds.
    """
    retryable = True

    def __init__(self, venue: str, message: str):
        self.venue = venue
        super().__init__(f"{venue} quote failed: {message}")


class VenueAPIError(SwapEngineError):
    """
    Raised for HTTP or payload errors returned by a venue API.

    Attributes:
        venue: Venue identifier
        status: HTTP status code (0 for network errors)
    """
    retryable = True

    def __init__(self, venue: str, status: int, message: str):
        self.venue = venue
        self.status = status
        super().__init__(f"{venue} API error {status}: {message}")


class PoolNotFoundError(SwapEngineError):
    """Raised when a venue has no liquidity pool for the token pair."""

    def __init__(self, venue: str, token_in: str, token_out: str):
        self.venue = venue
        self.token_in = token_in
        self.token_out = token_out
        super().__init__(f"No {venue} pool found for pair {token_in}/{token_out}")


class NoLiquidityAvailableError(SwapEngineError):
    """
    Raised when every configured venue failed to quote.

    Attributes:
        errors: Per-venue failure messages
    """

    def __init__(self, errors: Optional[Dict[str, str]] = None):
        self.errors = errors or {}
        detail = "; ".join(f"{venue}: {msg}" for venue, msg in self.errors.items())
        message = "No valid quotes available from any DEX"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class VenueBuildError(SwapEngineError):
    """
    Raised when a venue fails to build the swap transaction.

    The underlying exception is kept as ``cause`` and chained.
    """
    retryable = True

    def __init__(self, venue: str, message: str, cause: Optional[BaseException] = None):
        self.venue = venue
        self.cause = cause
        super().__init__(f"{venue} swap build failed: {message}")


class SettlementError(SwapEngineError):
    """Raised when transaction submission or confirmation fails."""
    retryable = True

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class QueueExhaustedError(SwapEngineError):
    """Raised when a job has used up all of its attempts."""

    def __init__(self, order_id: str, attempts: int, last_error: str):
        self.order_id = order_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Giving up after {attempts} attempts: {last_error}")


class JobLockLostError(SwapEngineError):
    """
    Raised when a worker no longer holds the lock on the job it is running.

    The attempt is abandoned without recording an outcome; the queue hands the
    job out again once stalled recovery picks it up.
    """
    retryable = True

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Lock lost on job {order_id}")


class OrderNotFoundError(SwapEngineError):
    """Raised when an order cannot be found in the order store."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidTransitionError(SwapEngineError):
    """
    Raised when an order update would break the state machine.

    Covers backward moves, moves out of a terminal state, rewrites of
    write-once fields and errors attached to a non-failed status.
    """

    def __init__(self, order_id: str, message: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id}: {message}")


class ConfigurationError(SwapEngineError):
    """Raised for missing or invalid configuration values."""
    pass
