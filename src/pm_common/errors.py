"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Session / authentication
  2xxx: Ledger
  3xxx: Market
  4xxx: Trade / settlement
  5xxx: Channel / chain
  9xxx: Transport / system

Every error carries a ``context`` dict (operation, nonce, last known state, ...)
so the caller can decide whether a retry is safe.
"""

from typing import Any


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        self.context: dict[str, Any] = dict(context or {})
        super().__init__(message)


# --- 1xxx: Session / authentication ---

class AuthenticationFailedError(AppError):
    def __init__(self, reason: str) -> None:
        super().__init__(
            1001,
            f"Authentication failed: {reason}",
            401,
            {"operation": "connect"},
        )


class InvalidStateError(AppError):
    """Operation issued outside its legal lifecycle state. Never retried."""

    def __init__(self, operation: str, state: str, allowed: tuple[str, ...] = ()) -> None:
        expected = f" (allowed: {', '.join(allowed)})" if allowed else ""
        super().__init__(
            1002,
            f"Operation {operation} not allowed in state {state}{expected}",
            409,
            {"operation": operation, "state": state},
        )
        self.operation = operation
        self.state = state


class ConfigurationError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(1003, f"Configuration error: {detail}", 500)


# --- 2xxx: Ledger ---

class InsufficientBalanceError(AppError):
    def __init__(
        self,
        asset: str,
        required: int,
        available: int | None = None,
        nonce: str | None = None,
    ) -> None:
        have = "unknown" if available is None else str(available)
        super().__init__(
            2001,
            f"Insufficient balance: required {required} {asset} raw units, available {have}",
            422,
            {"operation": "transfer", "asset": asset, "nonce": nonce},
        )


# --- 3xxx: Market ---

class MarketNotFoundError(AppError):
    def __init__(self, market_id: str) -> None:
        super().__init__(3001, f"Market not found: {market_id}", 404, {"market_id": market_id})


class MarketNotOpenError(AppError):
    def __init__(self, market_id: str, status: str) -> None:
        super().__init__(
            3002,
            f"Market is not open: {market_id} (status={status})",
            422,
            {"market_id": market_id, "state": status},
        )


class InvalidMarketTransitionError(AppError):
    def __init__(self, market_id: str, current: str, target: str) -> None:
        super().__init__(
            3003,
            f"Market {market_id} cannot move from {current} to {target}",
            422,
            {"market_id": market_id, "state": current},
        )


class MarketExistsError(AppError):
    def __init__(self, market_id: str) -> None:
        super().__init__(3004, f"Market already exists: {market_id}", 409, {"market_id": market_id})


# --- 4xxx: Trade / settlement ---

class SettlementFailedError(AppError):
    """Transfer sent but not confirmed. Query the ledger before any retry."""

    def __init__(self, operation: str, nonce: str, detail: str, state: str | None = None) -> None:
        super().__init__(
            4001,
            f"Settlement not confirmed for {operation} (nonce={nonce}): {detail}",
            504,
            {"operation": operation, "nonce": nonce, "state": state},
        )
        self.nonce = nonce


class SlippageExceededError(AppError):
    def __init__(self, cost: int, max_cost: int) -> None:
        super().__init__(
            4002,
            f"Trade cost {cost} exceeds max_cost {max_cost}",
            422,
            {"operation": "trade"},
        )


class NonceConsumedError(AppError):
    def __init__(self, nonce: str, status: str | None = None) -> None:
        super().__init__(
            4003,
            f"Nonce already consumed: {nonce}",
            409,
            {"nonce": nonce, "state": status},
        )
        self.nonce = nonce


class InvalidTradeError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(4004, f"Invalid trade: {detail}", 422, {"operation": "trade"})


# --- 5xxx: Channel / chain ---

class StaleStateError(AppError):
    """Channel version conflict. Re-fetch channel state before retrying."""

    def __init__(self, operation: str, expected_version: int, received_version: int) -> None:
        super().__init__(
            5001,
            f"Stale channel state on {operation}: expected version {expected_version},"
            f" got {received_version}",
            409,
            {"operation": operation, "expected": expected_version, "received": received_version},
        )


class ChannelNotFoundError(AppError):
    def __init__(self) -> None:
        super().__init__(5002, "No open channel", 404, {"operation": "channel"})


class ChainTransactionFailedError(AppError):
    def __init__(self, tx_hash: str, detail: str) -> None:
        super().__init__(
            5003,
            f"On-chain transaction {tx_hash} failed: {detail}",
            502,
            {"tx_hash": tx_hash},
        )


# --- 9xxx: Transport / system ---

class TransportError(AppError):
    """Connection dropped or unreachable. Recoverable by reconnect + re-authenticate."""

    def __init__(self, detail: str) -> None:
        super().__init__(9001, f"Transport error: {detail}", 503)


class RequestTimeoutError(AppError):
    """No matching response within the deadline. Reconcile via query before retrying."""

    def __init__(self, operation: str, request_id: int, timeout: float) -> None:
        super().__init__(
            9002,
            f"Request {operation} (id={request_id}) timed out after {timeout:.1f}s",
            504,
            {"operation": operation, "request_id": request_id},
        )
        self.operation = operation
        self.request_id = request_id


class RemoteError(AppError):
    """The clearing node answered with an error message."""

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(9003, f"Remote error on {operation}: {detail}", 502, {"operation": operation})
        self.operation = operation
        self.detail = detail


class ProtocolError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(9004, f"Malformed message: {detail}", 502)
