"""Global enums — values must match the clearing node wire strings exactly."""

from enum import Enum


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    CHANNEL_PENDING = "channel_pending"
    CHANNEL_ACTIVE = "channel_active"
    CLOSING = "closing"
    CLOSED = "closed"
    ERROR = "error"


class ChannelStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    OPEN = "open"
    RESIZING = "resizing"
    CLOSING = "closing"
    CLOSED = "closed"


class RpcMethod(str, Enum):
    AUTH_REQUEST = "auth_request"
    AUTH_CHALLENGE = "auth_challenge"
    AUTH_VERIFY = "auth_verify"
    GET_CONFIG = "get_config"
    GET_CHANNELS = "get_channels"
    GET_LEDGER_BALANCES = "get_ledger_balances"
    GET_LEDGER_TRANSACTIONS = "get_ledger_transactions"
    TRANSFER = "transfer"
    CREATE_CHANNEL = "create_channel"
    RESIZE_CHANNEL = "resize_channel"
    CLOSE_CHANNEL = "close_channel"
    PING = "ping"
    PONG = "pong"
    ERROR = "error"


class NotificationKind(str, Enum):
    """Unsolicited pushes (no request id)."""
    BALANCE_UPDATE = "bu"
    CHANNEL_UPDATE = "cu"
    TRANSFER = "tr"
    APP_SESSION_UPDATE = "asu"
    ASSETS = "assets"
    CHANNELS = "channels"
    ERROR = "error"


class MarketStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    RESOLVED = "RESOLVED"


class Outcome(str, Enum):
    YES = "YES"
    NO = "NO"


class TradeStatus(str, Enum):
    PRICED = "PRICED"
    TRANSFERRING = "TRANSFERRING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"  # transfer sent, confirmation never arrived


class PayoutStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"  # rejected by the node, safe to retry
    UNKNOWN = "UNKNOWN"  # sent, never confirmed: reconcile before retrying
