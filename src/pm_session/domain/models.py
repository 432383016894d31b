"""Domain models for pm_session — pure dataclasses, no transport or crypto dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from config.settings import Settings
from src.pm_common.datetime_utils import expiry_after, utc_now

# EIP-712 schema of the auth policy the wallet signs during auth_verify.
# Field order is part of the type hash — do not reorder.
AUTH_POLICY_TYPES: dict[str, list[dict[str, str]]] = {
    "Policy": [
        {"name": "challenge", "type": "string"},
        {"name": "scope", "type": "string"},
        {"name": "wallet", "type": "address"},
        {"name": "session_key", "type": "address"},
        {"name": "expires_at", "type": "uint64"},
        {"name": "allowances", "type": "Allowance[]"},
    ],
    "Allowance": [
        {"name": "asset", "type": "string"},
        {"name": "amount", "type": "string"},
    ],
}
AUTH_POLICY_PRIMARY_TYPE = "Policy"


class SessionKeyProtocol(Protocol):
    @property
    def address(self) -> str: ...

    def sign_payload(self, payload: list[Any]) -> str: ...

    def destroy(self) -> None: ...


@dataclass(frozen=True)
class Allowance:
    asset: str
    amount: int  # raw units

    def to_wire(self) -> dict[str, str]:
        return {"asset": self.asset, "amount": str(self.amount)}


@dataclass(frozen=True)
class SessionParams:
    """What the client declares in auth_request — and must sign verbatim in auth_verify."""

    application: str
    scope: str
    allowances: tuple[Allowance, ...]
    expires_at: int  # unix seconds


@dataclass(frozen=True)
class SessionConfig:
    application: str
    scope: str
    ttl_seconds: int
    allowances: tuple[Allowance, ...]
    connect_timeout: float
    query_timeout: float
    transfer_timeout: float
    chain_timeout: float

    @classmethod
    def from_settings(cls, s: Settings) -> "SessionConfig":
        return cls(
            application=s.APPLICATION_NAME,
            scope=s.SESSION_SCOPE,
            ttl_seconds=s.SESSION_TTL_SECONDS,
            allowances=(Allowance(s.SESSION_ALLOWANCE_ASSET, s.SESSION_ALLOWANCE_AMOUNT),),
            connect_timeout=s.CONNECT_TIMEOUT_SECONDS,
            query_timeout=s.QUERY_TIMEOUT_SECONDS,
            transfer_timeout=s.TRANSFER_TIMEOUT_SECONDS,
            chain_timeout=s.CHAIN_TIMEOUT_SECONDS,
        )

    def new_params(self) -> SessionParams:
        return SessionParams(
            application=self.application,
            scope=self.scope,
            allowances=self.allowances,
            expires_at=expiry_after(self.ttl_seconds),
        )


@dataclass
class Session:
    """One authenticated context. Owns its ephemeral key exclusively.

    Created at connect(), destroyed at disconnect() or on transport loss.
    """

    local_identity: str
    key: SessionKeyProtocol
    params: SessionParams
    created_at: datetime = field(default_factory=utc_now)
    authenticated: bool = False

    @property
    def session_key_address(self) -> str:
        return self.key.address

    def auth_request_params(self) -> dict[str, Any]:
        return {
            "address": self.local_identity,
            "session_key": self.key.address,
            "application": self.params.application,
            "allowances": [a.to_wire() for a in self.params.allowances],
            "expires_at": self.params.expires_at,
            "scope": self.params.scope,
        }

    def auth_policy(self, challenge: str) -> dict[str, Any]:
        """EIP-712 message for auth_verify, built from the declared params only."""
        return {
            "challenge": challenge,
            "scope": self.params.scope,
            "wallet": self.local_identity,
            "session_key": self.key.address,
            "expires_at": self.params.expires_at,
            "allowances": [a.to_wire() for a in self.params.allowances],
        }

    def auth_domain(self) -> dict[str, Any]:
        return {"name": self.params.application}

    def is_expired(self, now_unix: int) -> bool:
        return now_unix >= self.params.expires_at

    def destroy(self) -> None:
        self.authenticated = False
        self.key.destroy()
