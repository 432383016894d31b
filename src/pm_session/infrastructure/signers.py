"""Signing capabilities backed by eth-account.

- ``SessionKey``: ephemeral key, one per session, signs every RPC request
  (raw keccak256 hash of the compact request JSON, no message prefix).
- ``LocalWalletSigner``: the long-lived wallet; signs the EIP-712 auth policy
  and channel state hashes.
"""

from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from eth_account.signers.local import LocalAccount
from eth_utils import keccak

from src.pm_common.errors import ConfigurationError, InvalidStateError
from src.pm_session.domain.rpc import canonical_json

_DOMAIN_FIELD_TYPES = (
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
    ("salt", "bytes32"),
)


def _hex(signature: bytes) -> str:
    return "0x" + bytes(signature).hex()


class SessionKey:
    """Ephemeral session signing key. Private material never leaves this object."""

    def __init__(self, account: LocalAccount) -> None:
        self._account: LocalAccount | None = account
        self._address = account.address

    @classmethod
    def generate(cls) -> "SessionKey":
        return cls(Account.create())

    @property
    def address(self) -> str:
        return self._address

    @property
    def destroyed(self) -> bool:
        return self._account is None

    def sign_payload(self, payload: list[Any]) -> str:
        if self._account is None:
            raise InvalidStateError("sign_payload", "session_key_destroyed")
        digest = keccak(text=canonical_json(payload))
        return _hex(self._account.unsafe_sign_hash(digest).signature)

    def destroy(self) -> None:
        self._account = None


class LocalWalletSigner:
    def __init__(self, private_key: str) -> None:
        if not private_key:
            raise ConfigurationError("WALLET_PRIVATE_KEY is not set")
        self._account: LocalAccount = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def private_key(self) -> bytes:
        return bytes(self._account.key)

    def sign(self, message: bytes) -> str:
        """EIP-191 personal signature over ``message``."""
        return _hex(self._account.sign_message(encode_defunct(primitive=message)).signature)

    def sign_typed(
        self,
        domain: dict[str, Any],
        types: dict[str, list[dict[str, str]]],
        primary_type: str,
        value: dict[str, Any],
    ) -> str:
        domain_fields = [
            {"name": name, "type": kind} for name, kind in _DOMAIN_FIELD_TYPES if name in domain
        ]
        signable = encode_typed_data(
            full_message={
                "types": {"EIP712Domain": domain_fields, **types},
                "primaryType": primary_type,
                "domain": domain,
                "message": value,
            }
        )
        return _hex(self._account.sign_message(signable).signature)
