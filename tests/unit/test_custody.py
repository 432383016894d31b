"""Unit tests for custody calldata encoding."""

from eth_abi import decode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from src.pm_channel.domain.models import Allocation, SignedState
from src.pm_channel.infrastructure.custody import (
    CLOSE_SIGNATURE,
    DEPOSIT_SIGNATURE,
    RESIZE_SIGNATURE,
    encode_close,
    encode_deposit,
    encode_resize,
    state_hash,
)

ACCOUNT = "0x" + "11" * 20
TOKEN = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
CHANNEL_ID = "0x" + "ab" * 32
STATE_TYPE = "(uint8,uint256,bytes,(address,address,uint256)[],bytes[])"


def _state(version: int = 1, amount: int = 20_000_000) -> SignedState:
    return SignedState(
        intent=2,
        version=version,
        data="0x",
        allocations=(Allocation(ACCOUNT, TOKEN, amount),),
        server_signature="0x" + "ee" * 65,
    )


class TestDeposit:
    def test_selector_and_arguments(self) -> None:
        data = encode_deposit(ACCOUNT, TOKEN, 20_000_000)
        assert data[:4] == function_signature_to_4byte_selector(DEPOSIT_SIGNATURE)
        account, token, amount = decode(["address", "address", "uint256"], data[4:])
        assert account == to_checksum_address(ACCOUNT)
        assert token == to_checksum_address(TOKEN)
        assert amount == 20_000_000


class TestStateHash:
    def test_is_32_bytes_and_deterministic(self) -> None:
        digest = state_hash(CHANNEL_ID, _state())
        assert len(digest) == 32
        assert digest == state_hash(CHANNEL_ID, _state())

    def test_depends_on_version_and_allocations(self) -> None:
        base = state_hash(CHANNEL_ID, _state())
        assert state_hash(CHANNEL_ID, _state(version=2)) != base
        assert state_hash(CHANNEL_ID, _state(amount=1)) != base

    def test_ignores_server_signature(self) -> None:
        unsigned = SignedState(2, 1, "0x", (Allocation(ACCOUNT, TOKEN, 20_000_000),))
        assert state_hash(CHANNEL_ID, unsigned) == state_hash(CHANNEL_ID, _state())


class TestStateSubmission:
    def test_resize_carries_both_signatures(self) -> None:
        signatures = ["0x" + "aa" * 65, "0x" + "ee" * 65]
        data = encode_resize(CHANNEL_ID, _state(), signatures)
        assert data[:4] == function_signature_to_4byte_selector(RESIZE_SIGNATURE)
        channel_id, state, proofs = decode(["bytes32", STATE_TYPE, f"{STATE_TYPE}[]"], data[4:])
        assert channel_id == bytes.fromhex("ab" * 32)
        intent, version, _data, allocations, sigs = state
        assert (intent, version) == (2, 1)
        assert allocations[0][2] == 20_000_000
        assert list(sigs) == [bytes.fromhex("aa" * 65), bytes.fromhex("ee" * 65)]
        assert list(proofs) == []

    def test_close_uses_close_selector(self) -> None:
        data = encode_close(CHANNEL_ID, _state(), ["0x" + "aa" * 65])
        assert data[:4] == function_signature_to_4byte_selector(CLOSE_SIGNATURE)
        assert data[:4] != function_signature_to_4byte_selector(RESIZE_SIGNATURE)
