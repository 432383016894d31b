"""Custody contract calldata and channel state hashing (eth-abi)."""

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, keccak, to_bytes, to_checksum_address

from src.pm_channel.domain.models import SignedState

_ALLOCATION = "(address,address,uint256)"
_STATE = f"(uint8,uint256,bytes,{_ALLOCATION}[],bytes[])"

DEPOSIT_SIGNATURE = "deposit(address,address,uint256)"
RESIZE_SIGNATURE = f"resize(bytes32,{_STATE},{_STATE}[])"
CLOSE_SIGNATURE = f"close(bytes32,{_STATE},{_STATE}[])"


def _b(hexstr: str) -> bytes:
    return to_bytes(hexstr=hexstr) if hexstr and hexstr != "0x" else b""


def _allocations(state: SignedState) -> list[tuple[str, str, int]]:
    return [
        (to_checksum_address(a.destination), to_checksum_address(a.token), a.amount)
        for a in state.allocations
    ]


def state_hash(channel_id: str, state: SignedState) -> bytes:
    """keccak256(abi.encode(channelId, intent, version, data, allocations))."""
    return keccak(
        encode(
            ["bytes32", "uint8", "uint256", "bytes", f"{_ALLOCATION}[]"],
            [_b(channel_id), state.intent, state.version, _b(state.data), _allocations(state)],
        )
    )


def encode_deposit(account: str, token: str, amount: int) -> bytes:
    selector = function_signature_to_4byte_selector(DEPOSIT_SIGNATURE)
    args = encode(
        ["address", "address", "uint256"],
        [to_checksum_address(account), to_checksum_address(token), amount],
    )
    return selector + args


def _state_tuple(state: SignedState, signatures: list[str]) -> tuple:
    return (
        state.intent,
        state.version,
        _b(state.data),
        _allocations(state),
        [_b(s) for s in signatures],
    )


def _encode_candidate(signature: str, channel_id: str, state: SignedState,
                      signatures: list[str]) -> bytes:
    selector = function_signature_to_4byte_selector(signature)
    args = encode(
        ["bytes32", _STATE, f"{_STATE}[]"],
        [_b(channel_id), _state_tuple(state, signatures), []],
    )
    return selector + args


def encode_resize(channel_id: str, state: SignedState, signatures: list[str]) -> bytes:
    return _encode_candidate(RESIZE_SIGNATURE, channel_id, state, signatures)


def encode_close(channel_id: str, state: SignedState, signatures: list[str]) -> bytes:
    return _encode_candidate(CLOSE_SIGNATURE, channel_id, state, signatures)
