"""Tests for the session lifecycle state machine."""

import pytest

from src.pm_common.enums import SessionState as S
from src.pm_common.errors import InvalidStateError
from src.pm_session.domain.state_machine import LEDGER_STATES, SessionStateMachine


def _at(*path: S) -> SessionStateMachine:
    sm = SessionStateMachine()
    for state in path:
        sm.transition(state)
    return sm


class TestTransitions:
    def test_starts_disconnected(self) -> None:
        assert SessionStateMachine().state is S.DISCONNECTED

    def test_happy_path(self) -> None:
        sm = _at(S.CONNECTING, S.AUTHENTICATING, S.AUTHENTICATED, S.CHANNEL_PENDING,
                 S.CHANNEL_ACTIVE, S.CLOSING, S.CLOSED)
        assert sm.state is S.CLOSED

    def test_channel_failure_returns_to_authenticated(self) -> None:
        sm = _at(S.CONNECTING, S.AUTHENTICATING, S.AUTHENTICATED, S.CHANNEL_PENDING)
        sm.transition(S.AUTHENTICATED)
        assert sm.state is S.AUTHENTICATED

    def test_auth_failure_goes_to_error(self) -> None:
        sm = _at(S.CONNECTING, S.AUTHENTICATING, S.ERROR)
        assert sm.state is S.ERROR
        assert not sm.can_transition(S.CONNECTING)

    @pytest.mark.parametrize(
        "path",
        [
            (S.CONNECTING,),
            (S.CONNECTING, S.AUTHENTICATING),
            (S.CONNECTING, S.AUTHENTICATING, S.AUTHENTICATED, S.CHANNEL_PENDING, S.CHANNEL_ACTIVE),
            (S.CONNECTING, S.AUTHENTICATING, S.ERROR),
        ],
    )
    def test_any_state_can_disconnect(self, path: tuple[S, ...]) -> None:
        sm = _at(*path)
        sm.transition(S.DISCONNECTED)
        assert sm.state is S.DISCONNECTED

    def test_illegal_transition_raises(self) -> None:
        sm = SessionStateMachine()
        with pytest.raises(InvalidStateError) as exc:
            sm.transition(S.AUTHENTICATED)
        assert exc.value.state == "disconnected"
        assert sm.state is S.DISCONNECTED

    def test_cannot_skip_authentication(self) -> None:
        sm = _at(S.CONNECTING, S.AUTHENTICATING)
        with pytest.raises(InvalidStateError):
            sm.transition(S.CHANNEL_PENDING)

    def test_same_state_is_noop(self) -> None:
        sm = _at(S.CONNECTING)
        sm.transition(S.CONNECTING)
        assert sm.state is S.CONNECTING

    def test_listeners_notified(self) -> None:
        seen: list[tuple[S, S]] = []
        sm = SessionStateMachine()
        sm.on_change(lambda prev, new: seen.append((prev, new)))
        sm.transition(S.CONNECTING)
        sm.transition(S.DISCONNECTED)
        assert seen == [(S.DISCONNECTED, S.CONNECTING), (S.CONNECTING, S.DISCONNECTED)]


class TestRequire:
    def test_rejects_ledger_op_when_disconnected(self) -> None:
        sm = SessionStateMachine()
        with pytest.raises(InvalidStateError) as exc:
            sm.require("transfer", LEDGER_STATES)
        assert exc.value.operation == "transfer"
        assert exc.value.context["state"] == "disconnected"

    def test_allows_ledger_op_without_channel(self) -> None:
        sm = _at(S.CONNECTING, S.AUTHENTICATING, S.AUTHENTICATED)
        sm.require("transfer", LEDGER_STATES)

    def test_allows_ledger_op_after_channel_closed(self) -> None:
        sm = _at(S.CONNECTING, S.AUTHENTICATING, S.AUTHENTICATED, S.CHANNEL_ACTIVE,
                 S.CLOSING, S.CLOSED)
        sm.require("transfer", LEDGER_STATES)
