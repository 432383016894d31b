"""Session lifecycle state machine.

    disconnected -> connecting -> authenticating -> authenticated
    authenticated -> channel_pending -> channel_active | authenticated
    channel_active -> closing -> closed | channel_active
    closed -> channel_pending
    authenticating -> error
    any -> disconnected (transport error / close)
"""

import logging
from collections.abc import Callable, Iterable

from src.pm_common.enums import SessionState as S
from src.pm_common.errors import InvalidStateError

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[S, frozenset[S]] = {
    S.DISCONNECTED: frozenset({S.CONNECTING}),
    S.CONNECTING: frozenset({S.AUTHENTICATING, S.ERROR}),
    S.AUTHENTICATING: frozenset({S.AUTHENTICATED, S.ERROR}),
    # channel_active directly: an open channel discovered right after auth
    S.AUTHENTICATED: frozenset({S.CHANNEL_PENDING, S.CHANNEL_ACTIVE}),
    S.CHANNEL_PENDING: frozenset({S.CHANNEL_ACTIVE, S.AUTHENTICATED}),
    S.CHANNEL_ACTIVE: frozenset({S.CLOSING}),
    S.CLOSING: frozenset({S.CLOSED, S.CHANNEL_ACTIVE}),
    S.CLOSED: frozenset({S.CHANNEL_PENDING, S.CHANNEL_ACTIVE}),
    S.ERROR: frozenset(),
}

# States in which the authenticated ledger context is usable (with or without a channel).
LEDGER_STATES: frozenset[S] = frozenset(
    {S.AUTHENTICATED, S.CHANNEL_PENDING, S.CHANNEL_ACTIVE, S.CLOSING, S.CLOSED}
)
# States from which a channel may be requested.
CHANNEL_REQUEST_STATES: frozenset[S] = frozenset(
    {S.AUTHENTICATED, S.CHANNEL_PENDING, S.CHANNEL_ACTIVE, S.CLOSED}
)

Listener = Callable[[S, S], None]


class SessionStateMachine:
    def __init__(self) -> None:
        self._state = S.DISCONNECTED
        self._listeners: list[Listener] = []

    @property
    def state(self) -> S:
        return self._state

    def on_change(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def can_transition(self, target: S) -> bool:
        return target is S.DISCONNECTED or target in _TRANSITIONS[self._state]

    def transition(self, target: S, reason: str = "") -> None:
        """Move to ``target``. Raises InvalidStateError on an illegal edge."""
        if target is self._state:
            return
        if not self.can_transition(target):
            raise InvalidStateError(f"transition:{target.value}", self._state.value)
        previous, self._state = self._state, target
        logger.info(
            "Session %s -> %s%s", previous.value, target.value, f" ({reason})" if reason else ""
        )
        for listener in list(self._listeners):
            listener(previous, target)

    def require(self, operation: str, allowed: Iterable[S]) -> None:
        """Reject ``operation`` unless the current state is one of ``allowed``."""
        allowed_set = frozenset(allowed)
        if self._state not in allowed_set:
            raise InvalidStateError(
                operation,
                self._state.value,
                tuple(sorted(s.value for s in allowed_set)),
            )
