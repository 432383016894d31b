"""MessageCorrelator — matches inbound frames to pending outbound requests.

Matching order, most specific key first:
  1. explicit request id (a known id always wins, an unknown id is a late
     response and is never re-routed to another request);
  2. message kind, for id-less frames: the oldest pending request that
     declared interest in that kind;
  3. the oldest pending request that declared interest in any kind
     (push kinds and id-less errors never take this path).
Anything left over goes to the unsolicited observer (balance pushes,
error broadcasts, late responses) instead of being dropped.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from src.pm_common.enums import NotificationKind
from src.pm_common.errors import AppError, ProtocolError, RemoteError, RequestTimeoutError
from src.pm_common.id_generator import RequestIdSequence
from src.pm_session.domain.rpc import RpcMessage, RpcRequest, decode_message

logger = logging.getLogger(__name__)

# Pass as ``expect`` to accept a response of any kind (tier 3).
ANY_KIND: frozenset[str] = frozenset()
_PUSH_KINDS: frozenset[str] = frozenset(k.value for k in NotificationKind)

Sender = Callable[[str], Awaitable[None]]
Observer = Callable[[RpcMessage], None]


@dataclass
class PendingRequest:
    request_id: int
    method: str
    expected_kinds: frozenset[str]
    issued_at: float
    deadline: float
    future: asyncio.Future[RpcMessage]

    def accepts(self, kind: str) -> bool:
        return kind in self.expected_kinds


class MessageCorrelator:
    def __init__(self, sender: Sender, unsolicited: Observer | None = None) -> None:
        self._sender = sender
        self._unsolicited = unsolicited
        self._ids = RequestIdSequence()
        self._pending: dict[int, PendingRequest] = {}  # insertion order == issue order

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def next_id(self) -> int:
        return self._ids.next_id()

    async def send(
        self,
        request: RpcRequest,
        frame: str,
        *,
        timeout: float,
        expect: Iterable[str] | None = None,
    ) -> RpcMessage:
        """Transmit ``frame`` and wait for the matching response.

        Raises RequestTimeoutError after ``timeout`` seconds, RemoteError when the
        node answers with an error, TransportError when the connection fails.
        The pending entry is removed on every exit path.
        """
        if request.request_id in self._pending:
            raise ProtocolError(f"duplicate request id {request.request_id}")
        kinds = frozenset({request.method}) if expect is None else frozenset(expect)
        now = time.monotonic()
        future: asyncio.Future[RpcMessage] = asyncio.get_running_loop().create_future()
        self._pending[request.request_id] = PendingRequest(
            request_id=request.request_id,
            method=request.method,
            expected_kinds=kinds,
            issued_at=now,
            deadline=now + timeout,
            future=future,
        )
        logger.debug("-> %s id=%d", request.method, request.request_id)
        try:
            # Registered before transmit: a fast response must find its entry.
            await self._sender(frame)
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Request %s id=%d timed out after %.1fs",
                request.method,
                request.request_id,
                timeout,
            )
            raise RequestTimeoutError(request.method, request.request_id, timeout) from None
        finally:
            self._pending.pop(request.request_id, None)

    def dispatch(self, raw: str | bytes) -> None:
        """Route one inbound frame. Called sequentially from the read loop."""
        try:
            message = decode_message(raw)
        except ProtocolError as e:
            logger.warning("Dropping malformed frame: %s", e.message)
            return
        self.deliver(message)

    def deliver(self, message: RpcMessage) -> None:
        pending = self._match(message)
        if pending is None:
            self._notify_unsolicited(message)
            return
        logger.debug("<- %s id=%s matched request %d", message.method, message.request_id,
                     pending.request_id)
        # Remove now so a second frame for the same id cannot resolve it twice.
        self._pending.pop(pending.request_id, None)
        if pending.future.done():
            return
        if message.is_error:
            pending.future.set_exception(RemoteError(pending.method, message.error_message))
        else:
            pending.future.set_result(message)

    def fail_all(self, error: AppError) -> None:
        """Reject every outstanding request (transport loss / disconnect)."""
        pending, self._pending = list(self._pending.values()), {}
        for p in pending:
            if not p.future.done():
                p.future.set_exception(error)
        if pending:
            logger.warning("Failed %d in-flight request(s): %s", len(pending), error.message)

    def _match(self, message: RpcMessage) -> PendingRequest | None:
        if message.request_id:
            pending = self._pending.get(message.request_id)
            if pending is None:
                logger.warning(
                    "Late or unknown response %s id=%d", message.method, message.request_id
                )
            return pending
        for pending in self._pending.values():
            if pending.accepts(message.method):
                return pending
        if message.is_error or message.method in _PUSH_KINDS:
            return None  # broadcasts never satisfy an any-kind request
        for pending in self._pending.values():
            if not pending.expected_kinds:
                return pending
        return None

    def _notify_unsolicited(self, message: RpcMessage) -> None:
        if self._unsolicited is None:
            logger.debug("Unobserved %s message", message.method)
            return
        try:
            self._unsolicited(message)
        except Exception:
            logger.exception("Unsolicited observer failed on %s", message.method)
