"""LedgerView — locally cached snapshot of off-chain balances.

Refreshed by explicit ``query()`` or by unsolicited balance-update pushes.
Each refresh replaces the snapshot atomically; a response older than the
current snapshot (by server timestamp) is ignored, so balances only move forward.
For before/after proofs call ``query()`` twice and use ``LedgerSnapshot.diff``.
"""

import logging
from collections.abc import Callable
from typing import Any

from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import RpcMethod
from src.pm_ledger.domain.models import AssetRegistry, LedgerSnapshot
from src.pm_session.domain.ports import RpcRequesterProtocol

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[LedgerSnapshot], None]


class LedgerView:
    def __init__(
        self,
        requester: RpcRequesterProtocol,
        assets: AssetRegistry,
        query_timeout: float,
    ) -> None:
        self._requester = requester
        self._assets = assets
        self._query_timeout = query_timeout
        self._snapshot: LedgerSnapshot | None = None
        self._callbacks: list[UpdateCallback] = []

    @property
    def snapshot(self) -> LedgerSnapshot | None:
        return self._snapshot

    async def query(self, timeout: float | None = None) -> LedgerSnapshot:
        """Signed balance query; resolves with the first matching response."""
        result = await self._requester.request(
            RpcMethod.GET_LEDGER_BALANCES.value,
            {"participant": self._requester.address},
            timeout=timeout or self._query_timeout,
        )
        snapshot = LedgerSnapshot(
            balances=self._assets.parse_balances(_entries(result, "ledger_balances")),
            observed_at=utc_now(),
        )
        self._replace(snapshot, source="query")
        # A query always returns the fresh read even if a newer push raced it.
        return snapshot

    def apply_push(self, params: Any, server_timestamp: int | None = None) -> LedgerSnapshot | None:
        """Handle a ``bu`` push. Returns the new snapshot or None if it was stale."""
        snapshot = LedgerSnapshot(
            balances=self._assets.parse_balances(_entries(params, "balance_updates")),
            observed_at=utc_now(),
            server_timestamp=server_timestamp,
        )
        return snapshot if self._replace(snapshot, source="push") else None

    def on_update(self, callback: UpdateCallback) -> Callable[[], None]:
        """Subscribe to snapshot replacements. Returns an unsubscribe function."""
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def clear(self) -> None:
        self._snapshot = None

    def _replace(self, snapshot: LedgerSnapshot, source: str) -> bool:
        if not snapshot.is_newer_than(self._snapshot):
            logger.debug("Ignoring stale ledger %s", source)
            return False
        self._snapshot = snapshot
        logger.debug("Ledger snapshot replaced from %s: %s", source, dict(snapshot.balances))
        for cb in list(self._callbacks):
            try:
                cb(snapshot)
            except Exception:
                logger.exception("Ledger update callback failed")
        return True


def _entries(payload: Any, key: str) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        return list(payload.get(key) or [])
    return []
