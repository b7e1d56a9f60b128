"""
Optimistic favorites state for one open view.

A toggle flips the visible state immediately and records a pending
operation; the remote write then commits or rolls it back. Each operation
carries a sequence number so confirmations that arrive out of order are
reconciled per POI, last writer wins.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Optional, Protocol, Set

from poi_share.core.exceptions import PoiSharingException
from poi_share.core.identity import Identity

logger = logging.getLogger(__name__)


class FavoriteWriter(Protocol):
    async def list(self, identity: Identity) -> Set[str]: ...

    async def add(self, identity: Identity, poi_id: str) -> None: ...

    async def remove(self, identity: Identity, poi_id: str) -> None: ...


@dataclass(frozen=True)
class PendingToggle:
    seq: int
    favorited: bool


ErrorCallback = Callable[[str, PoiSharingException], None]


class FavoritesView:
    def __init__(
        self,
        writer: FavoriteWriter,
        identity: Identity,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.writer = writer
        self.identity = identity
        self.on_error = on_error
        self._confirmed: Set[str] = set()
        self._confirmed_seq: Dict[str, int] = {}
        self._pending: Dict[str, PendingToggle] = {}
        self._seq = 0
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    async def load(self) -> FrozenSet[str]:
        self._confirmed = set(await self.writer.list(self.identity))
        return self.ids

    @property
    def ids(self) -> FrozenSet[str]:
        visible = set(self._confirmed)
        for poi_id, op in self._pending.items():
            if op.favorited:
                visible.add(poi_id)
            else:
                visible.discard(poi_id)
        return frozenset(visible)

    @property
    def confirmed_ids(self) -> FrozenSet[str]:
        return frozenset(self._confirmed)

    @property
    def pending_ids(self) -> FrozenSet[str]:
        return frozenset(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def is_favorite(self, poi_id: str) -> bool:
        return poi_id in self.ids

    def toggle(self, poi_id: str) -> "asyncio.Task[bool]":
        """
        Flip ``poi_id`` now and start the remote write.

        Returns:
            Task resolving to the visible state once this write settles
        """
        if self._closed:
            raise RuntimeError("FavoritesView is closed")

        desired = not self.is_favorite(poi_id)
        self._seq += 1
        seq = self._seq
        self._pending[poi_id] = PendingToggle(seq=seq, favorited=desired)

        task = asyncio.create_task(self._sync(poi_id, seq, desired))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _sync(self, poi_id: str, seq: int, desired: bool) -> bool:
        try:
            if desired:
                await self.writer.add(self.identity, poi_id)
            else:
                await self.writer.remove(self.identity, poi_id)
        except PoiSharingException as e:
            if self._closed:
                return self.is_favorite(poi_id)
            self._rollback(poi_id, seq)
            logger.warning(
                f"Favorite write for {poi_id} failed, reverted: {e.message}",
                extra={"identity": self.identity.key, "error_code": e.error_code.value},
            )
            if self.on_error:
                self.on_error(poi_id, e)
            return self.is_favorite(poi_id)

        if not self._closed:
            self._commit(poi_id, seq, desired)
        return self.is_favorite(poi_id)

    def _commit(self, poi_id: str, seq: int, desired: bool) -> None:
        if seq > self._confirmed_seq.get(poi_id, 0):
            self._confirmed_seq[poi_id] = seq
            if desired:
                self._confirmed.add(poi_id)
            else:
                self._confirmed.discard(poi_id)
        pending = self._pending.get(poi_id)
        if pending is not None and pending.seq <= seq:
            del self._pending[poi_id]

    def _rollback(self, poi_id: str, seq: int) -> None:
        # A newer toggle on the same POI owns the pending slot; leave it alone.
        pending = self._pending.get(poi_id)
        if pending is not None and pending.seq == seq:
            del self._pending[poi_id]

    async def wait_idle(self) -> None:
        """Wait for all in-flight writes to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Abandon in-flight writes; their results are never applied."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()
