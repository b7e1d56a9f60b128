"""
ImportDashboard - live sharing statistics for one link owner.

Holds the owner's links and import events in memory, applies each realtime
event as it arrives and recomputes the bucket series. One instance backs one
open dashboard; ``stop()`` must be called when it is no longer shown.
"""
import asyncio
import logging
from datetime import datetime, tzinfo
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from poi_share.config.settings import StatsSettings, settings
from poi_share.core.exceptions import EventsMissedError, PoiSharingException
from poi_share.core.timeutils import ensure_utc, utcnow
from poi_share.schemas.shared_link import ImportEventMessage, ImportEventRead, SharedLinkRead
from poi_share.schemas.stats import Bucket, DashboardSnapshot, ImportNotification, SharingSummary, StatsMode
from poi_share.services import stats_aggregator
from poi_share.services.realtime_notifier import ImportEventSubscription, RealtimeNotifier

logger = logging.getLogger(__name__)

LinkLoader = Callable[[str], Awaitable[Optional[SharedLinkRead]]]
ActivityLoader = Callable[[str], Awaitable[Tuple[List[SharedLinkRead], List[ImportEventRead]]]]
UpdateCallback = Callable[["ImportDashboard", Optional[ImportNotification]], Awaitable[None]]

RECENT_EVENTS_LIMIT = 20


def build_notification(message: ImportEventMessage, url: str = "/") -> ImportNotification:
    importer = message.importer_name or "Someone"
    count = message.event.imported_count
    noun = "location" if count == 1 else "locations"
    return ImportNotification(
        title="Your locations were imported!",
        body=f"{importer} imported {count} {noun} from your favorites list (link {message.share_code})",
        url=url,
        tag=f"poi-import-{message.share_code}",
        shared_link_id=message.event.shared_link_id,
    )


class ImportDashboard:
    def __init__(
        self,
        owner_id: str,
        notifier: RealtimeNotifier,
        links: List[SharedLinkRead],
        events: List[ImportEventRead],
        mode: StatsMode = StatsMode.DAILY,
        stats: Optional[StatsSettings] = None,
        clock: Callable[[], datetime] = utcnow,
        link_loader: Optional[LinkLoader] = None,
        activity_loader: Optional[ActivityLoader] = None,
        on_update: Optional[UpdateCallback] = None,
        notification_url: str = "/",
    ):
        self.owner_id = owner_id
        self.notifier = notifier
        self.stats = stats or settings.stats
        self.clock = clock
        self.link_loader = link_loader
        self.activity_loader = activity_loader
        self.on_update = on_update
        self.notification_url = notification_url
        self.tz: tzinfo = stats_aggregator.resolve_timezone(self.stats.timezone)
        self._links: Dict[str, SharedLinkRead] = {link.id: link for link in links}
        self._events: List[ImportEventRead] = stats_aggregator.dedupe_events(events)
        self._event_ids = {event.id for event in self._events}
        self._mode = mode
        self._buckets: List[Bucket] = []
        self.notifications: List[ImportNotification] = []
        self._subscription: Optional[ImportEventSubscription] = None
        self._task: Optional[asyncio.Task] = None
        self.recompute()

    @property
    def mode(self) -> StatsMode:
        return self._mode

    @property
    def buckets(self) -> List[Bucket]:
        return list(self._buckets)

    @property
    def events(self) -> List[ImportEventRead]:
        return list(self._events)

    @property
    def links(self) -> List[SharedLinkRead]:
        return sorted(self._links.values(), key=lambda link: link.created_at, reverse=True)

    @property
    def summary(self) -> SharingSummary:
        return stats_aggregator.summarize(list(self._links.values()))

    def link(self, link_id: str) -> Optional[SharedLinkRead]:
        return self._links.get(link_id)

    def recompute(self) -> List[Bucket]:
        self._buckets = stats_aggregator.aggregate(
            self._events,
            self.clock(),
            self._mode,
            daily_count=self.stats.daily_buckets,
            weekly_count=self.stats.weekly_buckets,
            tz=self.tz,
        )
        return self.buckets

    def set_mode(self, mode: StatsMode) -> List[Bucket]:
        self._mode = StatsMode(mode)
        return self.recompute()

    def pop_notifications(self) -> List[ImportNotification]:
        """Return pending one-shot notifications and forget them."""
        pending, self.notifications = self.notifications, []
        return pending

    async def apply(self, message: ImportEventMessage) -> Optional[ImportNotification]:
        """
        Fold one realtime event into the dashboard.

        Returns:
            The notification raised for this event, or None for a duplicate
        """
        event = message.event
        if event.id in self._event_ids:
            return None

        self._event_ids.add(event.id)
        self._events.append(event)

        link = self._links.get(event.shared_link_id)
        if link is None and self.link_loader is not None:
            link = await self.link_loader(event.shared_link_id)
        if link is not None:
            # Counters may arrive out of order; keep the highest seen.
            self._links[link.id] = link.model_copy(update={
                "import_count": max(link.import_count, message.link_import_count),
                "last_imported_at": _latest(link.last_imported_at, message.link_last_imported_at),
            })

        notification = build_notification(message, self.notification_url)
        self.notifications.append(notification)
        self.recompute()
        logger.debug(
            f"Dashboard for {self.owner_id} applied import event {event.id}",
            extra={"owner_id": self.owner_id, "shared_link_id": event.shared_link_id},
        )
        if self.on_update is not None:
            await self.on_update(self, notification)
        return notification

    def snapshot(self, notification: Optional[ImportNotification] = None) -> DashboardSnapshot:
        return DashboardSnapshot(
            mode=self._mode,
            buckets=self.buckets,
            summary=self.summary,
            links=self.links,
            recent_events=self._events[-RECENT_EVENTS_LIMIT:][::-1],
            notification=notification,
        )

    async def resync(self) -> None:
        """Reload links and events from storage after realtime events were missed."""
        if self.activity_loader is None:
            logger.warning(f"Dashboard for {self.owner_id} missed realtime events and cannot reload")
            return
        try:
            links, events = await self.activity_loader(self.owner_id)
        except PoiSharingException as e:
            logger.warning(f"Dashboard for {self.owner_id} could not reload: {e.message}")
            return
        self._links = {link.id: link for link in links}
        self._events = stats_aggregator.dedupe_events(events)
        self._event_ids = {event.id for event in self._events}
        self.recompute()
        logger.info(
            f"Dashboard for {self.owner_id} reloaded after missed events",
            extra={"owner_id": self.owner_id, "events": len(self._events)},
        )
        if self.on_update is not None:
            await self.on_update(self, None)

    async def start(self, subscription: Optional[ImportEventSubscription] = None) -> None:
        """
        Begin applying realtime events.

        Pass a ``subscription`` opened before the seed links and events were
        read so imports committed in between are still delivered; events
        already in the seed are skipped by id.
        """
        if self._subscription is not None:
            return
        self._subscription = subscription or await self.notifier.subscribe(self.owner_id)
        self._task = asyncio.create_task(self._consume())

    async def _consume(self) -> None:
        try:
            while True:
                try:
                    async for message in self._subscription:
                        await self.apply(message)
                    return
                except EventsMissedError:
                    await self.resync()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Dashboard for {self.owner_id} stopped consuming events")

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._subscription = None
        self._task = None


def _latest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return max(ensure_utc(a), ensure_utc(b))
