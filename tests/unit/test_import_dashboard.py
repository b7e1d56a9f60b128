"""
Unit tests for the live owner dashboard
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from poi_share.config.settings import RealtimeSettings, StatsSettings
from poi_share.schemas.shared_link import ImportEventMessage, ImportEventRead, SharedLinkRead
from poi_share.schemas.stats import StatsMode
from poi_share.services.import_dashboard import ImportDashboard, build_notification
from poi_share.services.realtime_notifier import MemoryBroker, RealtimeNotifier

NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


def link(link_id, import_count=0, last_imported_at=None):
    return SharedLinkRead(
        id=link_id,
        share_code=f"CODE{link_id[-1]}",
        owner_id="owner-1",
        poi_ids=["poi-1"],
        import_count=import_count,
        created_at=NOW - timedelta(days=30),
        last_imported_at=last_imported_at,
    )


def event_message(link_id, event_id, count, link_count, when=NOW, importer_name=None):
    return ImportEventMessage(
        event=ImportEventRead(id=event_id, shared_link_id=link_id, imported_count=count, created_at=when),
        share_code=f"CODE{link_id[-1]}",
        link_import_count=link_count,
        link_last_imported_at=when,
        importer_name=importer_name,
    )


class OwnedLinks:
    def __init__(self, *link_ids):
        self.link_ids = set(link_ids)

    async def __call__(self, owner_id):
        return set(self.link_ids)


@pytest.fixture
def notifier():
    return RealtimeNotifier(MemoryBroker(), OwnedLinks("link-1"), RealtimeSettings(reconnect_initial_delay=0.01))


def make_dashboard(notifier, **kwargs):
    existing = ImportEventRead(
        id="evt-old", shared_link_id="link-1", imported_count=2, created_at=NOW - timedelta(days=1)
    )
    return ImportDashboard(
        "owner-1",
        notifier,
        links=[link("link-1", import_count=2, last_imported_at=NOW - timedelta(days=1))],
        events=[existing],
        stats=StatsSettings(),
        clock=lambda: NOW,
        **kwargs,
    )


def test_build_notification_names_importer_and_count():
    notification = build_notification(event_message("link-1", "e1", 3, 3, importer_name="Mia"), url="/stats")

    assert notification.title == "Your locations were imported!"
    assert "Mia imported 3 locations" in notification.body
    assert notification.tag == "poi-import-CODE1"
    assert notification.url == "/stats"


def test_build_notification_defaults_to_someone():
    notification = build_notification(event_message("link-1", "e1", 1, 1))

    assert notification.body.startswith("Someone imported 1 location ")


def test_initial_buckets_include_seed_events(notifier):
    dashboard = make_dashboard(notifier)

    assert len(dashboard.buckets) == 14
    assert dashboard.buckets[-2].total == 2
    assert dashboard.summary.total_imports == 2


@pytest.mark.asyncio
async def test_apply_updates_events_link_and_buckets(notifier):
    """An event appends history, bumps the cached link and raises one notification"""
    dashboard = make_dashboard(notifier)

    notification = await dashboard.apply(event_message("link-1", "evt-new", 3, 5, importer_name="Kai"))

    assert notification is not None
    assert [e.id for e in dashboard.events] == ["evt-old", "evt-new"]
    assert dashboard.link("link-1").import_count == 5
    assert dashboard.link("link-1").last_imported_at == NOW
    assert dashboard.buckets[-1].total == 3
    assert dashboard.pop_notifications() == [notification]
    assert dashboard.pop_notifications() == []


@pytest.mark.asyncio
async def test_duplicate_event_is_ignored(notifier):
    dashboard = make_dashboard(notifier)
    message = event_message("link-1", "evt-new", 3, 5)

    await dashboard.apply(message)
    assert await dashboard.apply(message) is None

    assert len(dashboard.events) == 2
    assert dashboard.buckets[-1].total == 3


@pytest.mark.asyncio
async def test_out_of_order_counters_keep_highest(notifier):
    dashboard = make_dashboard(notifier)

    await dashboard.apply(event_message("link-1", "e2", 1, 4))
    await dashboard.apply(event_message("link-1", "e1", 1, 3, when=NOW - timedelta(hours=1)))

    assert dashboard.link("link-1").import_count == 4
    assert dashboard.link("link-1").last_imported_at == NOW


@pytest.mark.asyncio
async def test_unknown_link_is_loaded_on_demand(notifier):
    async def loader(link_id):
        return link(link_id)

    dashboard = make_dashboard(notifier, link_loader=loader)
    await dashboard.apply(event_message("link-2", "e1", 2, 2))

    assert dashboard.link("link-2").import_count == 2
    assert dashboard.summary.total_links == 2


def test_set_mode_recomputes(notifier):
    dashboard = make_dashboard(notifier)

    buckets = dashboard.set_mode(StatsMode.WEEKLY)

    assert dashboard.mode == StatsMode.WEEKLY
    assert len(buckets) == 8
    assert buckets[-1].total == 0
    assert buckets[-2].total == 2
    assert dashboard.snapshot().mode == StatsMode.WEEKLY


@pytest.mark.asyncio
async def test_start_consumes_realtime_events_until_stopped(notifier):
    updates = []

    async def on_update(board, notification):
        updates.append(notification)

    dashboard = make_dashboard(notifier, on_update=on_update)
    await dashboard.start()

    await notifier.publish(event_message("link-1", "evt-live", 2, 4))
    for _ in range(100):
        if updates:
            break
        await asyncio.sleep(0.01)

    assert len(updates) == 1
    assert dashboard.link("link-1").import_count == 4

    await dashboard.stop()
    assert notifier.broker.listener_count == 0


async def wait_for_updates(updates, count, attempts=100):
    for _ in range(attempts):
        if len(updates) >= count:
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_import_committed_while_loading_history_is_applied(notifier):
    """Subscribing before the history read delivers an import that missed the seed"""
    updates = []

    async def on_update(board, notification):
        updates.append(notification)

    subscription = await notifier.subscribe("owner-1")
    await notifier.publish(event_message("link-1", "evt-between", 1, 3))
    dashboard = make_dashboard(notifier, on_update=on_update)

    await dashboard.start(subscription)
    await wait_for_updates(updates, 1)

    assert [e.id for e in dashboard.events] == ["evt-old", "evt-between"]
    assert dashboard.link("link-1").import_count == 3
    await dashboard.stop()
    assert notifier.broker.listener_count == 0


@pytest.mark.asyncio
async def test_event_in_seed_and_stream_is_applied_once(notifier):
    updates = []

    async def on_update(board, notification):
        updates.append(notification)

    subscription = await notifier.subscribe("owner-1")
    await notifier.publish(event_message("link-1", "evt-old", 2, 2))
    await notifier.publish(event_message("link-1", "evt-next", 1, 3))
    dashboard = make_dashboard(notifier, on_update=on_update)

    await dashboard.start(subscription)
    await wait_for_updates(updates, 1)
    await asyncio.sleep(0.05)

    assert len(updates) == 1
    assert [e.id for e in dashboard.events] == ["evt-old", "evt-next"]
    await dashboard.stop()


@pytest.mark.asyncio
async def test_missed_events_reload_dashboard_from_storage():
    """A listener overflow makes the dashboard reload instead of losing imports"""
    notifier = RealtimeNotifier(
        MemoryBroker(queue_size=1), OwnedLinks("link-1"), RealtimeSettings(reconnect_initial_delay=0.01)
    )
    stored = [
        ImportEventRead(id=f"evt-{i}", shared_link_id="link-1", imported_count=1, created_at=NOW)
        for i in range(1, 4)
    ]
    reloads = []

    async def activity_loader(owner_id):
        reloads.append(owner_id)
        return [link("link-1", import_count=3, last_imported_at=NOW)], stored

    updates = []

    async def on_update(board, notification):
        updates.append(notification)

    dashboard = ImportDashboard(
        "owner-1",
        notifier,
        links=[link("link-1")],
        events=[],
        stats=StatsSettings(),
        clock=lambda: NOW,
        activity_loader=activity_loader,
        on_update=on_update,
    )
    await dashboard.start()

    for i in range(1, 4):
        await notifier.publish(event_message("link-1", f"evt-{i}", 1, i))
    await wait_for_updates(updates, 1)
    await asyncio.sleep(0.05)

    assert reloads == ["owner-1"]
    assert updates[0] is None
    assert [e.id for e in dashboard.events] == ["evt-1", "evt-2", "evt-3"]
    assert dashboard.link("link-1").import_count == 3
    assert dashboard.buckets[-1].total == 3
    await dashboard.stop()
