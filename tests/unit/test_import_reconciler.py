"""
Unit tests for importing shared links into favorites
"""
import pytest

from poi_share.core.exceptions import NotFoundError
from poi_share.core.identity import AuthenticatedIdentity
from poi_share.services.favorite_store import FavoriteStore
from poi_share.services.import_event_log import ImportEventLog
from poi_share.services.import_reconciler import ImportReconciler
from poi_share.services.link_registry import LinkRegistry


@pytest.fixture
def components(db_session, device_storage):
    registry = LinkRegistry(db_session)
    favorites = FavoriteStore(db_session, device_storage)
    event_log = ImportEventLog(db_session)
    return registry, favorites, event_log, ImportReconciler(registry, favorites, event_log)


@pytest.mark.asyncio
async def test_delta_preserves_link_order(components, user):
    registry, _, _, reconciler = components
    link = await registry.create(["c", "a", "b"], owner=user)

    _, delta = await reconciler.resolve_delta(link.share_code, {"a"})

    assert delta == ["c", "b"]


@pytest.mark.asyncio
async def test_import_adds_delta_and_records_event(components, user, anon):
    registry, favorites, event_log, reconciler = components
    link = await registry.create(["poi-1", "poi-2", "poi-3"], owner=user)
    await favorites.add(anon, "poi-2")

    result = await reconciler.import_link(link.share_code, anon, importer_name="Sam")

    assert result.added == ["poi-1", "poi-3"]
    assert result.added_count == 2
    assert not result.already_imported
    assert result.favorites == {"poi-1", "poi-2", "poi-3"}
    assert result.link.import_count == 2
    events = await event_log.events_for_link(link.id)
    assert [event.imported_count for event in events] == [2]
    assert events[0].imported_by is None


@pytest.mark.asyncio
async def test_zero_delta_import_is_a_no_op(components, user):
    """Re-importing writes no event and leaves the counters untouched"""
    registry, favorites, event_log, reconciler = components
    importer = AuthenticatedIdentity("user-2")
    link = await registry.create(["poi-1"], owner=user)

    await reconciler.import_link(link.share_code, importer)
    second = await reconciler.import_link(link.share_code, importer)

    assert second.already_imported
    assert second.added_count == 0
    stored = await registry.get(link.id, refresh=True)
    assert stored.import_count == 1
    assert len(await event_log.events_for_link(link.id)) == 1
    assert await favorites.list(importer) == {"poi-1"}


@pytest.mark.asyncio
async def test_unknown_code_changes_nothing(components, anon):
    _, favorites, _, reconciler = components
    await favorites.add(anon, "poi-1")

    with pytest.raises(NotFoundError):
        await reconciler.import_link("MISSING9", anon)
    assert await favorites.list(anon) == {"poi-1"}
