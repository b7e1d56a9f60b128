"""
Shared link API endpoints - create, resolve, import, and owner statistics
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from poi_share.core.dependencies import (
    ServiceContainer,
    get_identity,
    get_import_reconciler,
    get_link_registry,
    get_owner,
    get_service_container,
    identity_from_headers,
    link_to_read,
)
from poi_share.core.exceptions import PoiSharingException
from poi_share.core.identity import AuthenticatedIdentity, Identity
from poi_share.schemas.base import Envelope, Message
from poi_share.schemas.shared_link import (
    ImportResultRead,
    SharedLinkCreate,
    SharedLinkRead,
)
from poi_share.schemas.stats import DashboardSnapshot, ImportNotification, StatsMode
from poi_share.services.import_dashboard import ImportDashboard
from poi_share.services.import_reconciler import ImportReconciler
from poi_share.services.link_registry import LinkRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shared-links", tags=["shared-links"])

# Close code sent when the dashboard socket cannot be authenticated.
WS_POLICY_VIOLATION = 1008


@router.post("", response_model=Envelope[SharedLinkRead], status_code=status.HTTP_201_CREATED)
async def create_shared_link(
    link_data: SharedLinkCreate,
    identity: Identity = Depends(get_identity),
    registry: LinkRegistry = Depends(get_link_registry),
):
    """
    Share a snapshot of favorites

    - **poi_ids**: POIs to share, at least one
    - **name** / **description**: Optional label shown to importers

    Anonymous callers may share too; such links have no owner and do not
    appear on any dashboard.
    """
    link = await registry.create(
        link_data.poi_ids,
        owner=identity,
        name=link_data.name,
        description=link_data.description,
    )
    return Envelope(status="ok", data=link_to_read(registry, link))


@router.get("", response_model=Envelope[list[SharedLinkRead]])
async def list_shared_links(
    owner: AuthenticatedIdentity = Depends(get_owner),
    registry: LinkRegistry = Depends(get_link_registry),
):
    """List the caller's links, newest first."""
    links = await registry.list_for_owner(owner.user_id)
    return Envelope(status="ok", data=[link_to_read(registry, link) for link in links])


@router.get("/resolve", response_model=Envelope[SharedLinkRead])
async def resolve_shared_link(
    share: str = Query(..., min_length=1, max_length=64),
    registry: LinkRegistry = Depends(get_link_registry),
):
    """Resolve a share code; no identity needed to preview a link."""
    link = await registry.resolve(share)
    return Envelope(status="ok", data=link_to_read(registry, link))


@router.post("/import", response_model=Envelope[ImportResultRead])
async def import_shared_link(
    share: str = Query(..., min_length=1, max_length=64),
    name: Optional[str] = Query(None, max_length=100, description="Importer name shown to the owner"),
    identity: Identity = Depends(get_identity),
    reconciler: ImportReconciler = Depends(get_import_reconciler),
):
    """
    Import a shared link into the caller's favorites

    Only POIs the caller does not already have are counted; importing the
    same link twice records nothing the second time.
    """
    result = await reconciler.import_link(share, identity, importer_name=name)
    return Envelope(
        status="ok",
        data=ImportResultRead(
            share_code=result.link.share_code,
            shared_link_id=result.link.id,
            added_poi_ids=result.added,
            added_count=result.added_count,
            already_imported=result.already_imported,
            favorites=sorted(result.favorites),
        ),
    )


@router.get("/stats", response_model=Envelope[DashboardSnapshot])
async def get_sharing_stats(
    mode: StatsMode = Query(StatsMode.DAILY),
    owner: AuthenticatedIdentity = Depends(get_owner),
    container: ServiceContainer = Depends(get_service_container),
):
    """
    Import statistics for the caller's links

    - **mode**: ``daily`` (last 14 days) or ``weekly`` (last 8 ISO weeks)
    """
    dashboard = await _load_dashboard(owner.user_id, container, mode)
    return Envelope(status="ok", data=dashboard.snapshot())


@router.delete("/{link_id}", response_model=Envelope[Message])
async def delete_shared_link(
    link_id: str,
    identity: Identity = Depends(get_identity),
    registry: LinkRegistry = Depends(get_link_registry),
):
    """Delete a link; only its owner may do so. Import history is kept."""
    await registry.delete(link_id, identity)
    return Envelope(status="ok", data=Message(message="Shared link deleted"))


async def _load_dashboard(
    owner_id: str,
    container: ServiceContainer,
    mode: StatsMode = StatsMode.DAILY,
    on_update=None,
) -> ImportDashboard:
    links, events = await container.load_owner_activity(owner_id)
    return ImportDashboard(
        owner_id,
        container.get_notifier(),
        links=links,
        events=events,
        mode=mode,
        stats=container.settings.stats,
        link_loader=container.load_link,
        activity_loader=container.load_owner_activity,
        on_update=on_update,
        notification_url=container.settings.sharing.public_base_url,
    )


@router.websocket("/events")
async def dashboard_events(websocket: WebSocket, token: Optional[str] = None):
    """
    Live sharing dashboard

    Authenticates with a bearer header or ``?token=``. The server sends a
    ``snapshot`` message on connect and after every import of one of the
    owner's links (with the one-shot ``notification`` set). The client may
    send ``{"mode": "daily"|"weekly"}`` to switch the bucket series.
    """
    try:
        identity = identity_from_headers(websocket.headers, token=token)
    except PoiSharingException:
        identity = None
    if not isinstance(identity, AuthenticatedIdentity):
        await websocket.close(code=WS_POLICY_VIOLATION)
        return

    container: ServiceContainer = websocket.app.state.service_container
    await websocket.accept()
    send_lock = asyncio.Lock()

    async def send_snapshot(board: ImportDashboard, notification: Optional[ImportNotification] = None):
        async with send_lock:
            await websocket.send_json({
                "type": "snapshot",
                "data": board.snapshot(notification).model_dump(mode="json"),
            })

    # Subscribe before reading history; events present in both are applied once.
    subscription = await container.get_notifier().subscribe(identity.user_id)
    try:
        dashboard = await _load_dashboard(identity.user_id, container, on_update=send_snapshot)
    except BaseException:
        await subscription.unsubscribe()
        raise

    try:
        await dashboard.start(subscription)
        await send_snapshot(dashboard)
        while True:
            try:
                payload = await websocket.receive_json()
                mode = StatsMode(payload.get("mode"))
            except (AttributeError, ValueError):
                async with send_lock:
                    await websocket.send_json({"type": "error", "error": "mode must be daily or weekly"})
                continue
            dashboard.set_mode(mode)
            await send_snapshot(dashboard)
    except WebSocketDisconnect:
        logger.info(f"Dashboard socket closed for {identity.user_id}")
    finally:
        await dashboard.stop()
