"""
Dependency injection setup for FastAPI.

Provides the service container held on ``app.state`` and the per-request
providers for identities, database sessions and the sharing services.
"""

from fastapi import Depends, Request
from typing import AsyncIterator, List, Mapping, Optional, Set, Tuple
import logging
import asyncio

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from poi_share.config.settings import Settings, settings as default_settings
from poi_share.core.db import SessionLocal
from poi_share.core.exceptions import AuthenticationRequiredError, PoiSharingException
from poi_share.core.identity import AnonymousIdentity, AuthenticatedIdentity, Identity
from poi_share.core.security import verify_token
from poi_share.schemas.shared_link import ImportEventRead, SharedLinkRead
from poi_share.services.device_storage import DeviceStorage, JsonFileDeviceStorage
from poi_share.services.favorite_store import FavoriteStore
from poi_share.services.import_event_log import ImportEventLog
from poi_share.services.import_reconciler import ImportReconciler
from poi_share.services.link_registry import LinkRegistry
from poi_share.services.realtime_notifier import ImportEventBroker, RealtimeNotifier, create_broker


logger = logging.getLogger(__name__)


class ServiceContainer:
    """
    Container for the long-lived services shared by all requests.

    Sessions are opened per request from ``session_factory``; the broker
    and the device storage live for the lifetime of the application.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        device_storage: Optional[DeviceStorage] = None,
        broker: Optional[ImportEventBroker] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or default_settings
        self.session_factory = session_factory or SessionLocal
        self._device_storage = device_storage
        self._broker = broker
        self._notifier: Optional[RealtimeNotifier] = None
        self._initialized = False
        self._initialization_lock = asyncio.Lock()

    async def initialize_services(self) -> None:
        async with self._initialization_lock:
            if self._initialized:
                return

            logger.info("Initializing service container")

            if self._device_storage is None:
                self._device_storage = JsonFileDeviceStorage(self.settings.get_device_storage_path())
            broker = self._broker or create_broker(self.settings.realtime, self.settings.redis)
            self._notifier = RealtimeNotifier(broker, self.load_owned_link_ids, self.settings.realtime)
            await self._notifier.start()

            self._initialized = True
            logger.info(
                "Service container initialized",
                extra={"broker": type(broker).__name__},
            )

    async def cleanup_services(self) -> None:
        async with self._initialization_lock:
            if not self._initialized:
                return
            logger.info("Cleaning up service container")
            try:
                await self._notifier.close()
            except PoiSharingException as e:
                logger.warning(f"Broker shutdown failed: {e.message}")
            self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def get_device_storage(self) -> DeviceStorage:
        if not self._initialized:
            raise RuntimeError("Service container not initialized")
        return self._device_storage

    def get_notifier(self) -> RealtimeNotifier:
        if not self._initialized:
            raise RuntimeError("Service container not initialized")
        return self._notifier

    async def load_owned_link_ids(self, owner_id: str) -> Set[str]:
        """Owned link ids for realtime filtering; runs outside any request session."""
        async with self.session_factory() as db:
            return await LinkRegistry(db, self.settings.sharing).owned_link_ids(owner_id)

    async def load_link(self, link_id: str) -> Optional[SharedLinkRead]:
        async with self.session_factory() as db:
            registry = LinkRegistry(db, self.settings.sharing)
            try:
                link = await registry.get(link_id)
            except PoiSharingException:
                return None
            return link_to_read(registry, link)

    async def load_owner_activity(
        self, owner_id: str
    ) -> Tuple[List[SharedLinkRead], List[ImportEventRead]]:
        """The owner's links and their import events, read in one session."""
        async with self.session_factory() as db:
            registry = LinkRegistry(db, self.settings.sharing)
            links = await registry.list_for_owner(owner_id)
            events = await ImportEventLog(db).events_for_owner(owner_id)
            return (
                [link_to_read(registry, link) for link in links],
                [ImportEventRead.model_validate(event) for event in events],
            )


def link_to_read(registry: LinkRegistry, link) -> SharedLinkRead:
    read = SharedLinkRead.model_validate(link)
    return read.model_copy(update={"share_url": registry.share_url(link.share_code)})


def get_service_container(request: Request) -> ServiceContainer:
    """
    Get the service container from application state.

    Raises:
        RuntimeError: If the lifespan has not initialized the container
    """
    container = getattr(request.app.state, 'service_container', None)
    if container is None or not container.initialized:
        logger.error("Service container not initialized")
        raise RuntimeError("Service container not available")
    return container


async def get_session(
    container: ServiceContainer = Depends(get_service_container)
) -> AsyncIterator[AsyncSession]:
    """Database session for one request."""
    async with container.session_factory() as db:
        yield db


def get_request_id(request: Request) -> str:
    return getattr(request.state, 'request_id', 'unknown')


def identity_from_headers(
    headers: Mapping[str, str], token: Optional[str] = None
) -> Optional[Identity]:
    """
    Derive the caller identity.

    A bearer token (or an explicit ``token``) yields an authenticated
    identity; a device id header yields an anonymous one. A token that does
    not verify is rejected rather than downgraded to the device identity.
    """
    authorization = headers.get("authorization")
    if token is None and authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()

    if token:
        subject = verify_token(token).get("sub")
        if not subject:
            raise AuthenticationRequiredError("Invalid or expired token")
        return AuthenticatedIdentity(str(subject))

    device_id = headers.get(default_settings.security.device_id_header)
    if device_id:
        return AnonymousIdentity(device_id.strip())
    return None


def get_device_identity(request: Request) -> Optional[AnonymousIdentity]:
    """The device identity sent by the caller, even when a bearer token wins."""
    device_id = request.headers.get(default_settings.security.device_id_header, "").strip()
    return AnonymousIdentity(device_id) if device_id else None


async def get_identity(request: Request) -> Identity:
    identity = identity_from_headers(request.headers)
    if identity is None:
        raise AuthenticationRequiredError(
            f"Send a bearer token or the {default_settings.security.device_id_header} header"
        )
    return identity


async def get_owner(identity: Identity = Depends(get_identity)) -> AuthenticatedIdentity:
    """Authenticated identity; link ownership and dashboards need a user account."""
    if not isinstance(identity, AuthenticatedIdentity):
        raise AuthenticationRequiredError("Sign in to manage shared links")
    return identity


def get_favorite_store(
    db: AsyncSession = Depends(get_session),
    container: ServiceContainer = Depends(get_service_container),
) -> FavoriteStore:
    return FavoriteStore(db, container.get_device_storage())


def get_link_registry(
    db: AsyncSession = Depends(get_session),
    container: ServiceContainer = Depends(get_service_container),
) -> LinkRegistry:
    return LinkRegistry(db, container.settings.sharing)


def get_import_event_log(
    db: AsyncSession = Depends(get_session),
    container: ServiceContainer = Depends(get_service_container),
) -> ImportEventLog:
    return ImportEventLog(db, publisher=container.get_notifier())


def get_import_reconciler(
    registry: LinkRegistry = Depends(get_link_registry),
    favorites: FavoriteStore = Depends(get_favorite_store),
    event_log: ImportEventLog = Depends(get_import_event_log),
) -> ImportReconciler:
    return ImportReconciler(registry, favorites, event_log)
