"""
FavoriteStore - per-identity sets of favorited POI ids.

Anonymous identities are served from device-local storage, authenticated
identities from the ``poi_favorites`` table. The store picks the backend
from the identity variant; callers never branch on storage themselves.
"""
import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Set

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from poi_share.core.db import translate_db_errors
from poi_share.core.exceptions import ConflictError, ValidationError
from poi_share.core.identity import AnonymousIdentity, AuthenticatedIdentity, Identity
from poi_share.core.timeutils import utcnow
from poi_share.models.favorite import PoiFavorite
from poi_share.services.device_storage import FAVORITES_KEY, DeviceStorage

logger = logging.getLogger(__name__)

MAX_POI_ID_LENGTH = 64


def normalize_poi_ids(poi_ids: Iterable[str]) -> List[str]:
    """De-duplicate ids keeping first-seen order; reject blank or oversized ids."""
    seen: Set[str] = set()
    result: List[str] = []
    for raw in poi_ids:
        poi_id = str(raw).strip()
        if not poi_id:
            raise ValidationError("POI ids must be non-empty strings")
        if len(poi_id) > MAX_POI_ID_LENGTH:
            raise ValidationError(
                "POI id is too long",
                details={"poi_id": poi_id[:MAX_POI_ID_LENGTH], "max_length": MAX_POI_ID_LENGTH},
            )
        if poi_id not in seen:
            seen.add(poi_id)
            result.append(poi_id)
    return result


class FavoriteBackend(ABC):
    """Storage for a single identity's favorites. All writes are idempotent."""

    @abstractmethod
    async def list(self) -> Set[str]:
        ...

    @abstractmethod
    async def add(self, poi_id: str) -> None:
        ...

    @abstractmethod
    async def remove(self, poi_id: str) -> None:
        ...

    @abstractmethod
    async def add_missing(self, poi_ids: List[str]) -> List[str]:
        """Insert ids not yet present; return the ids actually written."""

    @abstractmethod
    async def toggle(self, poi_id: str) -> bool:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...


class LocalFavoriteBackend(FavoriteBackend):
    def __init__(self, storage: DeviceStorage, device_id: str):
        self.storage = storage
        self.device_id = device_id

    async def list(self) -> Set[str]:
        return set(await self.storage.get_list(self.device_id, FAVORITES_KEY))

    async def add(self, poi_id: str) -> None:
        await self.storage.update_list(
            self.device_id, FAVORITES_KEY,
            lambda current: current if poi_id in current else current + [poi_id],
        )

    async def remove(self, poi_id: str) -> None:
        await self.storage.update_list(
            self.device_id, FAVORITES_KEY,
            lambda current: [p for p in current if p != poi_id],
        )

    async def add_missing(self, poi_ids: List[str]) -> List[str]:
        added: List[str] = []

        def _merge(current: List[str]) -> List[str]:
            added.clear()
            present = set(current)
            added.extend(p for p in poi_ids if p not in present)
            return current + added

        await self.storage.update_list(self.device_id, FAVORITES_KEY, _merge)
        return list(added)

    async def toggle(self, poi_id: str) -> bool:
        result = await self.storage.update_list(
            self.device_id, FAVORITES_KEY,
            lambda current: [p for p in current if p != poi_id] if poi_id in current else current + [poi_id],
        )
        return poi_id in result

    async def clear(self) -> None:
        await self.storage.remove(self.device_id, FAVORITES_KEY)


class RemoteFavoriteBackend(FavoriteBackend):
    def __init__(self, db: AsyncSession, user_id: str):
        self.db = db
        self.user_id = user_id

    async def list(self) -> Set[str]:
        stmt = select(PoiFavorite.poi_id).where(PoiFavorite.user_id == self.user_id)
        with translate_db_errors("list_favorites"):
            result = await self.db.execute(stmt)
        return set(result.scalars().all())

    def _insert_ignore(self, poi_ids: List[str]):
        """Dialect-specific INSERT .. ON CONFLICT DO NOTHING on (user_id, poi_id)."""
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:  # pragma: no cover
            raise NotImplementedError(f"insert-ignore not available for dialect '{dialect}'")
        now = utcnow()
        rows = [{"user_id": self.user_id, "poi_id": p, "created_at": now} for p in poi_ids]
        return insert(PoiFavorite).values(rows).on_conflict_do_nothing(
            index_elements=["user_id", "poi_id"]
        )

    async def add(self, poi_id: str) -> None:
        await self.add_missing([poi_id])

    async def remove(self, poi_id: str) -> None:
        stmt = delete(PoiFavorite).where(
            PoiFavorite.user_id == self.user_id,
            PoiFavorite.poi_id == poi_id,
        )
        with translate_db_errors("remove_favorite"):
            await self.db.execute(stmt)
            await self.db.commit()

    async def add_missing(self, poi_ids: List[str]) -> List[str]:
        existing = await self.list()
        missing = [p for p in poi_ids if p not in existing]
        if not missing:
            return []
        with translate_db_errors("add_favorites"):
            await self.db.execute(self._insert_ignore(missing))
            await self.db.commit()
        return missing

    async def toggle(self, poi_id: str) -> bool:
        stmt = select(PoiFavorite).where(
            PoiFavorite.user_id == self.user_id,
            PoiFavorite.poi_id == poi_id,
        )
        with translate_db_errors("toggle_favorite"):
            existing = (await self.db.execute(stmt)).scalar_one_or_none()
            if existing:
                await self.db.delete(existing)
                await self.db.commit()
                return False

            self.db.add(PoiFavorite(user_id=self.user_id, poi_id=poi_id))
            try:
                await self.db.commit()
            except IntegrityError as e:
                await self.db.rollback()
                raise ConflictError(
                    "Favorite was changed concurrently",
                    details={"poi_id": poi_id},
                ) from e
        return True

    async def clear(self) -> None:
        with translate_db_errors("clear_favorites"):
            await self.db.execute(delete(PoiFavorite).where(PoiFavorite.user_id == self.user_id))
            await self.db.commit()


class FavoriteStore:
    """Favorites for anonymous and authenticated identities."""

    def __init__(self, db: AsyncSession, device_storage: DeviceStorage):
        self.db = db
        self.device_storage = device_storage

    def backend_for(self, identity: Identity) -> FavoriteBackend:
        if isinstance(identity, AuthenticatedIdentity):
            return RemoteFavoriteBackend(self.db, identity.user_id)
        if isinstance(identity, AnonymousIdentity):
            return LocalFavoriteBackend(self.device_storage, identity.device_id)
        raise TypeError(f"Unsupported identity: {identity!r}")

    async def list(self, identity: Identity) -> Set[str]:
        return await self.backend_for(identity).list()

    async def toggle(self, identity: Identity, poi_id: str) -> bool:
        """Remove ``poi_id`` if present, add it otherwise; return the new state."""
        (poi_id,) = normalize_poi_ids([poi_id])
        favorited = await self.backend_for(identity).toggle(poi_id)
        logger.info(
            f"Favorite {'added' if favorited else 'removed'}: {poi_id}",
            extra={"identity": identity.key, "poi_id": poi_id},
        )
        return favorited

    async def add(self, identity: Identity, poi_id: str) -> None:
        (poi_id,) = normalize_poi_ids([poi_id])
        await self.backend_for(identity).add(poi_id)

    async def remove(self, identity: Identity, poi_id: str) -> None:
        (poi_id,) = normalize_poi_ids([poi_id])
        await self.backend_for(identity).remove(poi_id)

    async def merge(self, identity: Identity, incoming_ids: Iterable[str]) -> Set[str]:
        """
        Union ``incoming_ids`` into the identity's favorites.

        Only ids not already stored are written, and an id that appears
        concurrently is skipped rather than reported, so merging the same
        set twice is a no-op.

        Returns:
            The resulting favorites set
        """
        incoming = normalize_poi_ids(incoming_ids)
        backend = self.backend_for(identity)
        if incoming:
            added = await backend.add_missing(incoming)
            if added:
                logger.info(
                    f"Merged {len(added)} new favorites",
                    extra={"identity": identity.key, "added": len(added)},
                )
        return await backend.list()

    async def merge_on_login(
        self, anonymous: AnonymousIdentity, authenticated: AuthenticatedIdentity
    ) -> Set[str]:
        """Move a device's favorites into the user's remote set, then clear the device list."""
        local_backend = self.backend_for(anonymous)
        local_ids = await local_backend.list()
        merged = await self.merge(authenticated, sorted(local_ids))
        await local_backend.clear()
        logger.info(
            f"Reconciled {len(local_ids)} device favorites on login",
            extra={"device": anonymous.key, "user": authenticated.key},
        )
        return merged
