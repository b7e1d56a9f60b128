"""
ImportEventLog - append-only import history with atomic link counters.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from poi_share.core.db import translate_db_errors
from poi_share.core.exceptions import PoiSharingException, SharedLinkNotFoundError, ValidationError
from poi_share.core.timeutils import utcnow
from poi_share.models.import_event import PoiImportEvent
from poi_share.models.shared_link import SharedPoiLink
from poi_share.schemas.shared_link import ImportEventMessage, ImportEventRead

logger = logging.getLogger(__name__)


class ImportEventPublisher(Protocol):
    async def publish(self, message: ImportEventMessage) -> None: ...


class ImportEventLog:
    def __init__(
        self,
        db: AsyncSession,
        publisher: Optional[ImportEventPublisher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.publisher = publisher
        self.clock = clock

    async def append(
        self,
        shared_link_id: str,
        imported_count: int,
        importer_id: Optional[str] = None,
        importer_name: Optional[str] = None,
    ) -> PoiImportEvent:
        """
        Record an import and bump the link's counters in one transaction.

        The counter is incremented in SQL (``import_count = import_count + n``)
        so concurrent importers of the same link never lose updates.

        Raises:
            ValidationError: If ``imported_count`` is negative or exceeds the
                link's snapshot size (nothing is written)
            SharedLinkNotFoundError: If the link does not exist (nothing is written)
        """
        if imported_count < 0:
            raise ValidationError(
                "imported_count must be >= 0",
                details={"imported_count": imported_count},
            )

        now = self.clock()
        # UPDATE first so the write lock is taken before anything is read.
        stmt = (
            update(SharedPoiLink)
            .where(SharedPoiLink.id == shared_link_id)
            .values(
                import_count=SharedPoiLink.import_count + imported_count,
                last_imported_at=now,
            )
            .returning(SharedPoiLink.share_code, SharedPoiLink.import_count, SharedPoiLink.poi_ids)
            .execution_options(synchronize_session=False)
        )

        with translate_db_errors("append_import_event"):
            row = (await self.db.execute(stmt)).one_or_none()
            if row is None:
                await self.db.rollback()
                raise SharedLinkNotFoundError(link_id=shared_link_id)
            if imported_count > len(row.poi_ids):
                await self.db.rollback()
                raise ValidationError(
                    "imported_count exceeds the shared snapshot",
                    details={"imported_count": imported_count, "snapshot_size": len(row.poi_ids)},
                )

            event = PoiImportEvent(
                shared_link_id=shared_link_id,
                imported_count=imported_count,
                imported_by=importer_id,
                created_at=now,
            )
            self.db.add(event)
            await self.db.commit()

        share_code, import_count, _ = row
        logger.info(
            f"Import of {imported_count} POIs recorded for link {share_code}",
            extra={
                "shared_link_id": shared_link_id,
                "imported_count": imported_count,
                "importer_id": importer_id,
                "import_count": import_count,
            },
        )

        if self.publisher is not None:
            message = ImportEventMessage(
                event=ImportEventRead.model_validate(event),
                share_code=share_code,
                link_import_count=import_count,
                link_last_imported_at=now,
                importer_name=importer_name,
            )
            try:
                await self.publisher.publish(message)
            except PoiSharingException as e:
                # The event is committed; dashboards catch up on their next load.
                logger.warning(
                    f"Failed to publish import event {event.id}: {e.message}",
                    extra={"shared_link_id": shared_link_id, "error_code": e.error_code.value},
                )
        return event

    async def events_for_link(self, shared_link_id: str) -> List[PoiImportEvent]:
        stmt = (
            select(PoiImportEvent)
            .where(PoiImportEvent.shared_link_id == shared_link_id)
            .order_by(PoiImportEvent.created_at)
        )
        with translate_db_errors("list_import_events"):
            result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def events_for_owner(
        self, owner_id: str, since: Optional[datetime] = None
    ) -> List[PoiImportEvent]:
        """Events of every link currently owned by ``owner_id``, oldest first."""
        stmt = (
            select(PoiImportEvent)
            .join(SharedPoiLink, SharedPoiLink.id == PoiImportEvent.shared_link_id)
            .where(SharedPoiLink.user_id == owner_id)
            .order_by(PoiImportEvent.created_at)
        )
        if since is not None:
            stmt = stmt.where(PoiImportEvent.created_at >= since)
        with translate_db_errors("list_owner_import_events"):
            result = await self.db.execute(stmt)
        return list(result.scalars().all())
