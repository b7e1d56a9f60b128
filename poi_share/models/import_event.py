import uuid

from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint

from poi_share.core.db import Base
from poi_share.core.timeutils import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class PoiImportEvent(Base):
    """Append-only record of one import of a shared link.

    ``shared_link_id`` is not a foreign key; events outlive their link.
    """

    __tablename__ = "poi_import_events"
    __table_args__ = (
        CheckConstraint("imported_count >= 0", name="ck_poi_import_events_count"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    shared_link_id = Column(String(36), nullable=False, index=True)
    imported_count = Column(Integer, nullable=False)
    imported_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<PoiImportEvent link={self.shared_link_id} count={self.imported_count}>"
