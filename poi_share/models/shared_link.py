import uuid

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON
from sqlalchemy.dialects.postgresql import JSONB

from poi_share.core.db import Base
from poi_share.core.timeutils import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class SharedPoiLink(Base):
    """Immutable snapshot of a favorites set, published under ``share_code``.

    ``poi_ids`` is written once at creation. ``import_count`` and
    ``last_imported_at`` are only ever changed by the import event log's
    atomic increment.
    """

    __tablename__ = "shared_poi_links"

    id = Column(String(36), primary_key=True, default=_new_id)
    share_code = Column(String(32), unique=True, nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    poi_ids = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    import_count = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_imported_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<SharedPoiLink id={self.id} share_code={self.share_code} imports={self.import_count}>"
