from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint

from poi_share.core.db import Base
from poi_share.core.timeutils import utcnow


class PoiFavorite(Base):
    """Remote favorite of an authenticated user; one row per (user, poi)."""

    __tablename__ = "poi_favorites"
    __table_args__ = (
        UniqueConstraint("user_id", "poi_id", name="uq_poi_favorites_user_poi"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    poi_id = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<PoiFavorite user_id={self.user_id} poi_id={self.poi_id}>"
