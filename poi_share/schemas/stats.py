from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from poi_share.schemas.shared_link import SharedLinkRead, ImportEventRead


class StatsMode(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class Bucket(BaseModel):
    label: str
    start: date
    total: int = 0


class SharingSummary(BaseModel):
    total_links: int
    total_imports: int
    avg_imports: float


class ImportNotification(BaseModel):
    title: str
    body: str
    url: str
    tag: str
    shared_link_id: str


class DashboardSnapshot(BaseModel):
    mode: StatsMode
    buckets: list[Bucket]
    summary: SharingSummary
    links: list[SharedLinkRead]
    recent_events: list[ImportEventRead] = []
    notification: Optional[ImportNotification] = None
