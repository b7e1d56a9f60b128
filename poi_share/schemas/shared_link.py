from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SharedLinkCreate(BaseModel):
    poi_ids: list[str] = Field(max_length=1000)
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)


class SharedLinkRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    share_code: str
    owner_id: Optional[str] = Field(default=None, validation_alias="user_id")
    name: Optional[str] = None
    description: Optional[str] = None
    poi_ids: list[str]
    import_count: int
    created_at: datetime
    last_imported_at: Optional[datetime] = None
    share_url: Optional[str] = None


class ImportEventRead(BaseModel):
    """Import event as delivered to dashboards and the realtime stream."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    shared_link_id: str
    imported_count: int
    importer_id: Optional[str] = Field(default=None, validation_alias="imported_by")
    created_at: datetime


class ImportEventMessage(BaseModel):
    """Broker payload published after an import event commits.

    Carries the link counters as they stood right after the atomic
    increment so dashboards can update without re-reading the link.
    """

    event: ImportEventRead
    share_code: str
    link_import_count: int
    link_last_imported_at: Optional[datetime] = None
    importer_name: Optional[str] = None


class ImportResultRead(BaseModel):
    share_code: str
    shared_link_id: str
    added_poi_ids: list[str]
    added_count: int
    already_imported: bool
    favorites: list[str]
