"""ORM models for favorites, shared links and import events."""

from .favorite import PoiFavorite
from .shared_link import SharedPoiLink
from .import_event import PoiImportEvent

__all__ = ["PoiFavorite", "SharedPoiLink", "PoiImportEvent"]
