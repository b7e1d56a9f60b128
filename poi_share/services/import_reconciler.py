"""
ImportReconciler - import a shared link into an importer's favorites.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

from poi_share.core.exceptions import SharedLinkNotFoundError
from poi_share.core.identity import Identity, user_id_of
from poi_share.models.shared_link import SharedPoiLink
from poi_share.services.favorite_store import FavoriteStore
from poi_share.services.import_event_log import ImportEventLog
from poi_share.services.link_registry import LinkRegistry

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    link: SharedPoiLink
    added: List[str]
    favorites: Set[str] = field(default_factory=set)

    @property
    def added_count(self) -> int:
        return len(self.added)

    @property
    def already_imported(self) -> bool:
        return not self.added


class ImportReconciler:
    def __init__(self, registry: LinkRegistry, favorites: FavoriteStore, event_log: ImportEventLog):
        self.registry = registry
        self.favorites = favorites
        self.event_log = event_log

    async def resolve_delta(
        self, share_code: str, current_favorites: Iterable[str]
    ) -> Tuple[SharedPoiLink, List[str]]:
        """Return the link and its POIs the importer does not have yet, in link order."""
        link = await self.registry.resolve(share_code)
        current = set(current_favorites)
        delta = [poi_id for poi_id in link.poi_ids if poi_id not in current]
        return link, delta

    async def import_link(
        self,
        share_code: str,
        importer: Identity,
        importer_name: Optional[str] = None,
    ) -> ImportResult:
        """
        Import a shared link into ``importer``'s favorites.

        The full link snapshot is merged (merge is idempotent), but only the
        delta is recorded: a zero-delta import writes no event and leaves the
        link counters untouched.
        """
        current = await self.favorites.list(importer)
        link, delta = await self.resolve_delta(share_code, current)

        merged = await self.favorites.merge(importer, link.poi_ids)

        if delta:
            await self.event_log.append(
                link.id,
                len(delta),
                importer_id=user_id_of(importer),
                importer_name=importer_name,
            )
            try:
                link = await self.registry.get(link.id, refresh=True)
            except SharedLinkNotFoundError:
                logger.info(f"Link {link.share_code} was deleted right after import")
        else:
            logger.info(
                f"Link {link.share_code} already imported, nothing to record",
                extra={"shared_link_id": link.id, "importer": importer.key},
            )

        return ImportResult(link=link, added=delta, favorites=merged)
