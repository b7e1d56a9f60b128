"""
LinkRegistry - immutable shared snapshots of a favorites set.
"""
import logging
import secrets
from typing import Callable, Iterable, List, Optional, Set
from urllib.parse import urlencode

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from poi_share.config.settings import SharingSettings, settings
from poi_share.core.db import translate_db_errors
from poi_share.core.exceptions import (
    AuthorizationError,
    CodeGenerationError,
    ErrorCode,
    SharedLinkNotFoundError,
    ValidationError,
)
from poi_share.core.identity import Identity, user_id_of
from poi_share.models.shared_link import SharedPoiLink
from poi_share.services.favorite_store import normalize_poi_ids

logger = logging.getLogger(__name__)


def generate_share_code(length: int, alphabet: str) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


class LinkRegistry:
    """Creates, resolves and deletes shared links"""

    def __init__(
        self,
        db: AsyncSession,
        sharing: Optional[SharingSettings] = None,
        code_generator: Optional[Callable[[], str]] = None,
    ):
        self.db = db
        self.sharing = sharing or settings.sharing
        self._generate = code_generator or (
            lambda: generate_share_code(self.sharing.code_length, self.sharing.code_alphabet)
        )

    async def create(
        self,
        poi_ids: Iterable[str],
        owner: Optional[Identity] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> SharedPoiLink:
        """
        Snapshot ``poi_ids`` under a new share code.

        Args:
            poi_ids: Favorites to share; duplicates are dropped, order is kept
            owner: Identity creating the link; only authenticated owners can
                   later list or delete it
            name: Optional display name
            description: Optional description

        Returns:
            The persisted link

        Raises:
            ValidationError: If ``poi_ids`` is empty
            CodeGenerationError: If every generated code collided
        """
        snapshot = normalize_poi_ids(poi_ids)
        if not snapshot:
            raise ValidationError(
                "Cannot share an empty favorites list",
                error_code=ErrorCode.EMPTY_SHARE,
            )
        owner_id = user_id_of(owner) if owner is not None else None

        attempts = self.sharing.max_code_attempts
        for attempt in range(1, attempts + 1):
            link = SharedPoiLink(
                share_code=self._generate(),
                user_id=owner_id,
                name=name,
                description=description,
                poi_ids=list(snapshot),
                import_count=0,
            )
            self.db.add(link)
            with translate_db_errors("create_shared_link"):
                try:
                    await self.db.commit()
                except IntegrityError:
                    await self.db.rollback()
                    logger.warning(
                        f"Share code collision on attempt {attempt}/{attempts}, regenerating",
                        extra={"attempt": attempt},
                    )
                    continue

            logger.info(
                f"Created shared link {link.share_code} with {len(snapshot)} POIs",
                extra={"shared_link_id": link.id, "owner_id": owner_id, "poi_count": len(snapshot)},
            )
            return link

        raise CodeGenerationError(attempts)

    async def resolve(self, share_code: str) -> SharedPoiLink:
        """Look up a link by its public code; raises SharedLinkNotFoundError."""
        code = (share_code or "").strip()
        if not code:
            raise SharedLinkNotFoundError(share_code=share_code)
        stmt = select(SharedPoiLink).where(SharedPoiLink.share_code == code)
        with translate_db_errors("resolve_shared_link"):
            link = (await self.db.execute(stmt)).scalar_one_or_none()
        if link is None:
            raise SharedLinkNotFoundError(share_code=code)
        return link

    async def get(self, link_id: str, refresh: bool = False) -> SharedPoiLink:
        with translate_db_errors("get_shared_link"):
            link = await self.db.get(SharedPoiLink, link_id, populate_existing=refresh)
        if link is None:
            raise SharedLinkNotFoundError(link_id=link_id)
        return link

    async def list_for_owner(self, owner_id: str) -> List[SharedPoiLink]:
        stmt = (
            select(SharedPoiLink)
            .where(SharedPoiLink.user_id == owner_id)
            .order_by(SharedPoiLink.created_at.desc())
        )
        with translate_db_errors("list_shared_links"):
            result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def owned_link_ids(self, owner_id: str) -> Set[str]:
        stmt = select(SharedPoiLink.id).where(SharedPoiLink.user_id == owner_id)
        with translate_db_errors("list_shared_link_ids"):
            result = await self.db.execute(stmt)
        return set(result.scalars().all())

    async def delete(self, link_id: str, requester: Identity) -> None:
        """
        Delete a link owned by ``requester``.

        Import events that reference the link are kept.
        """
        link = await self.get(link_id)
        requester_id = user_id_of(requester)
        if link.user_id is None or requester_id != link.user_id:
            raise AuthorizationError(
                "Only the owner can delete a shared link",
                details={"link_id": link_id},
            )
        with translate_db_errors("delete_shared_link"):
            await self.db.delete(link)
            await self.db.commit()
        logger.info(
            f"Deleted shared link {link.share_code}",
            extra={"shared_link_id": link_id, "owner_id": requester_id},
        )

    def share_url(self, share_code: str) -> str:
        base = self.sharing.public_base_url.rstrip("/")
        path = "/" + self.sharing.public_path.lstrip("/")
        return f"{base}{path}?{urlencode({self.sharing.query_param: share_code})}"
