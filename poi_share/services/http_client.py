"""
HTTP client for the favorites and sharing API.

Implements the same ``list``/``add``/``remove`` surface as FavoriteStore so a
device-side FavoritesView can write through the service, and translates HTTP
failures back into the service's exception taxonomy.
"""
import logging
from typing import Any, Dict, Iterable, Optional, Set

import httpx

from poi_share.config.settings import settings
from poi_share.core.exceptions import (
    AuthenticationRequiredError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PoiSharingException,
    ErrorCode,
    TransientNetworkError,
    ValidationError,
)
from poi_share.core.identity import AnonymousIdentity, AuthenticatedIdentity, Identity

logger = logging.getLogger(__name__)


class HttpFavoriteClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self, identity: Identity) -> Dict[str, str]:
        if isinstance(identity, AuthenticatedIdentity):
            if not self.token:
                raise AuthenticationRequiredError("A bearer token is required for authenticated requests")
            return {"Authorization": f"Bearer {self.token}"}
        if isinstance(identity, AnonymousIdentity):
            return {settings.security.device_id_header: identity.device_id}
        raise TypeError(f"Unsupported identity: {identity!r}")

    async def _request(self, method: str, url: str, identity: Identity, **kwargs) -> Any:
        try:
            response = await self._client.request(method, url, headers=self._headers(identity), **kwargs)
        except httpx.TransportError as e:
            raise TransientNetworkError("favorites_api", details={"error": str(e)}) from e

        if response.is_success:
            body = response.json()
            return body.get("data")
        raise self._to_exception(response)

    @staticmethod
    def _to_exception(response: httpx.Response) -> PoiSharingException:
        try:
            body = response.json()
        except ValueError:
            body = {}
        message = body.get("message") or body.get("error") or response.reason_phrase
        details = body.get("details") or {}
        status = response.status_code

        if status == 400 or status == 422:
            return ValidationError(message, details=details)
        if status == 401:
            return AuthenticationRequiredError(message)
        if status == 403:
            return AuthorizationError(message, details=details)
        if status == 404:
            return NotFoundError(message, details=details)
        if status == 409:
            return ConflictError(message, details=details)
        if status >= 500 or status == 429:
            return TransientNetworkError("favorites_api", details={"status_code": status, **details})
        return PoiSharingException(message, ErrorCode.INTERNAL_SERVER_ERROR, details, status)

    async def list(self, identity: Identity) -> Set[str]:
        data = await self._request("GET", "/favorites", identity)
        return set(data["poi_ids"])

    async def add(self, identity: Identity, poi_id: str) -> None:
        await self._request("PUT", f"/favorites/{poi_id}", identity)

    async def remove(self, identity: Identity, poi_id: str) -> None:
        await self._request("DELETE", f"/favorites/{poi_id}", identity)

    async def toggle(self, identity: Identity, poi_id: str) -> bool:
        data = await self._request("POST", f"/favorites/{poi_id}/toggle", identity)
        return bool(data["favorited"])

    async def merge(self, identity: Identity, poi_ids: Iterable[str]) -> Set[str]:
        data = await self._request("POST", "/favorites/merge", identity, json={"poi_ids": list(poi_ids)})
        return set(data["poi_ids"])

    async def resolve(self, identity: Identity, share_code: str) -> Dict[str, Any]:
        return await self._request("GET", "/shared-links/resolve", identity, params={"share": share_code})

    async def import_link(self, identity: Identity, share_code: str) -> Dict[str, Any]:
        return await self._request("POST", "/shared-links/import", identity, params={"share": share_code})
