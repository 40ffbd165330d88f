# src/nexustrack/infrastructure/nexus/client.py
"""
Async client for the Nexus Mods API.

Bulk questions ("every mod in this game updated after T") go to the v2 GraphQL
endpoint and are paged transparently; single-record lookups that only exist
on the legacy API go to v1 REST. Every failure is raised as one of the
`UpstreamError` subclasses so callers can tell a blip (retry next cycle) from
a broken answer (count it against the item).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from nexustrack import __version__
from nexustrack.config import settings
from nexustrack.domain.errors import (
    ConfigurationError,
    UpstreamStructuralError,
    UpstreamTransientError,
)
from . import queries

log = logging.getLogger(__name__)

# File categories that are never announced.
HIDDEN_FILE_CATEGORIES = ("ARCHIVED", "REMOVED")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Nexus mixes ISO-8601 strings (mods, revisions) and unix seconds (files)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = str(value)
    if text.isdigit():
        return datetime.fromtimestamp(int(text), tz=timezone.utc)
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def unix_seconds(when: datetime) -> str:
    """Filter values for timestamps are strings of whole unix seconds."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return str(int(when.timestamp()))


def condition(value: Any, op: str = "EQUALS") -> List[Dict[str, Any]]:
    return [{"value": value, "op": op}]


def build_mods_filter(
    since: datetime,
    field: str = "createdAt",
    game_domain: Optional[str] = None,
    uploader_id: Optional[int] = None,
    updated_only: bool = False,
    adult: Optional[bool] = None,
) -> Dict[str, Any]:
    """
    Builds a `ModsFilter`. Top-level conditions are ANDed together by the API.
    `adult=None` leaves adult content unfiltered.
    """
    mods_filter: Dict[str, Any] = {field: condition(unix_seconds(since), "GT")}
    if game_domain:
        mods_filter["gameDomainName"] = condition(game_domain)
    if uploader_id is not None:
        mods_filter["uploaderId"] = condition(str(uploader_id))
    if updated_only:
        mods_filter["hasUpdated"] = condition(True)
    if adult is not None:
        mods_filter["adultContent"] = condition(adult)
    return mods_filter


def build_sort(field: str, direction: str = "ASC") -> List[Dict[str, Any]]:
    return [{field: {"direction": direction}}]


class NexusModsClient:
    """Thin async wrapper over the v2 GraphQL and v1 REST endpoints."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        v1_url: Optional[str] = None,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.NEXUS_API_KEY
        if not self.api_key:
            raise ConfigurationError("NEXUS_API_KEY is not set; the Nexus Mods client cannot authenticate.")
        self.api_url = api_url or settings.NEXUS_API_URL
        self.v1_url = (v1_url or settings.NEXUS_V1_URL).rstrip("/")
        self.page_size = min(page_size or settings.NEXUS_PAGE_SIZE, 50)
        self.max_pages = max_pages or settings.NEXUS_MAX_PAGES
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.NEXUS_TIMEOUT,
            transport=transport,
            headers={
                "apikey": self.api_key,
                "Application-Name": "nexustrack",
                "Application-Version": __version__,
                "Accept": "application/json",
            },
        )
        self.requests_made = 0

    async def aclose(self):
        await self._client.aclose()

    # --- Transport ---

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str):
        code = response.status_code
        if code == 429 or code >= 500:
            raise UpstreamTransientError(f"{operation}: HTTP {code}", operation)
        if code >= 400:
            raise UpstreamStructuralError(f"{operation}: HTTP {code} {response.text[:200]}", operation)

    async def _send(self, method: str, url: str, operation: str, missing_ok: bool = False, **kwargs) -> Any:
        self.requests_made += 1
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamTransientError(f"{operation}: timed out ({e})", operation) from e
        except httpx.TransportError as e:
            raise UpstreamTransientError(f"{operation}: transport error ({e})", operation) from e
        if missing_ok and response.status_code == 404:
            return None
        self._raise_for_status(response, operation)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamStructuralError(f"{operation}: response is not JSON", operation) from e

    async def _graphql(
        self,
        query: str,
        variables: Dict[str, Any],
        operation: str,
        allow_missing: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        Runs one GraphQL request and returns its `data` object.
        With `allow_missing`, a NOT_FOUND error yields None instead of raising.
        """
        body = await self._send("POST", self.api_url, operation, json={"query": query, "variables": variables})
        if not isinstance(body, dict):
            raise UpstreamStructuralError(f"{operation}: unexpected response shape", operation)
        errors = body.get("errors") or []
        if errors:
            if allow_missing and all(self._is_not_found(e) for e in errors):
                return None
            messages = "; ".join(str(e.get("message", e)) for e in errors)
            raise UpstreamStructuralError(f"{operation}: {messages}", operation)
        data = body.get("data")
        if not isinstance(data, dict):
            raise UpstreamStructuralError(f"{operation}: response has no data", operation)
        return data

    @staticmethod
    def _is_not_found(error: Dict[str, Any]) -> bool:
        code = (error.get("extensions") or {}).get("code", "")
        return code == "NOT_FOUND" or "not found" in str(error.get("message", "")).lower()

    async def _v1(self, path: str, operation: str, allow_missing: bool = False) -> Optional[Any]:
        return await self._send("GET", f"{self.v1_url}/{path.lstrip('/')}", operation, missing_ok=allow_missing)

    # --- Bulk mod queries ---

    async def mods(self, mods_filter: Dict[str, Any], sort: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Pages through `mods(...)` until every node is fetched or the page cap
        is reached. Returned in the order the API sorted them.
        """
        nodes: List[Dict[str, Any]] = []
        offset = 0
        for _ in range(self.max_pages):
            data = await self._graphql(
                queries.MODS,
                {"filter": mods_filter, "sort": sort, "offset": offset, "count": self.page_size},
                "mods",
            )
            result = data.get("mods")
            if not isinstance(result, dict) or not isinstance(result.get("nodes"), list):
                raise UpstreamStructuralError("mods: missing nodes", "mods")
            batch = result["nodes"]
            total = int(result.get("totalCount") or 0)
            nodes.extend(batch)
            if not batch or len(nodes) >= total:
                return nodes
            offset += len(batch)
        log.warning(f"mods: stopped after {self.max_pages} pages with {len(nodes)} nodes fetched")
        return nodes

    async def new_mods_for_game(self, domain: str, since: datetime, adult: Optional[bool] = None) -> List[Dict[str, Any]]:
        return await self.mods(
            build_mods_filter(since, "createdAt", game_domain=domain, adult=adult),
            build_sort("createdAt"),
        )

    async def updated_mods_for_game(self, domain: str, since: datetime, adult: Optional[bool] = None) -> List[Dict[str, Any]]:
        return await self.mods(
            build_mods_filter(since, "updatedAt", game_domain=domain, updated_only=True, adult=adult),
            build_sort("updatedAt"),
        )

    async def mods_by_uploader(
        self,
        member_id: int,
        since: datetime,
        updated: bool = False,
        adult: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        field = "updatedAt" if updated else "createdAt"
        return await self.mods(
            build_mods_filter(since, field, uploader_id=member_id, updated_only=updated, adult=adult),
            build_sort(field),
        )

    # --- Single-entity lookups ---

    async def mods_by_uid(self, uids: List[str]) -> List[Dict[str, Any]]:
        if not uids:
            return []
        data = await self._graphql(queries.MODS_BY_UID, {"uids": [str(u) for u in uids]}, "modsByUid")
        result = data.get("modsByUid") or {}
        return list(result.get("nodes") or [])

    async def mod(self, uid: str) -> Optional[Dict[str, Any]]:
        found = await self.mods_by_uid([uid])
        return found[0] if found else None

    async def mod_by_domain(self, domain: str, mod_id: int) -> Optional[Dict[str, Any]]:
        """Looks a mod up by its site address (game domain + numeric mod id)."""
        data = await self._graphql(
            queries.LEGACY_MODS_BY_DOMAIN,
            {"ids": [{"gameDomain": domain, "modId": int(mod_id)}], "count": 1, "offset": 0},
            "legacyModsByDomain",
        )
        nodes = (data.get("legacyModsByDomain") or {}).get("nodes") or []
        return nodes[0] if nodes else None

    async def mod_files(self, game_id: int, mod_id: int) -> List[Dict[str, Any]]:
        """Files of a mod, newest first."""
        data = await self._graphql(queries.MOD_FILES, {"modId": int(mod_id), "gameId": int(game_id)}, "modFiles")
        files = data.get("modFiles")
        if files is None:
            raise UpstreamStructuralError("modFiles: missing file list", "modFiles")
        return sorted(files, key=lambda f: f.get("date") or 0, reverse=True)

    async def collection(self, domain: str, slug: str, adult: bool = True) -> Optional[Dict[str, Any]]:
        data = await self._graphql(
            queries.COLLECTION,
            {"slug": slug, "adult": adult, "domain": domain},
            "collection",
            allow_missing=True,
        )
        return data.get("collection") if data else None

    async def collection_revisions(self, domain: str, slug: str) -> List[Dict[str, Any]]:
        data = await self._graphql(
            queries.COLLECTION_REVISIONS,
            {"slug": slug, "domain": domain},
            "collectionRevisions",
        )
        collection = data.get("collection")
        if not collection or collection.get("revisions") is None:
            raise UpstreamStructuralError("collectionRevisions: missing revisions", "collectionRevisions")
        return list(collection["revisions"])

    async def find_user(self, id_or_name: int | str) -> Optional[Dict[str, Any]]:
        if isinstance(id_or_name, int) or str(id_or_name).isdigit():
            data = await self._graphql(queries.USER_BY_ID, {"id": int(id_or_name)}, "user", allow_missing=True)
            return data.get("user") if data else None
        data = await self._graphql(queries.USER_BY_NAME, {"username": str(id_or_name)}, "userByName", allow_missing=True)
        return data.get("userByName") if data else None

    # --- v1 REST ---

    async def game_info(self, domain: str) -> Optional[Dict[str, Any]]:
        return await self._v1(f"games/{domain}.json", "game", allow_missing=True)


__all__ = [
    "NexusModsClient",
    "HIDDEN_FILE_CATEGORIES",
    "parse_timestamp",
    "build_mods_filter",
    "build_sort",
]
