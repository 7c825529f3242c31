"""Marketplace search and detail API clients."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from catalogsync.ingest.errors import (
    ItemNotFoundError,
    TerminalExternalError,
    TransientExternalError,
)
from catalogsync.settings import SyncSettings

logger = logging.getLogger(__name__)

USER_AGENT = "CatalogSyncBot/1.0"
TERMINAL_STATUSES = {401, 402, 403}
TRANSIENT_STATUSES = {408, 425, 429}


def _raise_for_status(response: httpx.Response, what: str) -> None:
    status = response.status_code
    if status < 400:
        return
    if status in TERMINAL_STATUSES:
        raise TerminalExternalError(f"{what}: HTTP {status} (auth or quota)")
    if status in TRANSIENT_STATUSES or status >= 500:
        raise TransientExternalError(f"{what}: HTTP {status}")
    if status == 404:
        raise ItemNotFoundError(f"{what}: not found")
    raise TerminalExternalError(f"{what}: HTTP {status}")


class _MarketplaceClient:
    def __init__(
        self,
        settings: SyncSettings | None = None,
        *,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or SyncSettings()
        self._session = session or httpx.AsyncClient(
            timeout=self.settings.request_timeout, headers={"User-Agent": USER_AGENT}
        )

    async def close(self) -> None:
        await self._session.aclose()

    def _base_params(self) -> dict[str, str]:
        return {
            "api_key": self.settings.api_key,
            "domain": self.settings.marketplace_domain,
        }

    async def _get_json(self, url: str, params: dict[str, Any], what: str) -> Any:
        try:
            response = await self._session.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise TransientExternalError(f"{what}: timeout") from exc
        except httpx.RequestError as exc:
            raise TransientExternalError(f"{what}: {exc.__class__.__name__}: {exc}") from exc
        _raise_for_status(response, what)
        try:
            return response.json()
        except ValueError as exc:
            raise TransientExternalError(f"{what}: invalid JSON body") from exc


class SearchClient(_MarketplaceClient):
    """Paginated keyword search; an empty page means there are no more results."""

    async def search_page(self, query: str, page: int, locale: str) -> list[dict[str, Any]]:
        params = {
            **self._base_params(),
            "query": query,
            "page": str(page),
            "pincode": locale,
        }
        what = f"search {query!r} page {page} ({locale})"
        data = await self._get_json(self.settings.search_url, params, what)
        if isinstance(data, list):
            results = data
        elif isinstance(data, dict):
            results = data.get("results") or []
        else:
            results = []
        items = [item for item in results if isinstance(item, dict)]
        logger.info("Search %s: %s results", what, len(items))
        return items


class DetailClient(_MarketplaceClient):
    """Single listing lookup by external identifier."""

    async def fetch_detail(self, external_id: str) -> dict[str, Any]:
        params = {**self._base_params(), "asin": external_id}
        what = f"detail {external_id}"
        data = await self._get_json(self.settings.detail_url, params, what)
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict) or not data:
            raise ItemNotFoundError(f"{what}: empty payload")
        data.setdefault("asin", external_id)
        return data
