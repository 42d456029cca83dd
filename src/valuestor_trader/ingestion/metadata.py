"""Resolve off-chain token metadata documents referenced by issuance events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Tuple

import requests
from cachetools import TTLCache

from ..config.settings import MetadataConfig, get_app_config
from ..monitoring.logger import get_logger
from ..utils.constants import IPFS_SCHEME, THEME_VALUES

DEFAULT_HEADERS = {"User-Agent": "valuestor-trader/1.0", "Accept": "application/json"}

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class MetadataDocument:
    """The optional descriptive fields taken from a metadata document."""

    description: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[Tuple[str, ...]] = None


EMPTY_DOCUMENT = MetadataDocument()


def _normalize_category(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value:
        return None
    lowered = value.strip().lower()
    if lowered in THEME_VALUES:
        return lowered
    return value.strip() or value


def _normalize_tags(value: Any) -> Optional[Tuple[str, ...]]:
    if isinstance(value, str):
        return (value,) if value else None
    if not isinstance(value, list):
        return None
    return tuple(str(item) for item in value if isinstance(item, (str, int, float)))


class MetadataClient:
    """Fetch metadata JSON over HTTP(S), rewriting ``ipfs://`` through a gateway."""

    def __init__(
        self,
        config: Optional[MetadataConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config().metadata
        self._cache: TTLCache = TTLCache(
            maxsize=self._config.cache_size,
            ttl=max(self._config.cache_ttl_seconds, 1),
        )
        self._session = session or requests.Session()

    def resolve_url(self, uri: str) -> str:
        if uri.startswith(IPFS_SCHEME):
            gateway = str(self._config.ipfs_gateway)
            if not gateway.endswith("/"):
                gateway += "/"
            return gateway + uri[len(IPFS_SCHEME):]
        return uri

    def fetch(self, uri: str) -> MetadataDocument:
        """Return the document for ``uri`` or an empty one on any failure."""

        if not uri:
            return EMPTY_DOCUMENT
        if self._config.cache_ttl_seconds > 0 and uri in self._cache:
            return self._cache[uri]

        url = self.resolve_url(uri)
        try:
            response = self._session.get(
                url,
                headers=DEFAULT_HEADERS,
                timeout=self._config.timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Failed to fetch token metadata", extra={"uri": uri, "error": str(exc)})
            return EMPTY_DOCUMENT

        if not isinstance(payload, dict):
            logger.warning("Token metadata is not a JSON object", extra={"uri": uri})
            return EMPTY_DOCUMENT

        description = payload.get("description")
        document = MetadataDocument(
            description=description if isinstance(description, str) and description else None,
            category=_normalize_category(payload.get("category")),
            tags=_normalize_tags(payload.get("tags")),
        )
        if self._config.cache_ttl_seconds > 0:
            self._cache[uri] = document
        return document


__all__ = ["EMPTY_DOCUMENT", "MetadataClient", "MetadataDocument"]
