"""Collectors turn a subject handle into raw post records.

Collection is slow and failure-prone I/O owned by the provider; the pipeline
only calls :meth:`Collector.collect` and records whatever it raises.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

import httpx

from personagen.core.errors import CollaboratorNotConfigured

logger = logging.getLogger(__name__)


class CollectorError(RuntimeError):
    """Raised when a collector cannot produce records for a subject."""


class Collector(Protocol):
    """Contract for collector integrations."""

    def collect(self, subject: str) -> list[dict[str, Any]]:
        """Return the raw records gathered for ``subject``."""


class UnconfiguredCollector:
    """Placeholder used until a collector is configured at start-up."""

    def collect(self, subject: str) -> list[dict[str, Any]]:
        raise CollaboratorNotConfigured(
            "no collector configured; set COLLECTOR_URL or COLLECTOR_SOURCE_DIR"
        )


class DirectoryCollector:
    """Reads ``{source_dir}/{subject}.json`` exports, for offline runs and demos."""

    def __init__(self, source_dir: Path) -> None:
        self._source_dir = Path(source_dir).expanduser()

    def collect(self, subject: str) -> list[dict[str, Any]]:
        path = self._source_dir / f"{subject}.json"
        if not path.is_file():
            raise CollectorError(f"no export found for {subject} in {self._source_dir}")
        with path.open("r", encoding="utf-8") as fp:
            data = json.load(fp)
        records = data.get("records") if isinstance(data, dict) else data
        if not isinstance(records, list):
            raise CollectorError(f"{path.name} does not contain a list of records")
        return [item for item in records if isinstance(item, dict)]


class HttpCollector:
    """Client for a JSON posts endpoint: ``GET {base}/users/{subject}/posts``.

    The endpoint may answer with a bare list or with ``{"items": [...],
    "next_cursor": "..."}``; cursors are followed up to ``max_pages``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        max_pages: int = 5,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        if not base_url.startswith(("http://", "https://")):
            raise ValueError("base_url must include scheme and host")
        self._base_url = base_url.rstrip("/")
        self._headers = {"Accept": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._max_pages = max(1, max_pages)
        self._client = http_client or httpx.Client(timeout=timeout)
        self._owns_client = http_client is None

    def collect(self, subject: str) -> list[dict[str, Any]]:
        url = f"{self._base_url}/users/{subject}/posts"
        records: list[dict[str, Any]] = []
        cursor: str | None = None

        for page in range(self._max_pages):
            params = {"cursor": cursor} if cursor else None
            try:
                response = self._client.get(url, params=params, headers=self._headers)
                response.raise_for_status()
                body = response.json()
            except httpx.HTTPStatusError as exc:
                raise CollectorError(
                    f"collector returned HTTP {exc.response.status_code} for {subject}"
                ) from exc
            except httpx.HTTPError as exc:
                raise CollectorError(f"collector request failed: {exc}") from exc
            except ValueError as exc:
                raise CollectorError("collector returned invalid JSON") from exc

            if isinstance(body, list):
                records.extend(item for item in body if isinstance(item, dict))
                break

            items = body.get("items") if isinstance(body, dict) else None
            if not isinstance(items, list):
                raise CollectorError("collector response is missing 'items'")
            records.extend(item for item in items if isinstance(item, dict))
            cursor = body.get("next_cursor")
            logger.debug("collected page %s for %s (%s records)", page + 1, subject, len(items))
            if not cursor:
                break

        return records

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


_collector: Collector = UnconfiguredCollector()


def configure_collector(collector: Collector) -> None:
    """Install the collector used by the pipeline."""

    global _collector
    _collector = collector


def get_collector() -> Collector:
    return _collector
