"""
Source registry — persisted scraping configuration per news site.

Sources live in the `sources` collection keyed by name. The registry seeds
missing defaults from config.DEFAULT_SOURCES and tracks scrape timestamps.
SourceCache is the run-scoped, in-memory view handed to the stages.
"""

import logging
from typing import Dict, List, Optional

from pydantic import ValidationError

from ..config import DEFAULT_SOURCES
from ..schemas.base import SourceStatus
from ..schemas.news import NewsSource, utcnow

logger = logging.getLogger(__name__)

COLLECTION = "sources"


class SourceRegistry:
    """CRUD over the `sources` collection."""

    def __init__(self, store):
        self.store = store

    def seed_defaults(self, defaults: Optional[List[dict]] = None) -> int:
        """Insert configured sources that are not stored yet. Returns the insert count."""
        inserted = 0
        for raw in defaults if defaults is not None else DEFAULT_SOURCES:
            source = NewsSource(**raw)
            doc = source.model_dump(mode="json")
            doc.pop("name")
            result = self.store.update_one(
                COLLECTION, {"name": source.name}, {"$setOnInsert": doc}, upsert=True,
            )
            if result.upserted_id:
                inserted += 1
        if inserted:
            logger.info(f"🗂️ Seeded {inserted} new source(s)")
        return inserted

    def all_sources(self) -> List[NewsSource]:
        sources = []
        for doc in self.store.find(COLLECTION, sort=[("name", 1)]):
            try:
                sources.append(NewsSource.model_validate(doc))
            except ValidationError as e:
                logger.warning(f"Skipping malformed source '{doc.get('name')}': {e}")
        return sources

    def active_sources(self) -> List[NewsSource]:
        return [s for s in self.all_sources() if s.status == SourceStatus.ACTIVE.value]

    def record_scrape(self, name: str, success: bool) -> None:
        now = utcnow()
        fields = {"last_scraped_at": now}
        if success:
            fields["last_success_at"] = now
        self.store.update_one(COLLECTION, {"name": name}, {"$set": fields})


class SourceCache:
    """Name → NewsSource lookup for one run."""

    def __init__(self, sources: Optional[List[NewsSource]] = None):
        self._by_name: Dict[str, NewsSource] = {s.name: s for s in sources or []}

    @classmethod
    def load(cls, registry: SourceRegistry) -> "SourceCache":
        return cls(registry.active_sources())

    def get(self, name: str) -> Optional[NewsSource]:
        return self._by_name.get(name)

    def sources(self) -> List[NewsSource]:
        return list(self._by_name.values())

    def clear(self) -> None:
        self._by_name.clear()

    def __len__(self) -> int:
        return len(self._by_name)
