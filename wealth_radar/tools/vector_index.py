"""
Vector index mirror of article embeddings, on ChromaDB.

The document store is authoritative: similarity search reads embeddings from
stored articles. This index is a best-effort copy written after each commit,
so a failed upsert only leaves it briefly stale.
"""

import logging
from typing import Any, Dict, List, Optional

import chromadb

from ..config import get_settings

logger = logging.getLogger(__name__)

# ChromaDB metadata values must be scalars
_MAX_META_STR = 2000


def _clean_metadata(meta: Dict[str, Any]) -> Dict[str, Any]:
    clean = {}
    for key, value in meta.items():
        if value is None:
            continue
        if isinstance(value, (bool, int, float)):
            clean[key] = value
        else:
            clean[key] = str(value)[:_MAX_META_STR]
    return clean


class VectorIndex:
    """Persistent cosine-space collection keyed by article id."""

    def __init__(self, db_path: Optional[str] = None, collection_name: str = "articles"):
        self.db_path = db_path or get_settings().vector_index_path
        self.client = chromadb.PersistentClient(path=self.db_path)
        self.collection = self.client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def upsert(
        self,
        ids: List[str],
        vectors: List[List[float]],
        metadatas: Optional[List[Dict[str, Any]]] = None,
    ) -> int:
        """Insert or replace vectors by id. Zero vectors are skipped."""
        if len(ids) != len(vectors):
            raise ValueError(f"ids ({len(ids)}) and vectors ({len(vectors)}) must be same length")
        metadatas = metadatas or [{} for _ in ids]

        keep = [i for i, v in enumerate(vectors) if v and any(x != 0 for x in v)]
        if not keep:
            return 0
        self.collection.upsert(
            ids=[ids[i] for i in keep],
            embeddings=[vectors[i] for i in keep],
            metadatas=[_clean_metadata(metadatas[i]) or {"id": ids[i]} for i in keep],
        )
        logger.info(f"🧭 Vector index: upserted {len(keep)} vectors (total {self.collection.count()})")
        return len(keep)

    def count(self) -> int:
        return self.collection.count()
