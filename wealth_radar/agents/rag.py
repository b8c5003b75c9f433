"""
Historical context retrieval for event synthesis.

Similarity is computed locally against the embeddings stored on article
documents; the vector index is only a mirror and is never queried here.
"""

import logging
from typing import Any, Dict, List, Optional

from ..config import get_settings
from ..schemas.news import Article
from ..tools.embeddings import EmbeddingTool

logger = logging.getLogger(__name__)

_CONTEXT_FIELDS = ["headline", "link", "newspaper", "assessment_article", "assessment_headline", "created_at", "embedding"]


def find_similar_articles(
    cluster: List[Article],
    store,
    embedder,
    threshold: Optional[float] = None,
    top_k: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Stored articles similar to the cluster's combined headlines, best first."""
    if not cluster:
        return []
    settings = get_settings()
    threshold = settings.rag_similarity_threshold if threshold is None else threshold
    top_k = settings.rag_top_k if top_k is None else top_k

    query_embedding = embedder.embed_text("\n".join(a.headline for a in cluster))
    member_links = [a.link for a in cluster]
    candidates = store.find(
        "articles",
        {"embedding": {"$exists": True, "$ne": None}, "link": {"$nin": member_links}},
        projection=_CONTEXT_FIELDS,
    )
    if not candidates:
        logger.info("RAG: no stored articles with embeddings to search against")
        return []

    matches = EmbeddingTool.find_similar(
        query_embedding,
        [c.get("embedding") or [] for c in candidates],
        top_k=top_k,
        threshold=threshold,
    )
    context = []
    for match in matches:
        doc = dict(candidates[match["index"]])
        doc.pop("embedding", None)
        doc["similarity"] = match["similarity"]
        context.append(doc)
    logger.info(f"RAG: {len(context)} historical article(s) above {threshold}")
    return context


def format_historical_context(context: List[Dict[str, Any]]) -> str:
    if not context:
        return "None found."
    lines = []
    for doc in context:
        summary = doc.get("assessment_article") or doc.get("assessment_headline") or ""
        created = str(doc.get("created_at", ""))[:10]
        lines.append(f"- [{created}] {doc.get('headline', '')} ({doc.get('newspaper', '')}): {summary}")
    return "\n".join(lines)
