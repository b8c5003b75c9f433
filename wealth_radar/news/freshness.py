"""
Freshness filter — decides which scraped headlines enter the pipeline.

Standard mode: links already in the `articles` collection are dropped.
Refresh mode: known links re-enter with their stored document (same id and
previously computed fields), so a re-run updates instead of duplicating.
"""

import logging
from typing import Dict, List

from pydantic import ValidationError

from ..schemas.news import AWAITING_ASSESSMENT, Article, CandidateHeadline

logger = logging.getLogger(__name__)


def _dedupe_by_link(candidates: List[CandidateHeadline]) -> List[CandidateHeadline]:
    by_link: Dict[str, CandidateHeadline] = {}
    for c in candidates:
        by_link[c.link] = c
    return list(by_link.values())


def filter_fresh(
    candidates: List[CandidateHeadline],
    store,
    embedder,
    refresh_mode: bool = False,
) -> List[Article]:
    """Skeletal Article records for every candidate that should be processed."""
    candidates = _dedupe_by_link(candidates)
    if not candidates:
        return []

    links = [c.link for c in candidates]
    if refresh_mode:
        existing = {d["link"]: d for d in store.find("articles", {"link": {"$in": links}})}
    else:
        existing = {
            d["link"]: d
            for d in store.find("articles", {"link": {"$in": links}}, projection=["link", "id"])
        }

    articles: List[Article] = []
    for candidate in candidates:
        doc = existing.get(candidate.link)
        if doc is None:
            articles.append(Article.from_candidate(candidate))
            continue
        if not refresh_mode:
            continue
        try:
            article = Article.model_validate(doc)
        except ValidationError as e:
            logger.warning(f"Stored article {candidate.link} is malformed, re-creating: {e}")
            article = Article.from_candidate(candidate)
            article.id = doc.get("id", article.id)
        articles.append(article)

    needs_embedding = [a for a in articles if not a.embedding]
    if needs_embedding:
        vectors = embedder.embed_batch([a.headline for a in needs_embedding])
        for article, vector in zip(needs_embedding, vectors):
            article.embedding = vector

    for article in articles:
        if not article.assessment_headline:
            article.assessment_headline = AWAITING_ASSESSMENT

    mode = "refresh" if refresh_mode else "standard"
    logger.info(
        f"🆕 Freshness ({mode}): {len(articles)}/{len(candidates)} headlines enter the pipeline "
        f"({len(existing)} already known)"
    )
    return articles
