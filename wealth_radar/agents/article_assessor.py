"""
Article-level assessment and headline-only salvage.

assess_article() reads the full body; a malformed answer scores the article
0 with a rationale instead of raising. salvage_from_headline() is the last
resort for high-signal headlines whose body cannot be retrieved anywhere.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from ..schemas.llm_outputs import ArticleAssessmentLLM, SalvageLLM
from ..schemas.news import Article

logger = logging.getLogger(__name__)

ARTICLE_SYSTEM_PROMPT = """You are a Nordic private wealth analyst. Assess the full article below for a
private banking desk that looks for individuals who have just received, or will soon receive, significant liquidity.

Score relevance_article 0-100:
- 80-100: a named private person or family realises a clear, sizeable liquidity event.
- 50-79: a probable wealth event with a named subject, but size or timing is uncertain.
- 1-49: tangential (listed-company news, institutional investors, rumours without names).
- 0: no wealth angle.

Also return a one-paragraph English assessment, a short topic label and the key individuals
(name, role_in_event, company, email_suggestion when the article shows one).

Return {"relevance_article": int, "assessment_article": str, "topic": str,
"key_individuals": [{"name": str, "role_in_event": str, "company": str, "email_suggestion": str}]}"""

SALVAGE_SYSTEM_PROMPT = """You support a private wealth intelligence desk. The headline below looked
highly relevant, but no article body is retrievable from the outlet or from any alternate source.

From the headline alone, write a cautious English headline, a 1-2 sentence summary stating only what
the headline supports, and the individuals it names. Do not invent numbers, dates or people.

Return {"headline": str, "summary": str, "key_individuals": [{"name": str, "role_in_event": str, "company": str}]}"""


def build_article_prompt(article: Article) -> str:
    return (
        f"Headline: {article.headline}\n"
        f"Newspaper: {article.newspaper} ({article.country})\n"
        f"Link: {article.link}\n\n"
        f"Article:\n{article.content_text}"
    )


async def assess_article(article: Article, llm_service) -> Article:
    """Set relevance_article, assessment_article, topic and key_individuals in place."""
    raw = await llm_service.generate_json(
        build_article_prompt(article),
        system_prompt=ARTICLE_SYSTEM_PROMPT,
    )
    failure: Optional[str] = None
    parsed = None
    if not isinstance(raw, dict) or "error" in raw:
        failure = f"service error ({str(raw.get('error') if isinstance(raw, dict) else raw)[:120]})"
    else:
        try:
            parsed = ArticleAssessmentLLM.model_validate(raw)
        except ValidationError as e:
            failure = f"malformed response ({e.error_count()} validation error(s))"

    if parsed is None:
        logger.warning(f"Article assessment defaulted to 0 for {article.link}: {failure}")
        article.relevance_article = 0
        article.assessment_article = f"Article assessment failed: {failure}"
        return article

    article.relevance_article = parsed.relevance_article
    article.assessment_article = parsed.assessment_article or "No rationale given."
    article.topic = parsed.topic or None
    article.key_individuals = parsed.key_individuals
    return article


async def salvage_from_headline(article: Article, llm_service) -> bool:
    """Promote a body-less article from a headline-only synthesis. False on failure."""
    raw = await llm_service.generate_json(
        f"Headline: {article.headline}\nNewspaper: {article.newspaper} ({article.country})",
        system_prompt=SALVAGE_SYSTEM_PROMPT,
    )
    if not isinstance(raw, dict) or "error" in raw:
        logger.warning(f"Salvage failed for {article.link}: {raw.get('error') if isinstance(raw, dict) else raw}")
        return False
    try:
        parsed = SalvageLLM.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Salvage response malformed for {article.link}: {e.error_count()} error(s)")
        return False

    article.relevance_article = article.relevance_headline
    article.assessment_article = parsed.summary
    article.topic = parsed.headline
    article.key_individuals = parsed.key_individuals
    article.article_content = {"contents": [parsed.summary]}
    logger.info(f"🛟 Salvaged from headline: {article.headline[:70]}")
    return True
