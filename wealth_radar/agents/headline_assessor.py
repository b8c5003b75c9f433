"""
Headline relevance assessor — batch scoring of fresh headlines.

Headlines are sent HEADLINE_BATCH_SIZE at a time with fixed instructions and
few-shot examples. The reply must carry exactly one assessment per headline,
in order. Anything else (service error, unparseable JSON, schema mismatch,
wrong length) scores every member of that batch 0 with a rationale naming
the failure; a bad batch never raises and never affects other batches.
"""

import json
import logging
from typing import List

from pydantic import ValidationError

from ..config import get_settings
from ..schemas.llm_outputs import HeadlineAssessmentLLM
from ..schemas.news import Article

logger = logging.getLogger(__name__)

HEADLINE_SYSTEM_PROMPT = """You are a Nordic private wealth analyst. You screen news headlines for events
that create or move significant personal wealth for PRIVATE individuals, families or their holding companies.

Score 0-100 per headline:
- 90-100: a named private owner, founder or family realises a large liquidity event
  (sale of a company or stake, founder-led IPO, large dividend from a family holding, large private asset sale).
- 50-89: a likely but not yet confirmed or not yet valued wealth event, or significant news about a well-known wealthy family.
- 20-49: minor or speculative wealth angle.
- 0-19: listed-company routine news, market commentary, earnings, politics, sports, lifestyle.

Headlines may be in Danish, Norwegian, Swedish or English. Write each rationale in English, one sentence.

Return {"assessment": [{"relevance_headline": int, "assessment_headline": str}, ...]} with exactly one
item per input headline, in the same order. Never return a plain array."""

HEADLINE_EXAMPLES_INPUT = [
    [
        "Grundlæggerne sælger softwarehus til amerikansk kapitalfond for 2 mia. kr.",
        "Novo Nordisk sænker forventningerne til året",
        "Local football club wins cup final",
    ],
    [
        "Familien bak Orkla-arving selger eiendomsselskap",
        "Swedish founder takes fintech to IPO on Nasdaq Stockholm",
    ],
]

HEADLINE_EXAMPLES_OUTPUT = [
    {"assessment": [
        {"relevance_headline": 95, "assessment_headline": "Founders realise a large sale of their private company."},
        {"relevance_headline": 5, "assessment_headline": "Listed-company guidance update with no private wealth event."},
        {"relevance_headline": 0, "assessment_headline": "Sports result, irrelevant."},
    ]},
    {"assessment": [
        {"relevance_headline": 80, "assessment_headline": "Wealthy family divests a property company; value not stated."},
        {"relevance_headline": 88, "assessment_headline": "Founder-led IPO creates liquidity for the founder."},
    ]},
]


def build_headline_prompt(headlines: List[str]) -> str:
    items = [{"index": i + 1, "headline": h} for i, h in enumerate(headlines)]
    return (
        f"Assess these {len(items)} headlines. Return exactly {len(items)} assessments in order.\n\n"
        f"Headlines:\n{json.dumps(items, ensure_ascii=False)}"
    )


def headline_examples():
    return [
        (build_headline_prompt(inp), json.dumps(out))
        for inp, out in zip(HEADLINE_EXAMPLES_INPUT, HEADLINE_EXAMPLES_OUTPUT)
    ]


def _default_batch(batch: List[Article], reason: str) -> None:
    for article in batch:
        article.relevance_headline = 0
        article.assessment_headline = f"Assessment failed: {reason}"


async def assess_batch(batch: List[Article], llm_service) -> List[Article]:
    """Score one batch in place. Never raises."""
    raw = await llm_service.generate_json(
        build_headline_prompt([a.headline for a in batch]),
        system_prompt=HEADLINE_SYSTEM_PROMPT,
        examples=headline_examples(),
    )
    if not isinstance(raw, dict) or "error" in raw:
        error = raw.get("error") if isinstance(raw, dict) else "response was not a JSON object"
        logger.warning(f"Headline batch of {len(batch)} defaulted to 0: {error}")
        _default_batch(batch, f"service error ({str(error)[:120]})")
        return batch

    try:
        parsed = HeadlineAssessmentLLM.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Headline batch of {len(batch)} failed schema validation: {e.error_count()} error(s)")
        _default_batch(batch, "response did not match the expected schema")
        return batch

    if len(parsed.assessment) != len(batch):
        logger.warning(f"Headline batch length mismatch: sent {len(batch)}, got {len(parsed.assessment)}")
        _default_batch(batch, f"expected {len(batch)} assessments, got {len(parsed.assessment)}")
        return batch

    for article, item in zip(batch, parsed.assessment):
        article.relevance_headline = item.relevance_headline
        article.assessment_headline = item.assessment_headline or "No rationale given."
    return batch


async def assess_headlines(articles: List[Article], deps, ctx) -> List[Article]:
    """Score every article's headline; batches run concurrently with settle-all."""
    if not articles:
        return []
    batch_size = get_settings().headline_batch_size
    batches = [articles[i:i + batch_size] for i in range(0, len(articles), batch_size)]
    logger.info(f"🧠 Assessing {len(articles)} headlines in {len(batches)} batch(es)")

    results = await ctx.gather_settled([
        ctx.run_bounded(assess_batch, batch, deps.llm_service) for batch in batches
    ])
    for batch, result in zip(batches, results):
        if isinstance(result, BaseException):
            logger.error(f"Headline batch crashed: {result}")
            _default_batch(batch, f"batch failed ({type(result).__name__})")
    return articles
