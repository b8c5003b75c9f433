"""
Contact & opportunity extraction for relevant articles.

Flow per article:
  1. extract_key_contacts: who actually receives the money (the seller in
     M&A, the named subject of a wealth profile). Vague roles are allowed.
  2. enrich_contact: vague roles only; web search evidence turns
     "the founders of X" into named people when the snippets support it.
  3. generate_opportunities: one candidate per contactable individual with a
     wealth estimate.
  4. accept_opportunity: stop phrases and the minimum wealth gate. Rejected
     candidates never leave this module.
"""

import json
import logging
from datetime import date
from typing import Dict, List, Optional

from pydantic import ValidationError

from ..config import VAGUE_CONTACT_PHRASES, get_settings
from ..schemas.llm_outputs import EnrichedContactsLLM, KeyContactsLLM, OpportunitiesLLM
from ..schemas.news import Article, KeyIndividual
from ..schemas.opportunities import ContactDetails, Opportunity

logger = logging.getLogger(__name__)

KEY_CONTACTS_SYSTEM_PROMPT = """You are a deal-flow analyst for a private bank. Identify the key contacts in
the article: the individuals who have just gained, or already hold, significant liquid wealth because of the event.

Rules:
- In an acquisition, merger or sale the SELLER is the subject. The buyer is not, unless it is itself a private individual.
- In a wealth profile or rich-list story, the named subject is the contact.
- When nobody is named, describe the group as precisely as possible, e.g. "The founders of Acme Robotics".
- No clear wealth event means an empty list.

Return {"key_contacts": [{"name": str, "role_in_event": str, "company": str}]}"""

ENRICH_CONTACT_SYSTEM_PROMPT = """You are a corporate intelligence analyst. Your task is to resolve vague contact
descriptions (such as "the founding family of X") into named individuals.

You receive the vague contact, the article it came from and web search snippets. Use ONLY that material:
- If the snippets name the people behind the description, return one entry per person.
- Keep role_in_event and company accurate to the evidence.
- If the evidence adds nothing concrete, return the original contact unchanged.

Return {"enriched_contacts": [{"name": str, "role_in_event": str, "company": str}]}"""

OPPORTUNITIES_SYSTEM_PROMPT = """You are a data extraction engine for a private bank's CRM. From the article and
its key contacts, list the individuals who are wealth-management opportunities.

For each person:
- reach_out_to: the person's full name (or the most precise group description available).
- contact_details: {"email", "role", "company"}; use "" when unknown and never invent email domains.
- based_in: the country where the person lives, using an official UN country name. "Global", "Europe" and
  "Scandinavia" are allowed only when the location is genuinely ambiguous.
- why_contact: one sentence explaining the liquidity or wealth.
- likely_mm_dollar_wealth: your estimate in millions of USD of the wealth tied to this event or profile.
  A seller in a completed sale is never 0. People relevant to the story but without personal wealth get 0.

Return {"opportunities": [{"reach_out_to": str, "contact_details": {"email": str, "role": str, "company": str},
"based_in": str, "why_contact": str, "likely_mm_dollar_wealth": number}]}"""


def _article_context(article: Article, max_chars: int = 4000) -> str:
    body = article.content_text[:max_chars]
    return (
        f"Headline: {article.headline}\n"
        f"Newspaper: {article.newspaper} ({article.country})\n"
        f"Assessment: {article.assessment_article or article.assessment_headline}\n\n"
        f"Article:\n{body}"
    )


def looks_vague(name: str) -> bool:
    """True for role descriptions rather than a person's name."""
    lowered = (name or "").strip().lower()
    if not lowered:
        return True
    if lowered.startswith("the "):
        return True
    return any(phrase in lowered for phrase in VAGUE_CONTACT_PHRASES)


def _validate(raw, model, what: str, link: str):
    if not isinstance(raw, dict) or "error" in raw:
        error = raw.get("error") if isinstance(raw, dict) else "response was not a JSON object"
        logger.warning(f"{what} failed for {link}: {error}")
        return None
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"{what} response malformed for {link}: {e.error_count()} error(s)")
        return None


async def extract_key_contacts(article: Article, llm_service) -> List[KeyIndividual]:
    raw = await llm_service.generate_json(
        _article_context(article),
        system_prompt=KEY_CONTACTS_SYSTEM_PROMPT,
    )
    parsed = _validate(raw, KeyContactsLLM, "Key contact extraction", article.link)
    if parsed is None:
        return []
    return [
        KeyIndividual(name=c.name, role_in_event=c.role_in_event, company=c.company)
        for c in parsed.key_contacts if c.name.strip()
    ]


async def enrich_contact(contact: KeyIndividual, article: Article, llm_service, search_tool) -> List[KeyIndividual]:
    """Resolve a vague contact into named people. Falls back to [contact]."""
    if not looks_vague(contact.name):
        return [contact]

    query = f"{contact.name} {contact.company}".strip()
    snippets = await search_tool.search_snippets(query, max_results=5)
    if not snippets:
        logger.info(f"No search evidence for vague contact '{contact.name}', keeping as is")
        return [contact]

    evidence = "\n".join(f"- {s['title']}: {s['snippet']}" for s in snippets)
    prompt = (
        f"Vague contact: {json.dumps(contact.model_dump(), ensure_ascii=False)}\n\n"
        f"{_article_context(article, max_chars=2000)}\n\n"
        f"Search snippets:\n{evidence}"
    )
    raw = await llm_service.generate_json(prompt, system_prompt=ENRICH_CONTACT_SYSTEM_PROMPT)
    parsed = _validate(raw, EnrichedContactsLLM, "Contact enrichment", article.link)
    if parsed is None or not parsed.enriched_contacts:
        return [contact]

    resolved = [
        KeyIndividual(name=c.name, role_in_event=c.role_in_event, company=c.company or contact.company)
        for c in parsed.enriched_contacts if c.name.strip()
    ]
    if resolved:
        logger.info(f"🔎 Resolved '{contact.name}' → {', '.join(c.name for c in resolved)}")
    return resolved or [contact]


def _dated_reason(reason: str, run_date: date) -> str:
    reason = reason.strip()
    if reason.startswith("["):
        return reason
    return f"[{run_date.isoformat()}] {reason}"


async def generate_opportunities(
    article: Article,
    contacts: List[KeyIndividual],
    llm_service,
    run_date: Optional[date] = None,
) -> List[Opportunity]:
    """Candidate opportunities for one article. Not yet filtered."""
    run_date = run_date or date.today()
    prompt = (
        f"{_article_context(article)}\n\n"
        f"Key contacts:\n{json.dumps([c.model_dump() for c in contacts], ensure_ascii=False)}"
    )
    raw = await llm_service.generate_json(prompt, system_prompt=OPPORTUNITIES_SYSTEM_PROMPT)
    parsed = _validate(raw, OpportunitiesLLM, "Opportunity generation", article.link)
    if parsed is None:
        return []

    opportunities = []
    for item in parsed.opportunities:
        if not item.reach_out_to.strip():
            continue
        opportunities.append(Opportunity(
            reach_out_to=item.reach_out_to.strip(),
            contact_details=ContactDetails(**item.contact_details.model_dump()),
            based_in=item.based_in.strip(),
            why_contact=[_dated_reason(item.why_contact, run_date)] if item.why_contact.strip() else [],
            likely_mm_dollar_wealth=item.likely_mm_dollar_wealth,
            source_article_id=article.id,
        ))
    return opportunities


def accept_opportunity(opp: Opportunity, min_wealth_mm: Optional[float] = None) -> bool:
    """Stop-phrase and minimum-wealth gate."""
    threshold = get_settings().min_wealth_threshold_mm if min_wealth_mm is None else min_wealth_mm
    name = opp.reach_out_to.lower()
    for phrase in VAGUE_CONTACT_PHRASES:
        if phrase in name:
            logger.debug(f"Rejected opportunity '{opp.reach_out_to}': vague ('{phrase}')")
            return False
    if opp.likely_mm_dollar_wealth <= threshold:
        logger.debug(f"Rejected opportunity '{opp.reach_out_to}': ${opp.likely_mm_dollar_wealth}M <= ${threshold}M")
        return False
    return True


async def opportunities_for_article(article: Article, deps, ctx) -> List[Opportunity]:
    """Contacts → enrichment → opportunities → acceptance for one article."""
    llm = deps.llm_service
    contacts = await extract_key_contacts(article, llm)
    if not contacts:
        return []

    resolved: List[KeyIndividual] = []
    for contact in contacts:
        resolved.extend(await enrich_contact(contact, article, llm, deps.search_tool))
    # Committed articles and synthesized events carry the resolved names
    article.key_individuals = resolved

    candidates = await generate_opportunities(article, resolved, llm, ctx.run_date)
    accepted = [o for o in candidates if accept_opportunity(o)]
    if candidates:
        logger.info(
            f"💼 {len(accepted)}/{len(candidates)} opportunit(ies) accepted for: {article.headline[:60]}"
        )
    return accepted


def merge_by_contact(opportunities: List[Opportunity]) -> List[Opportunity]:
    """Collapse same-run duplicates by reach_out_to, keeping every reason and the max wealth."""
    merged: Dict[str, Opportunity] = {}
    for opp in opportunities:
        key = opp.reach_out_to
        existing = merged.get(key)
        if existing is None:
            merged[key] = opp.model_copy(deep=True)
            continue
        for reason in opp.why_contact:
            if reason not in existing.why_contact:
                existing.why_contact.insert(0, reason)
        existing.likely_mm_dollar_wealth = max(existing.likely_mm_dollar_wealth, opp.likely_mm_dollar_wealth)
    return list(merged.values())


async def find_opportunities(articles: List[Article], deps, ctx, stats) -> List[Opportunity]:
    """Opportunities for every relevant article (settle-all)."""
    if not articles:
        return []
    results = await ctx.gather_settled([
        ctx.run_bounded(opportunities_for_article, article, deps, ctx) for article in articles
    ])
    found: List[Opportunity] = []
    for article, result in zip(articles, results):
        if isinstance(result, BaseException):
            logger.error(f"Opportunity extraction crashed for '{article.headline[:80]}' ({article.link}): {result}")
            stats.errors.append(f"Opportunity extraction failed for {article.link}: {result}")
            continue
        found.extend(result)
    return merge_by_contact(found)
