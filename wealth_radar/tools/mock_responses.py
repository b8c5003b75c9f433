"""
Mock LLM responses for offline runs and development.

Responses are deterministic: the task is recognised from the system prompt
and the payload is derived from the JSON embedded in the user prompt, so a
mock run produces a coherent funnel end to end.
Designed to work with pydantic-ai's FunctionModel.
"""

import hashlib
import json
import logging
import re
from typing import Any, List

from pydantic_ai.messages import ModelResponse, TextPart

from .json_repair import extract_json_string

logger = logging.getLogger(__name__)

# Words that make a mock headline look like a liquidity event
_EVENT_WORDS = (
    "sell", "sold", "sale", "acqui", "buy", "bought", "ipo", "listing", "merger",
    "takeover", "stake", "billion", "million", "exit", "deal",
    "køb", "salg", "sælger", "oppkjøp", "selger", "förvärv", "säljer",
)

_MOCK_PEOPLE = ["Anders Holm", "Kari Nordmann", "Erik Lindqvist", "Mette Sørensen", "Jonas Berg"]


def _prompt_items(prompt: str) -> List[Any]:
    """The JSON array embedded in a task prompt, or []."""
    try:
        data = json.loads(extract_json_string(prompt[prompt.find("["):] if "[" in prompt else ""))
    except (json.JSONDecodeError, ValueError):
        return []
    return data if isinstance(data, list) else []


def _pick(seed: str, options: list):
    idx = int(hashlib.md5(seed.encode()).hexdigest()[:8], 16) % len(options)
    return options[idx]


def _looks_like_event(text: str) -> bool:
    lowered = text.lower()
    return any(w in lowered for w in _EVENT_WORDS)


def _headline_scores(prompt: str) -> dict:
    items = _prompt_items(prompt)
    assessment = []
    for item in items:
        headline = item.get("headline", "") if isinstance(item, dict) else str(item)
        if _looks_like_event(headline):
            score = _pick(headline, [72, 88, 91])
            reason = "Mock: headline suggests a liquidity event for private owners."
        else:
            score = _pick(headline, [5, 10, 15])
            reason = "Mock: routine business news without a wealth event."
        assessment.append({"relevance_headline": score, "assessment_headline": reason})
    return {"assessment": assessment}


def _article_assessment(prompt: str) -> dict:
    person = _pick(prompt, _MOCK_PEOPLE)
    relevant = _looks_like_event(prompt)
    return {
        "relevance_article": 80 if relevant else 20,
        "assessment_article": (
            f"Mock: {person} realises proceeds from a private company transaction."
            if relevant else "Mock: no identifiable private wealth event."
        ),
        "topic": "Company sale" if relevant else "General business",
        "key_individuals": [
            {"name": person, "role_in_event": "Seller", "company": "Mock Holding", "email_suggestion": ""}
        ] if relevant else [],
    }


def _salvage(prompt: str) -> dict:
    person = _pick(prompt, _MOCK_PEOPLE)
    return {
        "headline": "Founder sells stake in family company",
        "summary": f"Mock: based on the headline only, {person} appears to have sold a significant stake.",
        "key_individuals": [{"name": person, "role_in_event": "Seller", "company": "Mock Holding"}],
    }


def _key_contacts(prompt: str) -> dict:
    person = _pick(prompt, _MOCK_PEOPLE)
    return {"key_contacts": [{"name": person, "role_in_event": "Seller", "company": "Mock Holding"}]}


def _opportunities(prompt: str) -> dict:
    person = _pick(prompt, _MOCK_PEOPLE)
    country = _pick(prompt, ["Denmark", "Norway", "Sweden"])
    return {"opportunities": [{
        "reach_out_to": person,
        "contact_details": {"email": "", "role": "Founder", "company": "Mock Holding"},
        "based_in": country,
        "why_contact": f"Mock: {person} received sale proceeds.",
        "likely_mm_dollar_wealth": 45,
    }]}


def _clusters(prompt: str) -> dict:
    events = []
    for item in _prompt_items(prompt):
        if not isinstance(item, dict) or "id" not in item:
            continue
        slug = re.sub(r"[^a-z0-9]+", "-", str(item.get("headline", "")).lower()).strip("-")[:40]
        events.append({"event_key": slug or f"event-{item['id']}", "article_ids": [item["id"]]})
    return {"events": events}


def _synthesis(prompt: str) -> dict:
    person = _pick(prompt, _MOCK_PEOPLE)
    return {
        "headline": f"{person} completes sale of family business",
        "summary": f"Mock brief: {person} has sold a controlling stake. The transaction creates significant personal liquidity.",
        "key_individuals": [{"name": person, "role_in_event": "Seller", "company": "Mock Holding", "email_suggestion": ""}],
    }


# (system prompt marker, responder); first match wins
_ROUTES = [
    ("screen news headlines", _headline_scores),
    ("no article body is retrievable", _salvage),
    ("assess the full article", _article_assessment),
    ("resolve vague contact", lambda p: {"enriched_contacts": []}),
    ("identify the key contacts", _key_contacts),
    ("wealth-management opportunities", _opportunities),
    ("group news articles", _clusters),
    ("extract named entities", lambda p: {"entities": []}),
    ("encyclopedia search results", lambda p: {"best_title": None}),
    ("intelligence brief", _synthesis),
]


def get_mock_response(prompt: str, system_prompt: str = "") -> str:
    """Return a deterministic response for the task the system prompt describes."""
    if "capital of france" in prompt.lower():
        return "Paris."
    lowered = system_prompt.lower()
    for marker, responder in _ROUTES:
        if marker in lowered:
            return json.dumps(responder(prompt))
    if "json" in lowered:
        return json.dumps({})
    return "Mock LLM response for testing purposes."


def get_mock_response_for_function_model(messages: list[Any], info: Any) -> ModelResponse:
    """Adapter for pydantic-ai FunctionModel.

    The last user prompt is the task; the first system prompt names the task
    (few-shot history may contain earlier user prompts).
    """
    prompt = ""
    system_prompt = ""
    for msg in messages:
        for part in getattr(msg, "parts", []):
            content = getattr(part, "content", None)
            if not isinstance(content, str):
                continue
            part_type = type(part).__name__
            if "User" in part_type:
                prompt = content
            elif "System" in part_type and not system_prompt:
                system_prompt = content
    return ModelResponse(parts=[TextPart(content=get_mock_response(prompt, system_prompt))])
