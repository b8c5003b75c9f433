"""Intelligence service: mock model, JSON repair and provider cooldowns."""

import json

import pytest

from conftest import run
from wealth_radar.agents.headline_assessor import HEADLINE_SYSTEM_PROMPT, build_headline_prompt, headline_examples
from wealth_radar.tools.json_repair import extract_json_string, parse_json_response, repair_truncated_json
from wealth_radar.tools.llm_service import LLMService
from wealth_radar.tools.mock_responses import get_mock_response
from wealth_radar.tools.provider_manager import ProviderManager


@pytest.fixture(autouse=True)
def fresh_providers():
    LLMService.clear_cache()
    ProviderManager.reset_cooldowns()
    yield
    LLMService.clear_cache()
    ProviderManager.reset_cooldowns()


# ════════════════════════════════════════════════════════════════════
# Mock mode
# ════════════════════════════════════════════════════════════════════

def test_mock_mode_answers_sanity_question():
    llm = LLMService(mock_mode=True)

    answer = run(llm.generate, "What is the capital of France? Answer with one word.")

    assert "paris" in answer.lower()
    assert llm.has_available_provider()


def test_mock_mode_returns_structured_headline_scores():
    llm = LLMService(mock_mode=True)
    headlines = ["Founder sells shipping company for 2 billion", "Central bank leaves rates unchanged"]

    result = run(
        llm.generate_json,
        build_headline_prompt(headlines),
        system_prompt=HEADLINE_SYSTEM_PROMPT,
        examples=headline_examples(),
    )

    assert len(result["assessment"]) == 2
    first, second = result["assessment"]
    assert first["relevance_headline"] > second["relevance_headline"]


def test_mock_responder_is_deterministic():
    prompt = build_headline_prompt(["Family sells stake in retailer"])

    assert get_mock_response(prompt, HEADLINE_SYSTEM_PROMPT) == get_mock_response(prompt, HEADLINE_SYSTEM_PROMPT)


def test_no_configured_provider_means_unavailable():
    llm = LLMService()

    assert not llm.has_available_provider()


def test_generate_json_reports_errors_instead_of_raising():
    llm = LLMService()

    result = run(llm.generate_json, "anything", system_prompt="Return JSON.")

    assert "error" in result


# ════════════════════════════════════════════════════════════════════
# JSON repair
# ════════════════════════════════════════════════════════════════════

def test_code_fences_and_prose_are_stripped():
    text = 'Sure! Here it is:\n```json\n{"entities": ["Acme"]}\n```'

    assert parse_json_response(text) == {"entities": ["Acme"]}
    assert parse_json_response('Result: {"a": 1} hope that helps') == {"a": 1}


def test_truncated_json_is_closed():
    repaired = repair_truncated_json('{"assessment": [{"relevance_headline": 80, "assessment_headline": "Cut of')

    assert json.loads(repaired)["assessment"][0]["relevance_headline"] == 80


def test_truncated_answer_after_a_key_is_closed():
    assert json.loads(repair_truncated_json('{"relevance_article": 80, "topic":')) == {
        "relevance_article": 80, "topic": None,
    }
    assert json.loads(repair_truncated_json('{"relevance_article": 80, "topic"')) == {"relevance_article": 80}
    assert parse_json_response('```json\n{"events": [{"event_key": "ipo-acme", "article_ids": ["a1", "a2') == {
        "events": [{"event_key": "ipo-acme", "article_ids": ["a1", "a2"]}],
    }


def test_trailing_commas_and_python_literals_are_normalised():
    text = '{"opportunities": [{"reach_out_to": "True North, None Ltd", "email": None, "active": True,},],}'

    assert parse_json_response(text) == {
        "opportunities": [{"reach_out_to": "True North, None Ltd", "email": None, "active": True}],
    }


def test_brackets_inside_strings_are_ignored():
    text = 'x {"summary": "a } tricky { string", "n": 2} y'

    assert extract_json_string(text) == '{"summary": "a } tricky { string", "n": 2}'


def test_control_characters_inside_strings_are_tolerated():
    assert parse_json_response('{"summary": "line one\nline two"}') == {"summary": "line one\nline two"}


def test_unparseable_and_empty_responses_become_errors():
    assert parse_json_response("")["error"] == "Empty response"
    assert "error" in parse_json_response("not json at all")


# ════════════════════════════════════════════════════════════════════
# Provider cooldowns
# ════════════════════════════════════════════════════════════════════

def test_rate_limit_puts_provider_in_cooldown(set_env):
    set_env(GROQ_API_KEY="gsk-test")
    manager = ProviderManager()

    assert manager.configured_provider_names() == ["Groq"]
    manager.record_failure("Groq", RuntimeError("status_code: 429, rate limit"))

    assert manager._get_available_providers() == []
    assert manager.get_shortest_cooldown_remaining() > 0


def test_auth_failure_disables_provider_for_session(set_env):
    set_env(OPENAI_API_KEY="sk-test")
    manager = ProviderManager()

    manager.record_failure("OpenAI", RuntimeError("status_code: 401, invalid api key"))

    assert manager._get_available_providers() == []
    assert "OpenAI" in ProviderManager._disabled_for_session


def test_provider_is_inferred_from_error_text():
    manager = ProviderManager()

    assert manager.infer_provider_from_error(RuntimeError("groq.RateLimitError")) == "Groq"
    assert manager.infer_provider_from_error(RuntimeError("boom")) == "unknown"
