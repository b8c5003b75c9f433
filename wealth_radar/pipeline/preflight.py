"""Stage 1: pre-flight. Infrastructure checks, then the run's source cache."""

import logging

from ..errors import PreflightError
from ..news.sources import SourceCache, SourceRegistry
from ..schemas.pipeline import RunPayload, StageResult

logger = logging.getLogger(__name__)

SANITY_PROMPT = "What is the capital of France? Answer with one word."


def stage_banner(title: str) -> None:
    logger.info("=" * 50)
    logger.info(title)
    logger.info("=" * 50)


async def check_llm(llm_service) -> None:
    if not llm_service.has_available_provider():
        raise PreflightError("No LLM provider configured or available")
    try:
        answer = await llm_service.generate(SANITY_PROMPT, system_prompt="Answer briefly.")
    except Exception as e:
        raise PreflightError(f"LLM sanity check failed: {e}") from e
    if "paris" not in (answer or "").lower():
        raise PreflightError(f"LLM sanity check returned an unexpected answer: {(answer or '')[:80]!r}")
    logger.info("✅ LLM sanity check passed")


def check_store(store) -> None:
    try:
        reachable = store.ping()
    except Exception as e:
        raise PreflightError(f"Document store is not reachable: {e}") from e
    if not reachable:
        raise PreflightError("Document store is not reachable")
    logger.info("✅ Document store reachable")


async def run_preflight(payload: RunPayload, deps, ctx) -> StageResult:
    stage_banner("STAGE 1: PRE-FLIGHT")
    await check_llm(deps.llm_service)
    check_store(deps.store)

    registry = SourceRegistry(deps.store)
    registry.seed_defaults()
    ctx.source_cache = SourceCache.load(registry)
    if not len(ctx.source_cache):
        raise PreflightError("No active news sources configured")
    logger.info(f"🗂️ {len(ctx.source_cache)} active source(s) for run {ctx.run_id}")
    return StageResult(payload=payload)
