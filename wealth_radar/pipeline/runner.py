"""
Pipeline runner: five stages in sequence over one RunPayload.

  pre-flight → scrape & filter → assess & enrich → cluster & synthesize → commit & notify

Only a pre-flight failure makes the run unsuccessful. Later stage crashes
are logged into run_stats.errors and the run continues to commit. Once
pre-flight has passed, the supervisor report is sent on every exit path.
"""

import logging
import time
from contextlib import nullcontext
from typing import Awaitable, Callable, Optional

from ..agents.deps import PipelineDeps
from ..agents.notifier import send_supervisor_report
from ..config import get_settings
from ..errors import PreflightError, RunCancelledError
from ..schemas.pipeline import RunOutcome, RunPayload, StageResult
from ..tools.page_fetcher import create_page_fetcher
from .assess_and_enrich import run_assess_and_enrich
from .cluster_and_synthesize import run_cluster_and_synthesize
from .commit_and_notify import run_commit_and_notify
from .context import RunContext
from .preflight import run_preflight, stage_banner
from .scrape_and_filter import run_scrape_and_filter

logger = logging.getLogger(__name__)

Stage = Callable[[RunPayload, PipelineDeps, RunContext], Awaitable[StageResult]]


async def _run_stage(name: str, stage: Stage, payload: RunPayload, deps, ctx) -> StageResult:
    """Run one stage; anything but cancellation is recorded and reported as a failed stage."""
    ctx.check_cancelled()
    try:
        return await stage(payload, deps, ctx)
    except RunCancelledError:
        raise
    except Exception as e:
        logger.exception(f"❌ {name} crashed: {e}")
        payload.run_stats.errors.append(f"{name} failed: {e}")
        return StageResult(payload=payload, success=False)


async def run_pipeline(
    refresh_mode: Optional[bool] = None,
    mock_mode: bool = False,
    deps: Optional[PipelineDeps] = None,
    ctx: Optional[RunContext] = None,
) -> RunOutcome:
    """Run the whole pipeline once and return its outcome.

    Args:
        refresh_mode: Re-process headlines already in the store. Defaults to REFRESH_MODE.
        mock_mode: Serve intelligence and search calls from canned responses and
            fetch pages from the offline fetcher.
        deps: Injected collaborators. A page_fetcher set here is used as is;
            otherwise one is opened for the run and closed at the end.
        ctx: Injected run context (tests, API cancellation).
    """
    if refresh_mode is None:
        refresh_mode = get_settings().refresh_mode
    deps = deps or PipelineDeps.create(mock_mode=mock_mode)
    ctx = ctx or RunContext(refresh_mode=refresh_mode)
    payload = RunPayload()
    stats = payload.run_stats
    started = time.monotonic()

    mode = "REFRESH" if ctx.refresh_mode else "STANDARD"
    logger.info(f"🚀 Run {ctx.run_id} started ({mode} mode{', MOCK' if deps.mock_mode else ''})")

    outcome = RunOutcome(run_id=ctx.run_id, success=True, stats=stats)
    try:
        await run_preflight(payload, deps, ctx)
    except PreflightError as e:
        logger.error(f"❌ Pre-flight failed, aborting run: {e}")
        stats.pipeline_error = str(e)
        outcome.success = False
        outcome.duration_seconds = round(time.monotonic() - started, 2)
        ctx.close()
        return outcome

    injected_fetcher = deps.page_fetcher
    fetcher_cm = nullcontext(injected_fetcher) if injected_fetcher else create_page_fetcher(mock_mode=deps.mock_mode)
    try:
        async with fetcher_cm as fetcher:
            deps.page_fetcher = fetcher
            result = await _run_stage("Scrape & filter", run_scrape_and_filter, payload, deps, ctx)
            if result.success and not result.halt:
                await _run_stage("Assess & enrich", run_assess_and_enrich, payload, deps, ctx)
                await _run_stage("Cluster & synthesize", run_cluster_and_synthesize, payload, deps, ctx)
                ctx.check_cancelled()
                committed = await _run_stage("Commit & notify", run_commit_and_notify, payload, deps, ctx)
                outcome.committed = committed.success
    except RunCancelledError as e:
        logger.warning(f"🛑 {e}")
        stats.errors.append(str(e))
        outcome.cancelled = True
    finally:
        deps.page_fetcher = injected_fetcher
        outcome.duration_seconds = round(time.monotonic() - started, 2)
        stage_banner(f"RUN {ctx.run_id} FINISHED in {outcome.duration_seconds}s")
        try:
            await send_supervisor_report(stats, deps, ctx.run_id)
        except Exception as e:
            logger.error(f"Supervisor report failed: {e}")
        ctx.close()

    return outcome
