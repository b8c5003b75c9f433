"""Pipeline API router -- trigger runs, stream progress via SSE, poll status.

SSE design: the background task attaches a log handler to the package
logger for the duration of the run, so every pipeline log line is pushed to
the run's asyncio.Queue. The stream endpoint drains that queue and sends a
heartbeat when it has been quiet for 15 seconds.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ..agents.realtime import get_broadcaster
from ..config import get_settings
from ..pipeline.context import RunContext
from ..pipeline.runner import run_pipeline
from ..schemas.base import RunStatus
from .dependencies import verify_api_key
from .run_manager import PipelineRun, run_manager
from .schemas import FunnelCounts, PipelineRunRequest, PipelineRunResponse, PipelineStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter()

HEARTBEAT_SECONDS = 15
_PACKAGE_LOGGER = "wealth_radar"
_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post(
    "/run-pipeline",
    response_model=PipelineRunResponse,
    status_code=202,
    dependencies=[Depends(verify_api_key)],
)
async def start_pipeline(
    background_tasks: BackgroundTasks,
    body: PipelineRunRequest = PipelineRunRequest(),
):
    """Start a pipeline run in the background. Returns run_id for SSE streaming."""
    if run_manager.is_running:
        raise HTTPException(409, "Pipeline already running")

    run_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    run = run_manager.create_run(run_id)

    refresh_mode = get_settings().refresh_mode if body.refresh_mode is None else body.refresh_mode
    background_tasks.add_task(_execute_pipeline, run, refresh_mode, body.mock_mode)

    return PipelineRunResponse(
        run_id=run_id,
        status=run.status.value,
        message=f"Pipeline started. Stream progress at /pipeline/stream/{run_id}",
    )


class _SSELogHandler(logging.Handler):
    """Pushes pipeline log records into the run's SSE queue and tracks the current stage."""

    def __init__(self, run: PipelineRun):
        super().__init__(logging.INFO)
        self._run = run

    def emit(self, record: logging.LogRecord):
        try:
            msg = self.format(record)
            if msg.startswith("STAGE "):
                self._run.current_stage = msg.split(":", 1)[-1].strip().lower()
            self._run.event_queue.put_nowait({
                "event": "log",
                "message": msg,
                "level": record.levelname.lower(),
                "logger": record.name,
            })
        except asyncio.QueueFull:
            pass  # slow client, drop the line
        except Exception:
            self.handleError(record)


def _funnel(run: PipelineRun) -> FunnelCounts:
    if run.outcome is None:
        return FunnelCounts()
    return FunnelCounts(**run.outcome.stats.model_dump(include=set(FunnelCounts.model_fields)))


async def _execute_pipeline(run: PipelineRun, refresh_mode: bool, mock_mode: bool):
    """Background task: run the pipeline and emit SSE events."""
    run.status = RunStatus.RUNNING

    sse_handler = _SSELogHandler(run)
    sse_handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger = logging.getLogger(_PACKAGE_LOGGER)
    package_logger.addHandler(sse_handler)

    ctx = RunContext(run_id=run.run_id, refresh_mode=refresh_mode)
    run.ctx = ctx
    final_event = {"event": "error", "message": "Pipeline did not finish"}
    try:
        outcome = await run_pipeline(mock_mode=mock_mode, ctx=ctx)
        run.outcome = outcome
        run.errors = list(outcome.stats.errors)
        if outcome.stats.pipeline_error:
            run.errors.insert(0, outcome.stats.pipeline_error)

        if outcome.cancelled:
            run.status = RunStatus.CANCELLED
        elif outcome.success:
            run.status = RunStatus.COMPLETED
        else:
            run.status = RunStatus.FAILED
        final_event = {
            "event": "complete",
            "status": run.status.value,
            "committed": outcome.committed,
            "duration_seconds": outcome.duration_seconds,
            "funnel": _funnel(run).model_dump(),
            "errors": run.errors,
        }
    except Exception as e:
        logger.exception(f"Pipeline run {run.run_id} crashed: {e}")
        run.status = RunStatus.FAILED
        run.errors.append(str(e))
        final_event = {"event": "error", "message": str(e)}
    finally:
        package_logger.removeHandler(sse_handler)
        run.completed_at = datetime.now(timezone.utc)
        run.current_stage = "done"
        run.ctx = None
        try:
            run.event_queue.put_nowait(final_event)
        except asyncio.QueueFull:
            pass


@router.get("/pipeline/stream/{run_id}")
async def stream_progress(run_id: str):
    """SSE endpoint -- stream real-time pipeline progress.

    Client usage:
        const es = new EventSource(`/pipeline/stream/${runId}`);
        es.onmessage = (e) => console.log(JSON.parse(e.data));
    """
    run = run_manager.get_run(run_id)
    if not run:
        raise HTTPException(404, "Run not found")

    async def event_generator():
        while True:
            try:
                event = await asyncio.wait_for(run.event_queue.get(), timeout=HEARTBEAT_SECONDS)
                yield f"data: {json.dumps(event, default=str)}\n\n"
                if event.get("event") in ("complete", "error"):
                    break
            except asyncio.TimeoutError:
                # Heartbeat to keep connection alive through proxies
                yield f"data: {json.dumps({'event': 'heartbeat'})}\n\n"

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=_SSE_HEADERS)


@router.get("/pipeline/status/{run_id}", response_model=PipelineStatusResponse)
async def get_status(run_id: str):
    """Poll pipeline status (fallback for clients that can't use SSE)."""
    run = run_manager.get_run(run_id)
    if not run:
        raise HTTPException(404, "Run not found")
    return _status(run)


@router.get("/pipeline/runs", response_model=List[PipelineStatusResponse])
async def list_runs(limit: int = 20):
    """Recent runs, newest first. In-memory only; history does not survive restarts."""
    return [_status(r) for r in run_manager.list_runs(limit=limit)]


def _status(run: PipelineRun) -> PipelineStatusResponse:
    end = run.completed_at or datetime.now(timezone.utc)
    return PipelineStatusResponse(
        run_id=run.run_id,
        status=run.status.value,
        current_stage=run.current_stage,
        funnel=_funnel(run),
        errors=run.errors,
        started_at=run.started_at.isoformat(),
        elapsed_seconds=round((end - run.started_at).total_seconds(), 1),
    )


@router.post("/pipeline/cancel/{run_id}", dependencies=[Depends(verify_api_key)])
async def cancel_run(run_id: str):
    """Request cancellation. In-flight work settles; nothing new starts."""
    run = run_manager.get_run(run_id)
    if not run:
        raise HTTPException(404, "Run not found")
    if run.finished or run.ctx is None:
        raise HTTPException(409, f"Run is {run.status.value}")
    run.ctx.cancel()
    return {"run_id": run_id, "status": "cancelling"}


@router.get("/live")
async def live_stream():
    """SSE endpoint -- committed events and relevant articles as they are published."""
    broadcaster = get_broadcaster()
    queue = broadcaster.subscribe()
    logger.info(f"📡 Live listener connected ({broadcaster.listener_count} active)")

    async def event_generator():
        try:
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
                    yield f"event: {message['channel']}\ndata: {json.dumps(message['data'], default=str)}\n\n"
                except asyncio.TimeoutError:
                    yield f"data: {json.dumps({'event': 'heartbeat'})}\n\n"
        finally:
            broadcaster.unsubscribe(queue)

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=_SSE_HEADERS)
