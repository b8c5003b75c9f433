"""Pipeline run manager -- tracks active and completed runs in-memory.

Provides an asyncio.Queue per run for SSE streaming. Only one run may be
active at a time.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..schemas.base import RunStatus
from ..schemas.pipeline import RunOutcome


@dataclass
class PipelineRun:
    """State for a single pipeline execution."""
    run_id: str
    status: RunStatus = RunStatus.STARTED
    current_stage: str = "init"
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    outcome: Optional[RunOutcome] = None
    errors: List[str] = field(default_factory=list)
    event_queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=1000))
    # RunContext of the active run, for cancellation
    ctx: Optional[object] = None

    @property
    def finished(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class RunManager:
    """Tracks pipeline runs across API requests."""

    def __init__(self):
        self._runs: Dict[str, PipelineRun] = {}

    def create_run(self, run_id: str) -> PipelineRun:
        run = PipelineRun(run_id=run_id)
        self._runs[run_id] = run
        return run

    def get_run(self, run_id: str) -> Optional[PipelineRun]:
        return self._runs.get(run_id)

    def list_runs(self, limit: int = 20) -> List[PipelineRun]:
        runs = sorted(self._runs.values(), key=lambda r: r.started_at, reverse=True)
        return runs[:limit]

    @property
    def is_running(self) -> bool:
        return any(not r.finished for r in self._runs.values())

    def clear(self) -> None:
        self._runs.clear()


# Module-level singleton
run_manager = RunManager()
