"""
Run-scoped execution context.

One RunContext per pipeline run holds everything that must not outlive the
run: the global concurrency semaphore, the cancellation flag, the run date
used in event keys and the source cache built at pre-flight.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from ..config import get_settings
from ..errors import RunCancelledError
from ..news.sources import SourceCache
from ..schemas.news import new_id, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RunContext:
    run_id: str = field(default_factory=lambda: new_id()[:12])
    run_date: date = field(default_factory=lambda: utcnow().date())
    refresh_mode: bool = False
    concurrency: int = 0
    source_cache: SourceCache = field(default_factory=SourceCache)
    semaphore: asyncio.Semaphore = field(init=False, repr=False)
    _cancel: asyncio.Event = field(init=False, repr=False)

    def __post_init__(self):
        if not self.concurrency:
            self.concurrency = get_settings().pipeline_concurrency
        self.semaphore = asyncio.Semaphore(self.concurrency)
        self._cancel = asyncio.Event()

    @property
    def run_date_str(self) -> str:
        return self.run_date.isoformat()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        logger.warning(f"🛑 Run {self.run_id} cancellation requested")
        self._cancel.set()

    def check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise RunCancelledError(f"Run {self.run_id} was cancelled")

    async def run_bounded(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run one leaf work item under the run semaphore.

        Only leaf items (source, batch, article, cluster) go through here, so
        holders never wait on each other.
        """
        self.check_cancelled()
        async with self.semaphore:
            self.check_cancelled()
            return await fn(*args, **kwargs)

    async def gather_settled(self, coros: List[Awaitable[T]]) -> List[Any]:
        """Settle-all gather: results and exceptions, in input order."""
        return list(await asyncio.gather(*coros, return_exceptions=True))

    def close(self) -> None:
        self.source_cache.clear()
