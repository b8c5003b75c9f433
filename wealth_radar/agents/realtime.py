"""
In-process realtime fan-out for committed events and relevant articles.

Listeners (the /live SSE endpoint) subscribe a bounded asyncio.Queue. A
slow listener whose queue is full misses messages; publishing never blocks
the pipeline.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from ..schemas.events import SynthesizedEvent
from ..schemas.news import Article

logger = logging.getLogger(__name__)

CHANNEL_EVENTS = "events"
CHANNEL_ARTICLES = "articles"


def article_payload(article: Article) -> Dict[str, Any]:
    """Lightweight article message."""
    return {
        "id": article.id,
        "headline": article.headline,
        "link": article.link,
        "newspaper": article.newspaper,
        "country": article.country,
        "relevance_article": article.relevance_article,
        "assessment_article": article.assessment_article,
    }


class RealtimeBroadcaster:
    """Pub/sub hub. One instance per process (see get_broadcaster)."""

    def __init__(self, max_queue_size: int = 200):
        self.max_queue_size = max_queue_size
        self._subscribers: List[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def listener_count(self) -> int:
        return len(self._subscribers)

    def publish(self, channel: str, payload: Dict[str, Any]) -> int:
        """Deliver to every listener. Returns how many queues accepted it."""
        message = {"channel": channel, "data": payload}
        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.debug(f"Realtime listener queue full, dropped {channel} message")
        return delivered

    def publish_events(self, events: Iterable[SynthesizedEvent]) -> int:
        count = 0
        for event in events:
            self.publish(CHANNEL_EVENTS, event.model_dump(mode="json"))
            count += 1
        return count

    def publish_articles(self, articles: Iterable[Article]) -> int:
        count = 0
        for article in articles:
            self.publish(CHANNEL_ARTICLES, article_payload(article))
            count += 1
        return count


_broadcaster: Optional[RealtimeBroadcaster] = None


def get_broadcaster() -> RealtimeBroadcaster:
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = RealtimeBroadcaster()
    return _broadcaster
