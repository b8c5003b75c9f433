# Pipeline agents
from .deps import PipelineDeps
from .headline_assessor import assess_headlines
from .enrichment import enrich_articles
from .contact_agent import find_opportunities
from .event_synthesizer import cluster_and_synthesize
from .notifier import notify_subscribers, send_supervisor_report
from .realtime import RealtimeBroadcaster, get_broadcaster

__all__ = [
    "PipelineDeps",
    "assess_headlines",
    "enrich_articles",
    "find_opportunities",
    "cluster_and_synthesize",
    "notify_subscribers",
    "send_supervisor_report",
    "RealtimeBroadcaster",
    "get_broadcaster",
]
