# Tools module
from .llm_service import LLMService
from .tavily_tool import TavilyTool
from .brevo_tool import BrevoTool
from .telegram_tool import TelegramTool
from .wikipedia_tool import WikipediaTool
from .embeddings import EmbeddingTool
from .page_fetcher import HttpPageFetcher, BrowserPageFetcher, MockPageFetcher, create_page_fetcher
from .domain_utils import extract_clean_domain, is_excluded_domain

__all__ = [
    # Intelligence & search
    "LLMService",
    "TavilyTool",
    "WikipediaTool",
    # Delivery
    "BrevoTool",
    "TelegramTool",
    # Embeddings
    "EmbeddingTool",
    # Page fetch
    "HttpPageFetcher",
    "BrowserPageFetcher",
    "MockPageFetcher",
    "create_page_fetcher",
    # Domain utils
    "extract_clean_domain",
    "is_excluded_domain",
]
