# News acquisition: source registry, extraction, scraping, freshness
from .sources import SourceRegistry, SourceCache
from .extractor import extract_headlines
from .scraper import scrape_all_headlines
from .freshness import filter_fresh

__all__ = [
    "SourceRegistry",
    "SourceCache",
    "extract_headlines",
    "scrape_all_headlines",
    "filter_fresh",
]
