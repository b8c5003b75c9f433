"""Wealth Radar: news-driven private wealth event intelligence."""

__version__ = "1.0.0"
