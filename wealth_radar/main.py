"""
Wealth Radar - Main Entry Point.
FastAPI server and CLI interface.

    python -m wealth_radar.main [--refresh] [--mock]
    python -m wealth_radar.main --server [--port 8000]
"""

import asyncio
import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import health_router, pipeline_router
from .config import get_settings
from .pipeline.runner import run_pipeline

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

# Suppress noisy loggers
for _noisy in ("httpx", "httpcore", "trafilatura", "chromadb"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

app = FastAPI(
    title="Wealth Radar",
    description="News-driven private wealth event detection and client-opportunity alerts",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(pipeline_router)


def _print_summary(outcome) -> None:
    stats = outcome.stats
    print("\n" + "=" * 60)
    print("📊 RUN RESULTS")
    print("=" * 60)
    print(f"Run: {outcome.run_id}")
    print(f"Success: {outcome.success} (committed: {outcome.committed})")
    print(f"Headlines scraped: {stats.headlines_scraped}")
    print(f"Fresh headlines: {stats.fresh_headlines_found}")
    print(f"Relevant headlines: {stats.relevant_headlines}")
    print(f"Articles enriched: {stats.articles_enriched}")
    print(f"Events synthesized: {stats.events_synthesized}")
    print(f"Opportunities found: {stats.opportunities_found}")
    print(f"Notifications: {stats.notifications_sent} sent, "
          f"{stats.notifications_skipped} skipped, {stats.notifications_failed} failed")
    print(f"Push alerts: {stats.push_alerts_sent} sent, {stats.push_alerts_failed} failed")
    print(f"Runtime: {outcome.duration_seconds:.2f}s")

    if stats.pipeline_error:
        print(f"\n❌ {stats.pipeline_error}")
    if stats.errors:
        print(f"\n⚠️ Errors: {len(stats.errors)}")
        for error in stats.errors[:5]:
            print(f"   - {error}")

    print("=" * 60 + "\n")


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(description="Wealth Radar")
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Re-process headlines already in the store"
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Run in mock mode (no real API calls)"
    )
    parser.add_argument(
        "--server",
        action="store_true",
        help="Start the FastAPI server"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Server port (default: 8000)"
    )

    return parser


async def cli_main(args) -> int:
    """Run the pipeline once from the command line. Returns the process exit code."""
    if args.mock:
        print("🔧 Running in MOCK MODE (no real API calls)\n")

    outcome = await run_pipeline(
        refresh_mode=args.refresh or get_settings().refresh_mode,
        mock_mode=args.mock,
    )
    _print_summary(outcome)
    return 0 if outcome.success else 1


def main(argv=None) -> int:
    """Entry point for CLI."""
    args = build_parser().parse_args(argv)
    if args.server:
        import uvicorn
        logger.info(f"Starting server on port {args.port}...")
        uvicorn.run(app, host="0.0.0.0", port=args.port)
        return 0
    return asyncio.run(cli_main(args))


if __name__ == "__main__":
    sys.exit(main())
