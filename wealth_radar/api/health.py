"""Health check router -- provider status and thresholds summary."""

from datetime import datetime, timezone

from fastapi import APIRouter

from ..config import get_settings
from ..tools.provider_manager import ProviderManager

router = APIRouter()


@router.get("/")
async def root():
    return {"service": "Wealth Radar API", "version": "1.0.0"}


@router.get("/health")
async def health():
    settings = get_settings()
    providers = ProviderManager(settings=settings, mock_mode=settings.mock_mode).configured_provider_names()

    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "providers": providers,
        "mock_mode": settings.mock_mode,
        "thresholds": settings.thresholds_summary(),
    }
