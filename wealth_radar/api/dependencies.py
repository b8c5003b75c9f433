"""FastAPI dependencies."""

from typing import Annotated, Optional

from fastapi import Header, HTTPException

from ..config import get_settings


async def verify_api_key(
    authorization: Annotated[Optional[str], Header()] = None,
):
    """Bearer token gate. Empty API_KEY = dev mode (all requests pass)."""
    required_key = get_settings().api_key
    if not required_key:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or token.strip() != required_key:
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
