"""
Health Check Endpoint
Provides health status for container health checks and monitoring
"""
from fastapi import APIRouter, status
from typing import Dict, Any

from outreach_engine.core.validation import ProviderValidator
from outreach_engine.infrastructure.channels import ChannelFactory
from outreach_engine.utils.timestamps import utc_now

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint.

    Reports which fallback provider credentials are configured; it does not
    call any provider.
    """
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "service": "outreach-engine",
        "channels": ChannelFactory.list_channels(),
        "providers": ProviderValidator().provider_status(),
    }


@router.get("/", status_code=status.HTTP_200_OK)
async def root() -> Dict[str, str]:
    return {
        "message": "Outreach Dispatch Engine",
        "version": "1.0.0",
        "docs": "/docs"
    }
