"""
Channel Credentials
Per-organization provider credentials with a process-wide fallback.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Any

from outreach_engine.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class ChannelCredentials:
    """Resolved credentials for one organization."""
    messaging_account_id: Optional[str] = None
    messaging_secret: Optional[str] = None
    messaging_sender: Optional[str] = None
    email_api_key: Optional[str] = None
    email_sender: Optional[str] = None
    voice_api_key: Optional[str] = None
    voice_webhook_url: Optional[str] = None
    source: str = "default"


async def load_channel_credentials(
    supabase: Any,
    organization_id: str,
    settings: Optional[Settings] = None
) -> ChannelCredentials:
    """
    Load credentials for an organization.

    Each field falls back independently to the process-wide default so an
    organization can bring its own SMS number while sharing the platform
    email key.
    """
    settings = settings or get_settings()

    response = supabase.table("organization_credentials").select(
        "vonage_api_key, vonage_api_secret, vonage_from_number, "
        "resend_api_key, email_from_address, bland_api_key"
    ).eq("organization_id", organization_id).limit(1).execute()

    row = response.data[0] if response.data else {}
    if row:
        logger.debug(f"Using organization credentials for {organization_id[:8]}")

    return ChannelCredentials(
        messaging_account_id=row.get("vonage_api_key") or settings.vonage_api_key,
        messaging_secret=row.get("vonage_api_secret") or settings.vonage_api_secret,
        messaging_sender=row.get("vonage_from_number") or settings.vonage_from_number,
        email_api_key=row.get("resend_api_key") or settings.resend_api_key,
        email_sender=row.get("email_from_address") or settings.email_from_address,
        voice_api_key=row.get("bland_api_key") or settings.bland_api_key,
        voice_webhook_url=settings.voice_webhook_url,
        source="organization" if row else "default",
    )
