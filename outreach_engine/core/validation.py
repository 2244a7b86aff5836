"""
Provider Configuration Check
Reports which provider credentials this process holds.

The store is required. Channel credentials are platform fallbacks:
organizations may bring their own, so a missing one only warns unless the
check is strict (production).
"""
import logging
from typing import Dict, List, Optional, Tuple

from outreach_engine.core.config import Settings

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = {
    "database": ("supabase_url", "supabase_service_key"),
}

FALLBACK_SETTINGS = {
    "sms": ("vonage_api_key", "vonage_api_secret", "vonage_from_number"),
    "email": ("resend_api_key",),
    "call": ("bland_api_key", "voice_webhook_url"),
}


class ProviderValidator:
    """Checks Settings for the store connection and fallback channel credentials."""

    def __init__(self, settings: Optional[Settings] = None, strict: bool = False):
        # A fresh Settings reads the current environment
        self.settings = settings or Settings()
        self.strict = strict

    def _missing(self, groups: Dict[str, Tuple[str, ...]]) -> List[str]:
        return [
            f"[{provider}] {name.upper()}"
            for provider, names in groups.items()
            for name in names
            if not getattr(self.settings, name)
        ]

    def validate_all(self) -> Tuple[bool, List[str]]:
        """
        Returns:
            (all_valid, problems). Missing fallbacks count as problems only
            in strict mode.
        """
        problems = [f"{item} is required" for item in self._missing(REQUIRED_SETTINGS)]

        for item in self._missing(FALLBACK_SETTINGS):
            message = f"{item} not set; organizations must supply their own credentials"
            if self.strict:
                problems.append(message)
            else:
                logger.warning(message)

        return not problems, problems

    def provider_status(self) -> Dict[str, bool]:
        return {
            provider: all(getattr(self.settings, name) for name in names)
            for provider, names in {**REQUIRED_SETTINGS, **FALLBACK_SETTINGS}.items()
        }


def validate_providers_on_startup(strict: bool = False, settings: Optional[Settings] = None) -> None:
    """
    Check provider configuration from the FastAPI lifespan.

    Raises:
        RuntimeError: listing every missing setting
    """
    all_valid, problems = ProviderValidator(settings, strict=strict).validate_all()
    if not all_valid:
        raise RuntimeError("Provider configuration errors:\n" + "\n".join(f"  - {p}" for p in problems))

    logger.info("Provider configuration validated")
