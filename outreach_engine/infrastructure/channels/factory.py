"""
Channel Factory and Dispatcher
Selects the provider adaptor for a channel and sends through it.
"""
import logging
from typing import Any, Dict, Optional, Type

from outreach_engine.core.config import Settings, get_settings

from .base import ChannelAdaptor, ChannelConfigurationError, DispatchRequest, DispatchResult
from .credentials import ChannelCredentials, load_channel_credentials
from .email import ResendEmailAdaptor
from .sms import VonageSMSAdaptor
from .voice import BlandVoiceAdaptor

logger = logging.getLogger(__name__)


class ChannelFactory:
    """Factory for creating channel adaptor instances"""

    _adaptors: Dict[str, Type[ChannelAdaptor]] = {
        "sms": VonageSMSAdaptor,
        "email": ResendEmailAdaptor,
        "call": BlandVoiceAdaptor,
    }

    @classmethod
    def create(cls, channel: str, credentials: ChannelCredentials, settings: Optional[Settings] = None) -> ChannelAdaptor:
        """Create the adaptor registered for a channel."""
        if channel not in cls._adaptors:
            available = ", ".join(cls._adaptors.keys())
            raise ChannelConfigurationError(f"Unknown channel: {channel}. Available: {available}")

        return cls._adaptors[channel].from_credentials(credentials, settings or get_settings())

    @classmethod
    def register(cls, channel: str, adaptor_class: Type[ChannelAdaptor]) -> None:
        """Register an adaptor for a channel"""
        cls._adaptors[channel] = adaptor_class

    @classmethod
    def list_channels(cls) -> list[str]:
        """List channels with a registered adaptor"""
        return list(cls._adaptors.keys())


class ChannelDispatcher:
    """
    Sends one normalized message for an organization.

    Provider credentials are resolved per organization on each dispatch.
    Pre-built adaptors can be supplied per channel (used by tests and by
    callers that already hold a configured client).
    """

    def __init__(
        self,
        supabase: Any,
        settings: Optional[Settings] = None,
        adaptors: Optional[Dict[str, ChannelAdaptor]] = None
    ):
        self.supabase = supabase
        self.settings = settings or get_settings()
        self._adaptors = adaptors or {}

    async def get_adaptor(self, organization_id: str, channel: str) -> ChannelAdaptor:
        if channel in self._adaptors:
            return self._adaptors[channel]
        credentials = await load_channel_credentials(self.supabase, organization_id, self.settings)
        return ChannelFactory.create(channel, credentials, self.settings)

    async def dispatch(
        self,
        organization_id: str,
        channel: str,
        request: DispatchRequest
    ) -> DispatchResult:
        """
        Send through the channel's provider.

        Raises:
            ChannelError subclass on any provider failure
        """
        adaptor = await self.get_adaptor(organization_id, channel)
        logger.debug(f"Dispatching {channel} via {adaptor.provider_name} for org {organization_id[:8]}")
        return await adaptor.send(request)
