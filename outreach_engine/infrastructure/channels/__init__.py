"""
Outbound Channels Package
Provider adaptors for SMS, email and automated calls.
"""
from .base import (
    ChannelAdaptor,
    ChannelConfigurationError,
    ChannelError,
    DispatchErrorKind,
    DispatchRequest,
    DispatchResult,
    RecipientRejectedError,
    TransientProviderError,
)
from .credentials import ChannelCredentials, load_channel_credentials
from .email import ResendEmailAdaptor
from .factory import ChannelDispatcher, ChannelFactory
from .sms import VonageSMSAdaptor
from .voice import BlandVoiceAdaptor

__all__ = [
    "ChannelAdaptor",
    "ChannelConfigurationError",
    "ChannelError",
    "DispatchErrorKind",
    "DispatchRequest",
    "DispatchResult",
    "RecipientRejectedError",
    "TransientProviderError",
    "ChannelCredentials",
    "load_channel_credentials",
    "ResendEmailAdaptor",
    "ChannelDispatcher",
    "ChannelFactory",
    "VonageSMSAdaptor",
    "BlandVoiceAdaptor",
]
