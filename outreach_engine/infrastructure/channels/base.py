"""
Channel Adaptor Base Classes
Normalized request/result types and the typed failure hierarchy shared by
every outbound provider.
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging

import httpx

logger = logging.getLogger(__name__)


class DispatchErrorKind(str, Enum):
    """Every way an outreach attempt can end without a send."""
    CONFIGURATION_ERROR = "configuration_error"
    COMPLIANCE_BLOCKED = "compliance_blocked"
    RATE_LIMITED = "rate_limited"
    RECIPIENT_REJECTED = "recipient_rejected"
    TRANSIENT_PROVIDER_ERROR = "transient_provider_error"


class ChannelError(Exception):
    """Base class for provider failures raised by channel adaptors."""
    kind: DispatchErrorKind = DispatchErrorKind.TRANSIENT_PROVIDER_ERROR
    alert_operator: bool = False

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        self.message = message
        self.provider = provider
        self.status_code = status_code
        super().__init__(self.message)


class ChannelConfigurationError(ChannelError):
    """Missing or invalid provider credentials. Fatal for the organization until fixed."""
    kind = DispatchErrorKind.CONFIGURATION_ERROR
    alert_operator = True


class RecipientRejectedError(ChannelError):
    """Provider refused this recipient (bad number, bounced address, barred)."""
    kind = DispatchErrorKind.RECIPIENT_REJECTED


class TransientProviderError(ChannelError):
    """Network failure or 5xx from the provider."""
    kind = DispatchErrorKind.TRANSIENT_PROVIDER_ERROR


@dataclass
class DispatchRequest:
    """Normalized outbound message."""
    recipient: str
    body: str
    subject: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DispatchResult:
    """Normalized provider acknowledgement."""
    provider: str
    provider_message_id: str
    sent_at: datetime
    body: str
    cost: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "provider": self.provider,
            "provider_message_id": self.provider_message_id,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "cost": self.cost,
            "metadata": self.metadata
        }


def ensure_opt_out(body: str, marker: str, instruction: str) -> str:
    """Append the opt-out instruction unless the body already mentions the marker."""
    if marker.lower() in (body or "").lower():
        return body
    if not body:
        return instruction
    return f"{body}\n\n{instruction}"


def classify_http_status(status_code: int, provider: str, detail: str) -> ChannelError:
    """Map a provider HTTP status onto the failure taxonomy."""
    message = f"{provider} error ({status_code}): {detail}"
    if status_code in (401, 403):
        return ChannelConfigurationError(message, provider, status_code)
    if status_code == 429 or status_code >= 500:
        return TransientProviderError(message, provider, status_code)
    return RecipientRejectedError(message, provider, status_code)


class ChannelAdaptor(ABC):
    """
    Abstract base class for outbound channel providers.

    All adaptors must implement:
    - send(): deliver one normalized request, returning a DispatchResult or
      raising a ChannelError subclass
    - is_configured(): whether credentials are present
    """

    channel: str = ""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (e.g., 'vonage', 'resend')."""
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the provider has valid configuration."""
        pass

    @abstractmethod
    async def send(self, request: DispatchRequest) -> DispatchResult:
        """Send one message through the provider."""
        pass

    @classmethod
    def from_credentials(cls, credentials: Any, settings: Any) -> "ChannelAdaptor":
        """Build the adaptor from resolved organization credentials."""
        return cls(credentials)

    def prepare_body(self, body: str) -> str:
        """Hook for channel-specific body rules (opt-out text)."""
        return body

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise ChannelConfigurationError(
                f"{self.provider_name} is not configured for {self.channel}",
                self.provider_name
            )

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0
    ) -> Dict[str, Any]:
        """POST a JSON payload and classify any failure."""
        try:
            if http_client is not None:
                response = await http_client.post(url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise TransientProviderError(f"Network error: {e}", self.provider_name) from e

        if response.status_code >= 300:
            logger.error(f"{self.provider_name} request failed: {response.status_code} {response.text}")
            raise classify_http_status(response.status_code, self.provider_name, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise TransientProviderError(
                f"Unexpected response format from {self.provider_name}", self.provider_name
            ) from e

    def _normalize_number(self, number: str) -> str:
        """
        Normalize phone number to E.164 format.

        Ten-digit numbers are assumed to be North American.
        """
        digits = "".join(ch for ch in number if ch.isdigit())
        if number.strip().startswith("+"):
            return "+" + digits
        if len(digits) == 10:
            return "+1" + digits
        return "+" + digits
