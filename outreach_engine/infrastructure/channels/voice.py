"""
Bland Voice Adaptor
Outbound automated calls via the Bland.ai API.
"""
import logging
from typing import Optional
from datetime import datetime, timezone

import httpx

from .base import (
    ChannelAdaptor,
    DispatchRequest,
    DispatchResult,
    RecipientRejectedError,
    TransientProviderError,
)
from .credentials import ChannelCredentials

logger = logging.getLogger(__name__)

BLAND_API_URL = "https://api.bland.ai/v1/calls"


class BlandVoiceAdaptor(ChannelAdaptor):
    """
    Automated call provider.

    The request body is the call script (task prompt). The call itself runs
    asynchronously at the provider; the returned call id is the provider
    message id and the outcome arrives later via webhook.
    """

    channel = "call"

    def __init__(
        self,
        credentials: ChannelCredentials,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0
    ):
        self._api_key = credentials.voice_api_key
        self._webhook_url = credentials.voice_webhook_url
        self._http_client = http_client
        self._timeout = timeout

    @classmethod
    def from_credentials(cls, credentials: ChannelCredentials, settings) -> "BlandVoiceAdaptor":
        return cls(credentials, timeout=settings.provider_timeout)

    @property
    def provider_name(self) -> str:
        return "bland"

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def send(self, request: DispatchRequest) -> DispatchResult:
        self._require_configured()

        if not request.recipient:
            raise RecipientRejectedError("Lead has no phone number", self.provider_name)

        to_number = self._normalize_number(request.recipient)
        payload = {
            "phone_number": to_number,
            "task": request.body,
            "record": True,
            "metadata": request.metadata,
        }
        if self._webhook_url:
            payload["webhook"] = self._webhook_url

        logger.info(f"Placing call via Bland to {to_number[:6]}...")

        data = await self._post_json(
            BLAND_API_URL,
            payload,
            headers={"authorization": self._api_key},
            http_client=self._http_client,
            timeout=self._timeout,
        )

        call_id = data.get("call_id")
        if not call_id:
            raise TransientProviderError(
                f"Bland did not return a call id: {data.get('message', data)}",
                self.provider_name
            )

        logger.info(f"Call queued successfully: {call_id}")

        return DispatchResult(
            provider=self.provider_name,
            provider_message_id=call_id,
            sent_at=datetime.now(timezone.utc),
            body=request.body,
            metadata={"status": data.get("status")},
        )
