"""
Vonage SMS Adaptor
SMS delivery using the Vonage SMS API.
"""
import asyncio
import logging
import re
from typing import Optional
from datetime import datetime, timezone

import requests
from vonage import Vonage, Auth
from vonage_sms import PartialFailureError, SmsMessage, SmsError
from vonage_http_client.errors import (
    AuthenticationError,
    HttpRequestError,
    RateLimitedError,
    ServerError,
)

from .base import (
    ChannelAdaptor,
    ChannelConfigurationError,
    ChannelError,
    DispatchRequest,
    DispatchResult,
    RecipientRejectedError,
    TransientProviderError,
    ensure_opt_out,
)
from .credentials import ChannelCredentials

logger = logging.getLogger(__name__)

SMS_OPT_OUT_MARKER = "stop"
SMS_OPT_OUT_TEXT = "Reply STOP to unsubscribe"

# Vonage SMS API status codes
_CONFIGURATION_CODES = {4, 8, 9, 14, 15, 29}
_TRANSIENT_CODES = {1, 5}

_STATUS_CODE_RE = re.compile(r"error code (\d+)")


def _classify_code(message: str, code: Optional[int]) -> ChannelError:
    if code in _CONFIGURATION_CODES:
        return ChannelConfigurationError(message, "vonage", code)
    if code in _TRANSIENT_CODES:
        return TransientProviderError(message, "vonage", code)
    return RecipientRejectedError(message, "vonage", code)


def classify_sms_error(error: SmsError) -> ChannelError:
    """Map a Vonage SMS status into the failure taxonomy."""
    message = str(error)
    match = _STATUS_CODE_RE.search(message)
    return _classify_code(message, int(match.group(1)) if match else None)


def classify_partial_failure(error: PartialFailureError) -> ChannelError:
    """
    Classify a long message some of whose parts were accepted.

    The status of the first rejected part decides the kind. The lead may
    already hold the accepted parts.
    """
    response = error.response if isinstance(error.response, dict) else {}
    parts = response.get("messages") or []
    failed = [part for part in parts if str(part.get("status")) != "0"]

    message = f"Partial delivery: {len(parts) - len(failed)} of {len(parts)} message parts accepted"
    if not failed:
        return RecipientRejectedError(message, "vonage")

    first = failed[0]
    if first.get("error-text"):
        message = f"{message} ({first['error-text']})"
    try:
        code = int(first.get("status"))
    except (TypeError, ValueError):
        code = None
    return _classify_code(message, code)


class VonageSMSAdaptor(ChannelAdaptor):
    """
    Vonage SMS provider.

    Credentials come from the organization (messaging account id/secret/sender)
    with the platform VONAGE_* settings as fallback.
    """

    channel = "sms"

    def __init__(self, credentials: ChannelCredentials, client: Optional[Vonage] = None):
        self._api_key = credentials.messaging_account_id
        self._api_secret = credentials.messaging_secret
        self._from_number = credentials.messaging_sender
        self._client = client

    @property
    def provider_name(self) -> str:
        return "vonage"

    def is_configured(self) -> bool:
        return bool(self._api_key and self._api_secret and self._from_number)

    def _get_client(self) -> Vonage:
        if self._client is None:
            self._client = Vonage(Auth(api_key=self._api_key, api_secret=self._api_secret))
            logger.debug("Vonage SMS client initialized")
        return self._client

    def prepare_body(self, body: str) -> str:
        return ensure_opt_out(body, SMS_OPT_OUT_MARKER, SMS_OPT_OUT_TEXT)

    async def send(self, request: DispatchRequest) -> DispatchResult:
        """
        Send an SMS via Vonage.

        Raises:
            ChannelConfigurationError: credentials missing or rejected
            RecipientRejectedError: number invalid or barred
            TransientProviderError: throttling, outage or network failure
        """
        self._require_configured()

        to_number = self._normalize_number(request.recipient)
        body = self.prepare_body(request.body)

        message = SmsMessage(
            to=to_number.lstrip("+"),
            from_=self._from_number,
            text=body,
        )

        logger.info(f"Sending SMS via Vonage: {self._from_number} -> {to_number[:6]}...")

        try:
            response = await asyncio.to_thread(self._get_client().sms.send, message)
        except PartialFailureError as e:
            raise classify_partial_failure(e) from e
        except SmsError as e:
            raise classify_sms_error(e) from e
        except AuthenticationError as e:
            raise ChannelConfigurationError(str(e), self.provider_name, 401) from e
        except (RateLimitedError, ServerError) as e:
            raise TransientProviderError(str(e), self.provider_name) from e
        except HttpRequestError as e:
            raise RecipientRejectedError(str(e), self.provider_name) from e
        except requests.RequestException as e:
            raise TransientProviderError(f"Network error: {e}", self.provider_name) from e

        if not response.messages:
            raise TransientProviderError("Unexpected response format from Vonage", self.provider_name)

        sent = response.messages[0]
        price = getattr(sent, "message_price", None)

        logger.info(f"SMS sent successfully: {sent.message_id}")

        return DispatchResult(
            provider=self.provider_name,
            provider_message_id=sent.message_id,
            sent_at=datetime.now(timezone.utc),
            body=body,
            cost=float(price) if price else None,
            metadata={"network": getattr(sent, "network", None)},
        )
