"""
Resend Email Adaptor
Transactional and marketing email via the Resend HTTP API.
"""
import logging
from typing import Optional
from datetime import datetime, timezone

import httpx
from jinja2 import Environment, BaseLoader

from .base import (
    ChannelAdaptor,
    DispatchRequest,
    DispatchResult,
    RecipientRejectedError,
    TransientProviderError,
    ensure_opt_out,
)
from .credentials import ChannelCredentials

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

EMAIL_OPT_OUT_MARKER = "unsubscribe"
EMAIL_OPT_OUT_TEXT = "To unsubscribe from these emails, reply with UNSUBSCRIBE."

_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.5; color: #222;">
{% for paragraph in paragraphs %}<p>{% for line in paragraph %}{{ line }}{% if not loop.last %}<br>{% endif %}{% endfor %}</p>
{% endfor %}</body>
</html>"""

_env = Environment(loader=BaseLoader(), autoescape=True)
_html_template = _env.from_string(_HTML_TEMPLATE)


def render_html(body: str) -> str:
    """Render a plain-text body as escaped HTML paragraphs."""
    paragraphs = [
        block.splitlines()
        for block in body.replace("\r\n", "\n").split("\n\n")
        if block.strip()
    ]
    return _html_template.render(paragraphs=paragraphs)


class ResendEmailAdaptor(ChannelAdaptor):
    """Email provider backed by Resend."""

    channel = "email"

    def __init__(
        self,
        credentials: ChannelCredentials,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0
    ):
        self._api_key = credentials.email_api_key
        self._from_address = credentials.email_sender
        self._http_client = http_client
        self._timeout = timeout

    @classmethod
    def from_credentials(cls, credentials: ChannelCredentials, settings) -> "ResendEmailAdaptor":
        return cls(credentials, timeout=settings.provider_timeout)

    @property
    def provider_name(self) -> str:
        return "resend"

    def is_configured(self) -> bool:
        return bool(self._api_key and self._from_address)

    def prepare_body(self, body: str) -> str:
        return ensure_opt_out(body, EMAIL_OPT_OUT_MARKER, EMAIL_OPT_OUT_TEXT)

    async def send(self, request: DispatchRequest) -> DispatchResult:
        """Send one email. The plain-text body is also rendered to HTML."""
        self._require_configured()

        if not request.recipient or "@" not in request.recipient:
            raise RecipientRejectedError(
                f"Invalid email address: {request.recipient!r}", self.provider_name
            )

        body = self.prepare_body(request.body)
        payload = {
            "from": self._from_address,
            "to": [request.recipient],
            "subject": request.subject or "",
            "text": body,
            "html": render_html(body),
        }

        logger.info(f"Sending email via Resend to {request.recipient}")

        data = await self._post_json(
            RESEND_API_URL,
            payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
            http_client=self._http_client,
            timeout=self._timeout,
        )

        message_id = data.get("id")
        if not message_id:
            raise TransientProviderError("Resend response missing message id", self.provider_name)

        logger.info(f"Email sent successfully: {message_id}")

        return DispatchResult(
            provider=self.provider_name,
            provider_message_id=message_id,
            sent_at=datetime.now(timezone.utc),
            body=body,
        )
