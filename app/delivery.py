"""
Outbound webhook delivery client.

Sends one message per request to the configured webhook and resolves the
delivery identifier the remote side assigns to it.
"""

import logging
import uuid
from typing import Optional

import httpx
from pydantic import ValidationError

from app.config import Settings
from app.schemas import WebhookPayload, WebhookReply
from app.utils import Deadline

logger = logging.getLogger(__name__)

AUTH_HEADER = "x-ins-auth-key"
MAX_BODY_PREVIEW = 200


class DeliveryError(Exception):
    """Raised when a message could not be delivered to the webhook."""


def generate_delivery_id() -> str:
    """Random RFC 4122 version 4 UUID in canonical 36-character form."""
    return str(uuid.uuid4())


def _preview(body: str) -> str:
    if len(body) > MAX_BODY_PREVIEW:
        return body[:MAX_BODY_PREVIEW] + "..."
    return body


class WebhookDeliveryClient:
    """
    HTTP client delivering messages to the outbound webhook.

    No retries happen here: every failure surfaces as a DeliveryError and the
    message is left for a later tick.

    Attributes:
        webhook_url: Target URL for POST requests
        auth_key: Value of the x-ins-auth-key header (omitted when empty)
        timeout: Per-request timeout in seconds, further bounded by the deadline
        placeholder: Remote delivery id treated as missing (empty disables)
    """

    def __init__(
        self,
        webhook_url: str,
        auth_key: str = "",
        timeout: float = 30.0,
        placeholder: str = "{{uuid}}",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.auth_key = auth_key
        self.timeout = timeout
        self.placeholder = placeholder
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )

        if not webhook_url:
            logger.warning("WEBHOOK_URL is empty; every delivery will fail")

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> "WebhookDeliveryClient":
        return cls(
            webhook_url=settings.WEBHOOK_URL,
            auth_key=settings.WEBHOOK_AUTH_KEY,
            timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
            placeholder=settings.DELIVERY_ID_PLACEHOLDER,
            transport=transport,
        )

    def send(self, message, deadline: Deadline) -> str:
        """
        Deliver one message and return its delivery identifier.

        Args:
            message: Object with `id`, `to_msisdn` and `content`
            deadline: Absolute deadline for this attempt

        Returns:
            The remote delivery id, or a locally generated UUID4 when the
            remote id is missing or the placeholder value

        Raises:
            DeliveryError: on serialization, transport, status or body errors
        """
        if not self.webhook_url:
            raise DeliveryError("webhook URL is not configured")
        if deadline.expired:
            raise DeliveryError("deadline exceeded before sending")

        try:
            body = WebhookPayload(to=message.to_msisdn, content=message.content).model_dump_json()
        except (ValidationError, TypeError, ValueError) as e:
            raise DeliveryError(f"failed to serialize payload: {e}") from e

        headers = {"Content-Type": "application/json"}
        if self.auth_key:
            headers[AUTH_HEADER] = self.auth_key

        logger.debug(f"Posting message {message.id} to {self.webhook_url}")
        try:
            response = self._client.post(
                self.webhook_url,
                content=body,
                headers=headers,
                timeout=deadline.bound(self.timeout),
            )
        except httpx.TimeoutException as e:
            raise DeliveryError(f"request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"failed to send request: {e}") from e
        except httpx.InvalidURL as e:
            # Not an HTTPError subclass: malformed port or IDNA host
            raise DeliveryError(f"invalid webhook URL {self.webhook_url!r}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise DeliveryError(
                f"bad status: {response.status_code}, body: {_preview(response.text)}"
            )

        try:
            data = response.json()
            # A JSON null body carries no delivery id, same as an empty object
            reply = WebhookReply() if data is None else WebhookReply.model_validate(data)
        except ValueError as e:
            raise DeliveryError(
                f"failed to decode response (status {response.status_code}): "
                f"{e}. Response body: {_preview(response.text)}"
            ) from e

        if not reply.message_id or (self.placeholder and reply.message_id == self.placeholder):
            delivery_id = generate_delivery_id()
            logger.info(
                f"Webhook returned no usable delivery id for message {message.id}; "
                f"generated {delivery_id}"
            )
            return delivery_id

        return reply.message_id

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "WebhookDeliveryClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
