"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
- Wire models for the outbound webhook
"""

from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageCreateRequest(BaseModel):
    """
    Body of POST /api/messages.

    Format checks (phone number, empty content) are done in the route so each
    failure maps to its own error code.
    """
    to: str = Field(..., description="Recipient phone number in international format")
    content: str = Field(..., description="Message text; truncated to MSG_CHAR_LIMIT")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"to": "+905551111111", "content": "Hello, this is a test message"}
            ]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class StatusResponse(BaseModel):
    """Response model for scheduler start/stop."""
    status: str = Field(..., description="started or stopped")


class SchedulerStateResponse(BaseModel):
    running: bool = Field(..., description="Whether the dispatch scheduler is running")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Short error summary")
    message: Optional[str] = Field(None, description="Detailed error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class MessageResponse(BaseModel):
    """
    Response model for a single message.
    Maps database fields to API response format.
    """
    id: int = Field(..., description="Message identifier")
    to_msisdn: str = Field(
        ...,
        alias="to",
        serialization_alias="to",
        description="Recipient phone number"
    )
    content: str = Field(..., description="Message content")
    sent: bool = Field(..., description="Whether the message has been delivered")
    sent_at: Optional[str] = Field(
        None,
        alias="sentAt",
        serialization_alias="sentAt",
        description="Delivery timestamp (ISO-8601 UTC)"
    )
    delivery_id: Optional[str] = Field(
        None,
        alias="webhookMsgId",
        serialization_alias="webhookMsgId",
        description="Identifier assigned by the webhook"
    )
    created_at: str = Field(..., alias="createdAt", serialization_alias="createdAt")
    updated_at: str = Field(..., alias="updatedAt", serialization_alias="updatedAt")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_orm_message(cls, message) -> "MessageResponse":
        """Build a response from a Message ORM object."""
        return cls(
            id=message.id,
            to_msisdn=message.to_msisdn,
            content=message.content,
            sent=message.sent,
            sent_at=message.sent_at,
            delivery_id=message.delivery_id or None,
            created_at=message.created_at,
            updated_at=message.updated_at,
        )


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


# =============================================================================
# Outbound Webhook Wire Models
# =============================================================================

class WebhookPayload(BaseModel):
    """JSON body POSTed to the webhook for one message."""
    to: str
    content: str


class WebhookReply(BaseModel):
    """Expected webhook response body; unknown keys are ignored."""
    message: Optional[str] = None
    message_id: Optional[str] = Field(None, alias="messageId")
