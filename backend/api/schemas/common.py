"""Common schemas used across the API."""

from pydantic import BaseModel, Field


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str = Field(description="Human-readable error message")
    error_code: str = Field(description="Machine-readable error code")
    request_id: str | None = Field(default=None, description="Request ID for log correlation")
