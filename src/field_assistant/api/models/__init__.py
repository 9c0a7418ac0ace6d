"""Pydantic models for API request/response contracts."""
from .requests import (
    AssistantContext,
    ChatMessage,
    FieldAssistantRequest,
    parse_field_assistant_request,
)
from .responses import (
    ErrorResponse,
    HealthResponse,
    QuotaExceededResponse,
    ReadinessResponse,
)
