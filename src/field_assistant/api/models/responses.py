"""
Pydantic response models -- what the API returns outside the SSE stream.

The field-assistant success body is a text/event-stream; these models cover
the JSON error bodies and the health endpoints.
"""

from pydantic import BaseModel, Field


# =============================================================================
# HEALTH
# =============================================================================


class HealthResponse(BaseModel):
    """Liveness body: process uptime and the guardrail settings in force."""

    status: str = "healthy"
    model: str = ""
    stream_mode: str = "buffered"
    paragraph_policy: str = "strict"
    uptime_seconds: float = 0.0


class ReadinessResponse(BaseModel):
    """Readiness body: one boolean per collaborator the pipeline needs."""

    ready: bool = True
    checks: dict[str, bool] = Field(default_factory=dict)


# =============================================================================
# ERRORS
# =============================================================================


class ErrorResponse(BaseModel):
    """JSON body for every non-stream failure (400, 401, 429, 502)."""

    error: str


class QuotaExceededResponse(ErrorResponse):
    """429 body: the tenant's daily AI query quota is exhausted."""

    limit: int
    used: int
    resets_at: str
    tier: str
