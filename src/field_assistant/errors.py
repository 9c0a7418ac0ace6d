"""
Error taxonomy for the field assistant.

Only failures the caller must see are exceptions. Insufficient evidence and
rejected model output are normal outcomes that resolve to the canonical
refusal (HTTP 200) and never appear here.

  InputRejected        400  structural limits, malformed body
  InjectionDetected    400  prompt injection in a user message
  Unauthorized         401  missing or unknown bearer token
  RateLimitExceeded    429  tenant daily quota exhausted
  UpstreamModelFailure 502  model provider error (not retried)
"""

from dataclasses import dataclass


class FieldAssistantError(Exception):
    """Base class. Rendered as {"error": message, **payload()} by the gateway."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def payload(self) -> dict:
        return {"error": self.message}


class InputRejected(FieldAssistantError):
    status_code = 400


class InjectionDetected(FieldAssistantError):
    status_code = 400

    def __init__(self, message: str, patterns: list[str] | None = None):
        super().__init__(message)
        self.patterns = patterns or []


class Unauthorized(FieldAssistantError):
    status_code = 401


@dataclass
class QuotaState:
    """Snapshot of a tenant's daily quota after a check."""

    tier: str
    limit: int | None
    used: int
    resets_at: str

    @property
    def unlimited(self) -> bool:
        return self.limit is None


class RateLimitExceeded(FieldAssistantError):
    status_code = 429

    def __init__(self, quota: QuotaState):
        super().__init__(
            f"Daily AI query limit reached ({quota.used}/{quota.limit}). "
            f"Your {quota.tier} plan allows {quota.limit} queries per day."
        )
        self.quota = quota

    def payload(self) -> dict:
        return {
            "error": self.message,
            "limit": self.quota.limit,
            "used": self.quota.used,
            "resets_at": self.quota.resets_at,
            "tier": self.quota.tier,
        }


class UpstreamModelFailure(FieldAssistantError):
    status_code = 502

    def __init__(self, message: str, provider_status: int | None = None):
        super().__init__(message)
        self.provider_status = provider_status
        # Provider throttling and exhausted credits pass through unchanged
        if provider_status in (402, 429):
            self.status_code = provider_status
