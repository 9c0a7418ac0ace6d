"""
Configuration for the field assistant guardrail pipeline.

Every limit and threshold lives in a dataclass with a safe default.
AssistantConfig.from_env() overlays environment variables:

  FIELD_ASSISTANT_MODEL             model identifier sent to the provider
  FIELD_ASSISTANT_STREAM_MODE       "buffered" (default) or "speculative"
  FIELD_ASSISTANT_PARAGRAPH_POLICY  "strict" (default) or "majority"
  FIELD_ASSISTANT_DB_PATH           SQLite file for audit records and quotas
  LLM_PROVIDER                      "openai" (default) or "anthropic"
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

CANONICAL_REFUSAL = "I cannot find this information in the uploaded documents."
INJECTION_BLOCK_MESSAGE = (
    "Your message was blocked by our security system. "
    "Please rephrase your question about the equipment or documentation."
)

DEFAULT_MODEL = "google/gemini-2.5-flash"
DEFAULT_DB_PATH = Path("data/field_assistant.db")

STREAM_MODES = ("buffered", "speculative")
PARAGRAPH_POLICIES = ("strict", "majority")


@dataclass(frozen=True)
class ModelParameters:
    """Sampling parameters for every model call. Never varied per request."""

    temperature: float = 0.0
    top_p: float = 0.1
    max_tokens: int = 4096
    stream: bool = True


DETERMINISTIC_PARAMETERS = ModelParameters()


@dataclass
class RequestLimits:
    """Structural limits enforced before anything reaches the model."""

    max_messages: int = 50
    max_message_length: int = 10_000
    max_context_size: int = 50_000
    max_images_per_message: int = 4
    max_image_size_bytes: int = 5 * 1024 * 1024
    max_audit_message_length: int = 10_000


@dataclass
class RetrievalConfig:
    """Retrieval request settings."""

    top_k: int = 15
    similarity_threshold: float = 0.55
    min_query_length: int = 10
    max_query_length: int = 2_000
    recent_user_messages: int = 3
    max_context_chars: int = 80_000


@dataclass
class GateConfig:
    """Evidence sufficiency thresholds for the retrieval gate."""

    escalation_similarity_floor: float = 0.65
    escalation_min_chunks: int = 2
    single_chunk_min_similarity: float = 0.8
    single_chunk_min_length: int = 200
    duplicate_overlap_ratio: float = 0.7


@dataclass
class ValidatorConfig:
    """Response validation settings."""

    paragraph_policy: str = "strict"
    min_paragraph_length: int = 50
    max_response_chars: int = 20_000
    unverified_claims_threshold: int = 2
    unverified_claims_threshold_sensitive: int = 1


@dataclass
class AssistantConfig:
    """Top-level configuration passed to the orchestrator and gateway."""

    model: str = DEFAULT_MODEL
    provider: str = "openai"
    stream_mode: str = "buffered"
    db_path: Path = DEFAULT_DB_PATH
    limits: RequestLimits = field(default_factory=RequestLimits)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    validator: ValidatorConfig = field(default_factory=ValidatorConfig)

    def __post_init__(self):
        if self.stream_mode not in STREAM_MODES:
            raise ValueError(
                f"stream_mode must be one of {STREAM_MODES} (got {self.stream_mode!r})"
            )
        if self.validator.paragraph_policy not in PARAGRAPH_POLICIES:
            raise ValueError(
                f"paragraph_policy must be one of {PARAGRAPH_POLICIES} "
                f"(got {self.validator.paragraph_policy!r})"
            )

    @classmethod
    def from_env(cls) -> "AssistantConfig":
        """Build a config from environment variables over the defaults."""
        validator = ValidatorConfig(
            paragraph_policy=os.environ.get(
                "FIELD_ASSISTANT_PARAGRAPH_POLICY", "strict"
            ).strip().lower()
        )
        config = cls(
            model=os.environ.get("FIELD_ASSISTANT_MODEL", DEFAULT_MODEL),
            provider=os.environ.get("LLM_PROVIDER", "openai").strip().lower(),
            stream_mode=os.environ.get(
                "FIELD_ASSISTANT_STREAM_MODE", "buffered"
            ).strip().lower(),
            db_path=Path(
                os.environ.get("FIELD_ASSISTANT_DB_PATH", str(DEFAULT_DB_PATH))
            ),
            validator=validator,
        )
        logger.debug(
            f"[Config] model={config.model} provider={config.provider} "
            f"stream_mode={config.stream_mode} "
            f"paragraph_policy={validator.paragraph_policy}"
        )
        return config
