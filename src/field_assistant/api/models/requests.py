"""
Pydantic request models -- the field-assistant API contract.

  POST /api/v1/field-assistant -> FieldAssistantRequest

The context object is a closed struct: unknown keys are rejected rather
than silently forwarded into the system prompt. Keys use the client's
camelCase names (codeReferenceEnabled, diagnosticData, conversationId).

parse_field_assistant_request() runs the structural checks in a fixed
order so each failure maps to one stable error message:

  Invalid messages format  -> messages missing, empty or not a list
  Too many messages        -> more than RequestLimits.max_messages
  Context too large        -> serialized context over max_context_size
  Invalid message structure-> anything the pydantic models reject
  Message too long         -> a text part over max_message_length
  Too many images          -> more than max_images_per_message image parts
  Image too large          -> an inline image payload over max_image_size_bytes
"""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from ...config import RequestLimits
from ...errors import InputRejected
from ...security.validators import (
    ValidationError,
    serialized_size,
    validate_image_data_url,
)

Industry = Literal[
    "hvac",
    "plumbing",
    "electrical",
    "mechanical",
    "elevator",
    "home_automation",
    "general",
]


class ClosedModel(BaseModel):
    """Base for request structs: unknown keys are an error."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


# =============================================================================
# MESSAGES
# =============================================================================


class TextPart(ClosedModel):
    type: Literal["text"]
    text: str


class ImageUrl(ClosedModel):
    url: str


class ImagePart(ClosedModel):
    type: Literal["image_url"]
    image_url: ImageUrl


ContentPart = Annotated[TextPart | ImagePart, Field(discriminator="type")]


class ChatMessage(ClosedModel):
    """One conversation turn. Content is plain text or ordered parts."""

    role: Literal["user", "assistant"]
    content: str | list[ContentPart]

    def text_parts(self) -> list[str]:
        if isinstance(self.content, str):
            return [self.content]
        return [p.text for p in self.content if p.type == "text"]

    def image_urls(self) -> list[str]:
        if isinstance(self.content, str):
            return []
        return [p.image_url.url for p in self.content if p.type == "image_url"]

    def as_model_message(self) -> dict:
        """OpenAI-style message dict for the model client."""
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [p.model_dump() for p in self.content]}


# =============================================================================
# CONTEXT
# =============================================================================


class JobContext(ClosedModel):
    id: str | None = None
    title: str | None = None
    job_type: str | None = None
    current_stage: str | None = None
    priority: str | None = None
    description: str | None = None
    address: str | None = None


class EquipmentContext(ClosedModel):
    id: str | None = None
    equipment_type: str | None = None
    brand: str | None = None
    model: str | None = None
    serial_number: str | None = None
    install_date: str | None = None
    warranty_expiry: str | None = None
    location_notes: str | None = None


class ClientContext(ClosedModel):
    id: str | None = None
    name: str | None = None
    notes: str | None = None


class DocumentReference(ClosedModel):
    """A document the client attached to this conversation."""

    name: str
    category: str | None = None
    description: str | None = None
    content: str | None = None


class DiagnosticAnswer(ClosedModel):
    question: str
    answer: str


class DiagnosticData(ClosedModel):
    """Answers collected by the guided diagnostic wizard."""

    symptom: str | None = None
    answers: list[DiagnosticAnswer] = Field(default_factory=list)
    outcome: str | None = None


class AssistantContext(ClosedModel):
    """What the technician is looking at: industry, job, equipment, client."""

    industry: Industry = "general"
    code_reference_enabled: bool = Field(False, alias="codeReferenceEnabled")
    country: str = "US"
    job: JobContext | None = None
    equipment: EquipmentContext | None = None
    client: ClientContext | None = None
    documents: list[DocumentReference] | None = None
    diagnostic_data: DiagnosticData | None = Field(None, alias="diagnosticData")

    @property
    def context_type(self) -> str:
        if self.job is not None:
            return "job"
        if self.equipment is not None:
            return "equipment"
        return "general"

    @property
    def context_id(self) -> str | None:
        if self.job is not None:
            return self.job.id
        if self.equipment is not None:
            return self.equipment.id
        return None


class FieldAssistantRequest(ClosedModel):
    """Body of POST /api/v1/field-assistant."""

    messages: list[ChatMessage]
    context: AssistantContext = Field(default_factory=AssistantContext)
    conversation_id: str | None = Field(None, alias="conversationId")


# =============================================================================
# STRUCTURAL VALIDATION
# =============================================================================


def parse_field_assistant_request(
    payload: object, limits: RequestLimits | None = None
) -> FieldAssistantRequest:
    """
    Validate a raw JSON body and build the request model.

    Raises:
        InputRejected: with one of the messages listed in the module docstring.
    """
    limits = limits or RequestLimits()
    if not isinstance(payload, dict):
        raise InputRejected("Invalid messages format")

    messages = payload.get("messages")
    if not isinstance(messages, list) or not messages:
        raise InputRejected("Invalid messages format")
    if len(messages) > limits.max_messages:
        raise InputRejected("Too many messages")

    context = payload.get("context")
    if context is None:
        payload = {k: v for k, v in payload.items() if k != "context"}
    else:
        if not isinstance(context, dict):
            raise InputRejected("Invalid message structure")
        if serialized_size(context) > limits.max_context_size:
            raise InputRejected("Context too large")

    try:
        request = FieldAssistantRequest.model_validate(payload)
    except PydanticValidationError as e:
        raise InputRejected("Invalid message structure") from e

    for message in request.messages:
        if any(len(text) > limits.max_message_length for text in message.text_parts()):
            raise InputRejected("Message too long")
        images = message.image_urls()
        if len(images) > limits.max_images_per_message:
            raise InputRejected("Too many images")
        for url in images:
            try:
                validate_image_data_url(url, limits.max_image_size_bytes)
            except ValidationError as e:
                raise InputRejected(str(e)) from e

    return request
