"""
Request orchestration.

FieldAssistantOrchestrator sequences the guardrail pipeline (injection scan,
retrieval, gate, deterministic model call, enforcement, audit) for each
field-assistant request. prompts.build_system_prompt() assembles the
system prompt from the request context and the gated evidence.
"""
from .field_assistant import (
    FieldAssistantOrchestrator,
    PipelineRun,
    PipelineState,
    ResponseMetadata,
    StreamEvent,
)
from .prompts import build_system_prompt
