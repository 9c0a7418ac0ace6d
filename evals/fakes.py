"""Test doubles and sample data shared by the eval tasks."""

import asyncio

from field_assistant.api.models.requests import parse_field_assistant_request
from field_assistant.retrieval.models import RetrievedChunk

TENANT_ID = "tenant-1"
API_KEY = "test-key-123"
MANUAL_NAME = "Rooftop Unit Service Manual"

CHARGING_TEXT = (
    "Charging procedure for the rooftop unit. Suction pressure at design "
    "conditions should read 118 psi with the outdoor coil clean and the "
    "indoor airflow verified. Compare superheat against the charging chart "
    "mounted inside the compressor access panel before adjusting the charge."
)
AIRFLOW_TEXT = (
    "Indoor blower setup. Set the blower tap so the external static pressure "
    "stays within the rated range printed on the nameplate. Replace filters "
    "before taking readings and confirm every supply register is open while "
    "the unit runs in continuous fan mode for at least five minutes."
)
CITED_ANSWER = [
    "Suction pressure should read 118 psi at design conditions ",
    f"[Source: {MANUAL_NAME}].",
]


class FakeModelClient:
    """Streams configured deltas and records every call."""

    model = "fake-model"

    def __init__(self, deltas=None, error=None, hang=False):
        self.deltas = list(deltas or [])
        self.error = error
        self.hang = hang
        self.calls = []

    async def stream_chat(self, messages, params):
        self.calls.append((messages, params))
        for delta in self.deltas:
            yield delta
        if self.hang:
            await asyncio.sleep(3600)
        if self.error is not None:
            raise self.error


class FailingAuditStore:
    """Audit sink that always fails."""

    def __init__(self):
        self.attempts = 0

    def write(self, record):
        self.attempts += 1
        raise RuntimeError("disk full")


def make_chunk(chunk_id, similarity, text=CHARGING_TEXT, document_name=MANUAL_NAME):
    return RetrievedChunk(
        id=chunk_id,
        chunk_text=text,
        similarity=similarity,
        document_name=document_name,
        document_category="Manual",
    )


def make_request(text, context=None, **extra):
    payload = {"messages": [{"role": "user", "content": text}], **extra}
    if context is not None:
        payload["context"] = context
    return parse_field_assistant_request(payload)
