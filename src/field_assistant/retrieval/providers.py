"""
Retrieval collaborators -- semantic search and the tenant document registry.

Both are consumed through Protocols so the vector index and document store
stay outside this package:

  RetrievalProvider.search(tenant_id, query, top_k, threshold) -> chunks
  DocumentRegistry.list_documents(tenant_id) -> documents

Implementations:
  InMemoryDocumentRegistry  -- documents held per tenant (tests, CLI, demos)
  StaticRetrievalProvider   -- preloaded chunks, filtered by threshold
  HttpRetrievalProvider     -- POST {base_url}/search on a vector-search service
  HttpDocumentRegistry      -- GET {base_url}/documents on the same service

Every chunk coming back from a remote service is size-limited here; the
sanitizer runs later in the orchestrator.
"""

import logging
from typing import Protocol, runtime_checkable

import httpx

from ..security.prompt_guard import sanitize_for_prompt
from ..security.validators import validate_url
from .models import RetrievedChunk, TenantDocument

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15
MAX_RESPONSE_BYTES = 5_000_000
MAX_CHUNK_LENGTH = 20_000
MAX_CHUNKS = 100
MAX_DOCUMENT_LENGTH = 200_000


@runtime_checkable
class RetrievalProvider(Protocol):
    """Returns chunks ranked by similarity to the query."""

    async def search(
        self, tenant_id: str, query: str, top_k: int, threshold: float
    ) -> list[RetrievedChunk]: ...


@runtime_checkable
class DocumentRegistry(Protocol):
    """Lists the documents a tenant has uploaded."""

    async def list_documents(self, tenant_id: str) -> list[TenantDocument]: ...


class InMemoryDocumentRegistry:
    """
    Tenant documents held in a dict.

    Usage:
        registry = InMemoryDocumentRegistry({
            "tenant-1": [TenantDocument(name="Service Manual", has_embeddings=True)],
        })
    """

    def __init__(self, documents: dict[str, list[TenantDocument]] | None = None):
        self._documents = documents or {}

    def add(self, tenant_id: str, document: TenantDocument) -> None:
        self._documents.setdefault(tenant_id, []).append(document)

    async def list_documents(self, tenant_id: str) -> list[TenantDocument]:
        return list(self._documents.get(tenant_id, []))


class StaticRetrievalProvider:
    """Returns a fixed set of chunks per tenant, honoring top_k and threshold."""

    def __init__(self, chunks: dict[str, list[RetrievedChunk]] | None = None):
        self._chunks = chunks or {}
        self.queries: list[str] = []

    async def search(
        self, tenant_id: str, query: str, top_k: int, threshold: float
    ) -> list[RetrievedChunk]:
        self.queries.append(query)
        matches = [c for c in self._chunks.get(tenant_id, []) if c.similarity >= threshold]
        matches.sort(key=lambda c: c.similarity, reverse=True)
        return matches[:top_k]


async def _send(
    method: str,
    url: str,
    headers: dict[str, str],
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
    **kwargs,
) -> httpx.Response:
    """One HTTP call with failures mapped to ConnectionError. No retries."""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.request(method, url, headers=headers, **kwargs)
            response.raise_for_status()
    except httpx.TimeoutException as e:
        logger.warning(f"[Retrieval] Timeout calling {url}")
        raise ConnectionError(f"Request to {url} timed out: {e}") from e
    except httpx.HTTPStatusError as e:
        logger.error(
            f"[Retrieval] HTTP {e.response.status_code} from {url}: "
            f"{e.response.text[:200]}"
        )
        raise ConnectionError(
            f"Request to {url} failed with HTTP {e.response.status_code}"
        ) from e
    except httpx.HTTPError as e:
        logger.error(f"[Retrieval] Request to {url} failed: {e}")
        raise ConnectionError(f"Request to {url} failed: {e}") from e

    if len(response.content) > MAX_RESPONSE_BYTES:
        raise ConnectionError(f"Response from {url} exceeds {MAX_RESPONSE_BYTES} byte limit")
    return response


def _decode_items(response: httpx.Response, key: str, to_item) -> list:
    """Decode {key: [...]} and map each entry; a malformed body is a ConnectionError."""
    try:
        items = response.json().get(key, [])
        if not isinstance(items, list):
            raise TypeError(f"'{key}' is {type(items).__name__}, expected list")
        return [to_item(item) for item in items]
    except (ValueError, TypeError, AttributeError) as e:
        logger.error(f"[Retrieval] Malformed response from {response.request.url}: {e}")
        raise ConnectionError(f"Malformed response from {response.request.url}: {e}") from e


class _HttpCollaborator:
    """Shared base URL validation and auth headers."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        allow_private: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = validate_url(
            base_url, field_name="retrieval base_url", allow_private=allow_private
        ).rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        """Build request headers including auth if configured."""
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers


class HttpRetrievalProvider(_HttpCollaborator):
    """
    Adapter: wraps a remote vector-search endpoint as a RetrievalProvider.

    Contract:
      POST {base_url}/search
        {"tenant_id", "query", "match_count", "match_threshold"}
      -> {"results": [{"id", "chunk_text", "similarity",
                       "document_name", "document_category"}]}

    Failures raise ConnectionError; the caller decides whether to continue
    without retrieved evidence.
    """

    async def search(
        self, tenant_id: str, query: str, top_k: int, threshold: float
    ) -> list[RetrievedChunk]:
        payload = {
            "tenant_id": tenant_id,
            "query": query,
            "match_count": top_k,
            "match_threshold": threshold,
        }
        response = await _send(
            "POST",
            f"{self._base_url}/search",
            self._headers(),
            self._timeout,
            transport=self._transport,
            json=payload,
        )
        return _decode_items(response, "results", self._to_chunk)[:MAX_CHUNKS]

    @staticmethod
    def _to_chunk(item: dict) -> RetrievedChunk:
        return RetrievedChunk(
            id=str(item.get("id", "")),
            chunk_text=sanitize_for_prompt(
                str(item.get("chunk_text", "")), max_length=MAX_CHUNK_LENGTH
            ),
            similarity=min(max(float(item.get("similarity", 0.0)), 0.0), 1.0),
            document_name=str(item.get("document_name", "")),
            document_category=str(item.get("document_category") or "General"),
        )


class HttpDocumentRegistry(_HttpCollaborator):
    """
    Adapter: lists tenant documents from the same service.

    Contract:
      GET {base_url}/documents?tenant_id=...
      -> {"documents": [{"name", "category", "description",
                         "extracted_text", "has_embeddings"}]}
    """

    async def list_documents(self, tenant_id: str) -> list[TenantDocument]:
        response = await _send(
            "GET",
            f"{self._base_url}/documents",
            self._headers(),
            self._timeout,
            transport=self._transport,
            params={"tenant_id": tenant_id},
        )
        return _decode_items(response, "documents", self._to_document)

    @staticmethod
    def _to_document(item: dict) -> TenantDocument:
        return TenantDocument(
            name=str(item.get("name", "")),
            category=str(item.get("category") or "General"),
            description=str(item.get("description") or ""),
            extracted_text=sanitize_for_prompt(
                str(item.get("extracted_text") or ""), max_length=MAX_DOCUMENT_LENGTH
            ),
            has_embeddings=bool(item.get("has_embeddings", False)),
        )
