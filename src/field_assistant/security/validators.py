"""
Input Validators - Size and URL checks for input at system boundaries.

Parse at the boundary: validate and type-check all external input
before it enters the pipeline. Structural limits (message count, text
length, image count and size, context size) are enforced here so an
oversized request never reaches retrieval or the model.
"""

import ipaddress
import json
import logging
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

ALLOWED_URL_SCHEMES = {"http", "https"}
BLOCKED_HOSTNAMES = {"localhost", "metadata.google.internal"}


class ValidationError(ValueError):
    """Raised when input validation fails. Contains a user-friendly message."""

    pass


def serialized_size(data: dict) -> int:
    """Length of the JSON serialization, as the client sent it."""
    return len(json.dumps(data, default=str, ensure_ascii=False))


def validate_image_data_url(url: str, max_size_bytes: int) -> str:
    """
    Validate an image_url value.

    Inline data URLs (data:image/...;base64,...) are capped on the size of
    the encoded payload. Remote URLs are passed through untouched.
    """
    if not isinstance(url, str) or not url:
        raise ValidationError("Image URL must be a non-empty string")
    if url.startswith("data:image/"):
        _, _, payload = url.partition(",")
        if len(payload) > max_size_bytes:
            raise ValidationError(
                f"Image too large (max {max_size_bytes // (1024 * 1024)}MB per image)"
            )
    return url


def _is_private_ip(hostname: str) -> bool:
    """Check if a hostname is a private/loopback IP address."""
    try:
        addr = ipaddress.ip_address(hostname)
        return addr.is_private or addr.is_loopback or addr.is_link_local
    except ValueError:
        return False


def validate_url(
    url: str,
    field_name: str = "url",
    allow_private: bool = False,
) -> str:
    """
    Validate a URL for safe outbound requests (anti-SSRF).

    Blocks non-http(s) schemes, private and link-local addresses, and known
    metadata hostnames unless allow_private is set (local development, or a
    retrieval service on the private network).

    Raises:
        ValidationError: If the URL is unsafe.
    """
    if not url or not url.strip():
        raise ValidationError(f"{field_name} cannot be empty")

    parsed = urlparse(url.strip())

    if parsed.scheme not in ALLOWED_URL_SCHEMES:
        raise ValidationError(
            f"{field_name} must use http or https (got '{parsed.scheme}')"
        )

    hostname = parsed.hostname
    if not hostname:
        raise ValidationError(f"{field_name} must include a hostname")

    hostname_lower = hostname.lower()
    if not allow_private:
        if hostname_lower in BLOCKED_HOSTNAMES:
            raise ValidationError(f"{field_name} cannot point to {hostname_lower}")
        if _is_private_ip(hostname) or hostname_lower.endswith(".internal"):
            raise ValidationError(
                f"{field_name} cannot point to private/internal addresses"
            )

    logger.debug(f"[Validators] URL validated: {parsed.scheme}://{hostname}")
    return url.strip()
