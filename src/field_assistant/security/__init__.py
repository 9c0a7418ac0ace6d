"""Security utilities -- prompt injection detection, document sanitizing, input validation."""
from .prompt_guard import (
    InjectionResult,
    detect_injection,
    detect_injection_attempt,
    sanitize_for_prompt,
    wrap_user_content,
)
from .sanitizer import REDACTION_MARKER, SanitizedText, sanitize_document_text
from .validators import (
    ValidationError,
    serialized_size,
    validate_image_data_url,
    validate_url,
)
