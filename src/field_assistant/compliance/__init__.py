"""Code-compliance query detection for code-reference mode."""
from .code_detection import (
    CodeComplianceDetection,
    code_compliance_active,
    detect_code_compliance_query,
)
