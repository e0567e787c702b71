"""
External service clients for LicenseIQ.
"""

from licenseiq.services.llm_service import LLMService, get_llm_service

__all__ = [
    "LLMService",
    "get_llm_service",
]
