"""
LicenseIQ: royalty rule synthesis for license contracts.

Turns entities extracted from contracts into FormulaNode royalty rules via an
LLM, enriches them with confirmed ERP term mappings, and stores them as rule
definitions.
"""

__version__ = "0.1.0"
__author__ = "LicenseIQ Team"

from licenseiq.config import get_settings

__all__ = ["get_settings", "__version__"]
