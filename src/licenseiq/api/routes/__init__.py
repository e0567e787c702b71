"""
API route modules.
"""

from licenseiq.api.routes import rules, term_mappings, terms

__all__ = ["rules", "term_mappings", "terms"]
