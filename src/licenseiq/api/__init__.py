"""
FastAPI application and routes for LicenseIQ.
"""
