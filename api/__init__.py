"""
FastAPI RESTful API for the Book Catalog.

This module provides the HTTP surface for:
- Account registration and bearer-token login
- Owner-scoped book records
- Cover image upload, replacement and removal
"""
