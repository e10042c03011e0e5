"""
Middleware modules for FastAPI request processing.

This package contains:
- Request logging with request-ID propagation
- Bearer identity verification dependencies
"""
