# backend/studiobook/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import bookings, payments, services

__all__ = [
    "bookings",
    "payments",
    "services",
]
