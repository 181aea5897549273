"""
Session management API: the httpx client used by the app endpoint and a
FastAPI development service that stands in for the production backend.
"""

from __future__ import annotations

from .client import SessionApiClient

__all__ = ["SessionApiClient"]
