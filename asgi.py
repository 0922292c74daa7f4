"""
asgi.py -- ASGI entry point for the SendRec identity service.

Run with:  uvicorn asgi:app --reload

api/main.py owns the application and its wiring. This module is the stable
import path process managers point at.
"""

from api.main import app

__all__ = ["app"]
