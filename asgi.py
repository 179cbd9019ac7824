"""
asgi.py -- ASGI entry point for CareGate.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so process managers (uvicorn, gunicorn) have a
stable import path regardless of how the api/ package is organised.
"""

from api.main import app

__all__ = ["app"]
