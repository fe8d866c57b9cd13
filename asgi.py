"""
asgi.py -- ASGI entry point for the auth service.

Run with:  uvicorn asgi:app --host 127.0.0.1 --port 3004

Kept separate from api/main.py so process managers and tests import the
same name regardless of how the app module is organised internally.
"""

from api.main import app

__all__ = ["app"]
