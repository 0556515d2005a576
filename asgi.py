"""
asgi.py -- ASGI entry point for Nemesis.

Kept separate from api/main.py so process managers have a stable import
path (asgi:app) regardless of how the api package is organised.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
