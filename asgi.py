"""
asgi.py -- ASGI entry point for Gatehouse.

Run with:  uvicorn asgi:app --reload

api/main.py builds the app; this module is what process managers import, so
deployment config never has to name an inner package.
"""

from api.main import app

__all__ = ["app"]
