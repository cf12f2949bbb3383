"""
asgi.py -- Application assembly for TeamGate.

The ASGI server imports the app from here so deployment config never needs
to know the package layout. Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
