"""
asgi.py -- ASGI entry point for GameVault.

uvicorn imports the app from here so deployment config never has to know
the internal package layout.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
