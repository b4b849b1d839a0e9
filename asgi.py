"""
asgi.py -- Application assembly for authgate.

The ASGI servers point here rather than at api/main.py so the import path
stays stable if further routers are mounted alongside the auth API.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
