"""
asgi.py -- ASGI entry point for authgate.

Run with:  uvicorn asgi:app
           python main.py run
"""

from api.main import app

__all__ = ["app"]
