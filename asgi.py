"""
asgi.py -- ASGI entry point for the device discovery API.

Kept separate from api/main.py so process managers have one stable import
path, whatever the api/ package grows into.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --workers 1
"""

from api.main import app

__all__ = ["app"]
