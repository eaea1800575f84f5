"""
asgi.py -- Process entry point for the Recipe Shelf API server.

The only place the web server gets its app from. Settings are read from the
environment (and .env) exactly once, here, and handed to the app factory.

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app
from core.config import get_settings

app = create_app(get_settings())
