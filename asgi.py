"""
asgi.py -- Application assembly for the catalog.

This is the ONLY file that imports from both api/ and web/. It joins the JSON
API and the server-rendered pages into a single ASGI app.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import router as web_router

app.include_router(web_router, tags=["Web UI"])
