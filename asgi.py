"""
asgi.py -- Application assembly for TaskFlow Auth.

The import target for ASGI servers. api/main.py builds the app; this module
only re-exports it so deployment configuration does not depend on package
layout.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
