"""
API module for VisionWorker.

Provides:
- FastAPI server with read-only diagnostics endpoints
"""

from .server import create_app, start_server

__all__ = ["create_app", "start_server"]
