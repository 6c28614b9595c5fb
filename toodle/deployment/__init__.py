"""
deployment/ - HTTP deployment of the linking service.
"""

from .api import create_fastapi_app

__all__ = [
    "create_fastapi_app",
]
