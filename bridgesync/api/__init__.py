"""
API endpoints for the bridgesync system.
"""

from .main import create_app
from .appservice import appservice_router
from .admin import admin_router

__all__ = ["create_app", "appservice_router", "admin_router"]
