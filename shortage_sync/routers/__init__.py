"""
API routers package
"""

from shortage_sync.routers.admin import router as admin_router
