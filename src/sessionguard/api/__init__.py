"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Health and the auth router are mounted open; individual auth
routes that need a caller identity declare Depends(get_current_user)
themselves, since login/refresh/register must work without one.
"""

from fastapi import APIRouter

from sessionguard.api.auth import router as auth_router
from sessionguard.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
