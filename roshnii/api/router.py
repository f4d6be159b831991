from fastapi import APIRouter

from roshnii.api.albums import router as albums_router
from roshnii.api.auth import router as auth_router
from roshnii.api.health import router as health_router
from roshnii.api.images import router as images_router
from roshnii.api.users import router as users_router

api_router = APIRouter()

# Include sub-routers
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router)
api_router.include_router(users_router)
api_router.include_router(images_router)
api_router.include_router(albums_router)
