"""
API router configuration.
"""
from fastapi import APIRouter

from instivault.api.endpoints import auth, documents, health, institute, user

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(health.router, tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(institute.router, prefix="/dashboard/institute", tags=["institute-dashboard"])
api_router.include_router(user.router, prefix="/dashboard/user", tags=["user-dashboard"])
api_router.include_router(documents.router, prefix="/documents", tags=["documents"])
