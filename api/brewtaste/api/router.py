"""API router composition for all route groups."""

from fastapi import APIRouter

from .routes import ops, taste_profiles

api_router = APIRouter()
api_router.include_router(taste_profiles.router, prefix="/taste-profiles", tags=["taste-profiles"])
api_router.include_router(ops.router, prefix="/ops", tags=["ops"])
