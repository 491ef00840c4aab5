"""API routes for the FastAPI application."""

from fastapi import APIRouter

from meterline.api.v1.endpoints import credits, entitlements, health, jobs, usage

api_router = APIRouter()
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(usage.router, prefix="/usage", tags=["usage"])
api_router.include_router(entitlements.router, prefix="/entitlements", tags=["entitlements"])
api_router.include_router(credits.router, prefix="/credits", tags=["credits"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
