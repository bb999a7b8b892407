"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from taskdeck.api.v1.health import router as health_router
from taskdeck.api.v1.tasks import router as tasks_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(tasks_router, tags=["tasks"])
