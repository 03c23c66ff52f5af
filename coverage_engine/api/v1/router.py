from fastapi import APIRouter

from coverage_engine.api.v1.endpoints import changes, coverage_attributes

# Create API router
api_router = APIRouter()

# Include routers
api_router.include_router(coverage_attributes.router, prefix="/products", tags=["Coverage Attributes"])
api_router.include_router(changes.router, prefix="/changes", tags=["Changes"])

__all__ = ["api_router"]
