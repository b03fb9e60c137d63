"""API routes."""

from fastapi import APIRouter

from productgen.api.routes import generate, health, products, queues, settings

api_router = APIRouter()

api_router.include_router(health.router, tags=["Health"])
api_router.include_router(products.router, prefix="/products", tags=["Products"])
api_router.include_router(queues.router, prefix="/queues", tags=["Generation Queues"])
api_router.include_router(generate.router, prefix="/generate", tags=["Generation"])
api_router.include_router(settings.router, prefix="/settings", tags=["Settings"])
