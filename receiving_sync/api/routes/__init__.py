"""API routes."""

from fastapi import APIRouter

from receiving_sync.api.routes import manifests, received_items, shipments

api_router = APIRouter()

api_router.include_router(shipments.router, prefix="/shipments", tags=["shipments"])
api_router.include_router(received_items.router, prefix="/shipments", tags=["received-items"])
api_router.include_router(manifests.router, prefix="/manifests", tags=["manifests"])
