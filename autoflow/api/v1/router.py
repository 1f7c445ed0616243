"""
API v1 Router
"""

from fastapi import APIRouter

from autoflow.api.v1.endpoints import integrations, nodes

api_router = APIRouter()

api_router.include_router(nodes.router, prefix="/nodes", tags=["Nodes"])
api_router.include_router(integrations.router, prefix="/integrations", tags=["Integrations"])
