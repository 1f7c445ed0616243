"""
Node Catalogue & Execution Endpoints

GET  /nodes                 - Catalogue (config schema included)
GET  /nodes/{node_id}       - One node
POST /nodes/{node_id}/execute - Run one node as the calling user
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from autoflow.api.deps import get_current_user_id, get_dispatcher, get_registry
from autoflow.core.execution.dispatcher import ExecutionDispatcher
from autoflow.core.nodes.registry import NodeRegistry
from autoflow.schemas.workflow import ExecuteNodeRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", summary="List node catalogue")
async def list_nodes(
    category: Optional[str] = Query(None, description="Only nodes of this category"),
    registry: NodeRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """
    List every registered node with its ports and config schema.

    The config schema is the same object the dispatcher validates against.
    """
    nodes = registry.describe()
    if category:
        nodes = [node for node in nodes if node["category"] == category]
    return {
        "nodes": nodes,
        "total": len(nodes),
        "categories": registry.list_by_category(),
    }


@router.get("/{node_id}", summary="Get node definition")
async def get_node(node_id: str, registry: NodeRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """
    Raises:
        HTTPException 404: Unknown node id
    """
    if node_id not in registry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown node: {node_id}")
    return registry.describe(node_id)


@router.post("/{node_id}/execute", summary="Execute one node")
async def execute_node(
    node_id: str,
    request: ExecuteNodeRequest,
    user_id: str = Depends(get_current_user_id),
    dispatcher: ExecutionDispatcher = Depends(get_dispatcher),
) -> Dict[str, Any]:
    """
    Execute a node with the caller's credentials.

    Node failures are part of the result (success=false with a classified
    error), not HTTP errors.
    """
    result = await dispatcher.execute(
        node_id,
        request.config,
        request.input_data,
        user_id,
        timeout=request.timeout,
    )
    return result.to_dict()
