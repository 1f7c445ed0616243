"""
Node Loader - Discovery and Registry Build

Imports every module under autoflow.core.nodes.builtin so their
@register_node declarations run, then freezes them into a NodeRegistry.
"""

import importlib
import logging
import pkgutil
from typing import Any, Dict

from autoflow.core.nodes.registry import NodeRegistry, declared_nodes

logger = logging.getLogger(__name__)

BUILTIN_PACKAGE = "autoflow.core.nodes.builtin"


def discover_nodes(package_name: str = BUILTIN_PACKAGE) -> Dict[str, Any]:
    """
    Import all node modules in a package.

    Returns:
        Dict with discovery statistics

    Raises:
        ImportError: If a node module fails to import (startup error)
    """
    logger.info("🔍 Starting node discovery...")
    stats: Dict[str, Any] = {"modules_scanned": 0, "modules": []}

    package = importlib.import_module(package_name)
    for module_info in pkgutil.walk_packages(path=package.__path__, prefix=f"{package_name}."):
        module_name = module_info.name
        if module_name.rsplit(".", 1)[-1].startswith("_"):
            continue
        try:
            importlib.import_module(module_name)
        except Exception as e:
            logger.error(f"❌ Error loading node module {module_name}: {e}", exc_info=True)
            raise
        stats["modules_scanned"] += 1
        stats["modules"].append(module_name)

    stats["nodes_declared"] = len(declared_nodes())
    logger.info(
        f"✅ Node discovery complete: {stats['modules_scanned']} modules, "
        f"{stats['nodes_declared']} nodes declared"
    )
    return stats


def build_registry(package_name: str = BUILTIN_PACKAGE) -> NodeRegistry:
    """Discover builtin nodes and freeze them into a registry."""
    discover_nodes(package_name)
    return NodeRegistry.from_declarations()
