"""
Workflow Node Schemas

Pydantic models describing node slots and config fields. The same objects
are exported to the UI and consumed by the config validator.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class NodeKind(str, Enum):
    """Role of a node in a workflow graph."""
    TRIGGER = "trigger"
    ACTION = "action"
    TRANSFORM = "transform"


class NodeCategory(str, Enum):
    """Node categories for workflow organization"""
    TRIGGERS = "triggers"
    COMMUNICATION = "communication"
    PRODUCTIVITY = "productivity"
    PAYMENTS = "payments"
    AI = "ai"
    TRANSFORMS = "transforms"
    UTILITIES = "utilities"
    FILES = "files"
    DATABASE = "database"


class PortType(str, Enum):
    """Data carried by an input or output slot."""
    UNIVERSAL = "universal"  # General data (JSON, text, numbers, mixed)
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    FILE = "file"
    IMAGE = "image"
    AUDIO = "audio"


class FieldType(str, Enum):
    """Config field value types."""
    STRING = "string"
    TEXT = "text"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    SELECT = "select"
    JSON = "json"
    ARRAY = "array"
    EMAIL = "email"
    URL = "url"
    DATETIME = "datetime"
    PASSWORD = "password"


class NodePort(BaseModel):
    """Input or output slot of a node."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Slot identifier (e.g., 'data', 'message_id')")
    type: PortType = Field(default=PortType.UNIVERSAL, description="Slot type")
    display_name: Optional[str] = Field(default=None, description="Human-readable name (falls back to name)")
    description: str = Field(default="", description="Slot description")


class ConfigField(BaseModel):
    """One entry of a node's config schema."""
    model_config = ConfigDict(frozen=True)

    type: FieldType = FieldType.STRING
    label: str
    description: str = ""
    required: bool = False
    default: Any = None
    options: Optional[List[Any]] = None
    placeholder: Optional[str] = None
    widget: Optional[str] = None

    def to_schema(self) -> Dict[str, Any]:
        """Export for the UI (None-valued keys omitted)."""
        return self.model_dump(mode="json", exclude_none=True)


class ExecuteNodeRequest(BaseModel):
    """Body of POST /nodes/{node_id}/execute."""
    config: Dict[str, Any] = Field(default_factory=dict)
    input_data: Any = Field(default_factory=dict, description="Previous node's output (any JSON value)")
    timeout: Optional[float] = Field(default=None, gt=0, description="Seconds; defaults to the server setting")
