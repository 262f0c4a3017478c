import json
from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class NodeType(str, Enum):
    DECISION = "decision"
    ANSWER = "answer"


class CamelModel(BaseModel):
    """Entities travel as camelCase JSON but are addressed in snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Tree(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    is_active: bool = True
    created_by: str
    created_at: datetime
    updated_at: datetime


class TreeNode(CamelModel):
    id: str
    tree_id: str
    node_type: NodeType
    title: str
    content: Optional[str] = None
    parent_node_id: Optional[str] = None
    order_index: int = 0
    created_at: datetime
    updated_at: datetime

    @property
    def is_answer(self) -> bool:
        return self.node_type == NodeType.ANSWER


class NodeOption(CamelModel):
    id: str
    node_id: str
    label: str
    # Weak edge: cleared, never cascaded, when the target node goes away
    next_node_id: Optional[str] = None
    order_index: int = 0
    created_at: datetime


class EditToken(CamelModel):
    id: str
    token_hash: str
    tree_id: str
    created_by: str
    expires_at: datetime
    created_at: datetime
    # Only known right after issuing; the store keeps the digest
    token: Optional[str] = None

    def is_valid_at(self, now: datetime) -> bool:
        return self.expires_at > now


class NavigationContext(CamelModel):
    """Where a modal sits in the editing stack, carried in private_metadata."""
    tree_id: str
    node_id: Optional[str] = None
    option_id: Optional[str] = None
    current_node_id: Optional[str] = None

    def to_metadata(self) -> str:
        return json.dumps(self.model_dump(by_alias=True, exclude_none=True))

    @classmethod
    def from_metadata(cls, raw: Optional[str]) -> Optional["NavigationContext"]:
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict) or "treeId" not in data:
            return None
        return cls.model_validate(data)


class RenderedView(BaseModel):
    node_id: str
    node_type: NodeType
    title: str
    blocks: List[Dict[str, Any]] = []

    @property
    def terminal(self) -> bool:
        return self.node_type == NodeType.ANSWER
