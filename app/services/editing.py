import logging
from typing import Optional, Tuple

from app.core.errors import NodeMissing, NotFound, OptionNotFound, ValidationError
from app.db.store import GraphStore
from app.models.decision_tree import NavigationContext, NodeOption, NodeType, Tree, TreeNode

logger = logging.getLogger(__name__)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _required(value: Optional[str], field: str, message: str) -> str:
    value = _clean(value)
    if not value:
        raise ValidationError(message, field=field)
    return value


def _node_type(value) -> NodeType:
    try:
        return NodeType(value)
    except ValueError:
        raise ValidationError("Node type must be 'decision' or 'answer'", field="node_type")


class TreeEditingService:
    """Commands shared by the Slack modals and the browser editor.

    ``scope_tree_id`` is passed by the token surface: any entity outside that
    tree is reported as missing, exactly like an entity that does not exist.
    Every command re-reads what it touches right before writing, since another
    surface may have changed it in the meantime.
    """

    def __init__(self, store: GraphStore):
        self.store = store

    def _owned_node(self, node_id: str, scope_tree_id: Optional[str]) -> TreeNode:
        node = self.store.get_node(node_id) if node_id else None
        if not node or (scope_tree_id and node.tree_id != scope_tree_id):
            raise NodeMissing(node_id)
        return node

    def _owned_option(self, option_id: str, scope_tree_id: Optional[str]) -> Tuple[NodeOption, TreeNode]:
        option = self.store.get_option(option_id) if option_id else None
        if not option:
            raise OptionNotFound(option_id)
        node = self.store.get_node(option.node_id)
        if not node or (scope_tree_id and node.tree_id != scope_tree_id):
            raise OptionNotFound(option_id)
        return option, node

    def _target(self, next_node_id: Optional[str], tree_id: str) -> Optional[str]:
        next_node_id = _clean(next_node_id)
        if not next_node_id:
            return None
        target = self.store.get_node(next_node_id)
        if not target or target.tree_id != tree_id:
            raise NodeMissing(next_node_id)
        return target.id

    # Trees

    def create_tree(self, name: Optional[str], description: Optional[str], actor: str) -> Tree:
        name = _required(name, "name", "Name is required")
        tree = self.store.create_tree(name, _clean(description), actor)
        logger.info(f"Tree {tree.id} created by {actor}")
        return tree

    def update_tree_info(self, tree_id: str, name: Optional[str], description: Optional[str]) -> Tree:
        name = _required(name, "name", "Name is required")
        if not self.store.get_tree(tree_id):
            raise NotFound(tree_id, "Tree")
        return self.store.update_tree(tree_id, name, _clean(description))

    # Nodes

    def create_node(self, tree_id: str, node_type, title: Optional[str], content: Optional[str] = None) -> TreeNode:
        node_type = _node_type(node_type)
        title = _required(title, "title", "Title is required")
        if not self.store.get_tree(tree_id):
            raise NotFound(tree_id, "Tree")
        return self.store.create_node(tree_id, node_type, title, _clean(content))

    def update_node(self, node_id: str, node_type, title: Optional[str], content: Optional[str] = None,
                    scope_tree_id: Optional[str] = None) -> TreeNode:
        node_type = _node_type(node_type)
        title = _required(title, "title", "Title is required")
        self._owned_node(node_id, scope_tree_id)
        return self.store.update_node(node_id, node_type, title, _clean(content))

    def delete_node(self, node_id: str, scope_tree_id: Optional[str] = None) -> NavigationContext:
        """Deletes the node. The returned context points at the tree editor,
        never at the node that no longer exists."""
        node = self._owned_node(node_id, scope_tree_id)
        self.store.delete_node(node.id)
        return NavigationContext(tree_id=node.tree_id)

    # Options

    def create_option(self, node_id: str, label: Optional[str], next_node_id: Optional[str] = None,
                      scope_tree_id: Optional[str] = None) -> NodeOption:
        label = _required(label, "label", "Label is required")
        node = self._owned_node(node_id, scope_tree_id)
        if node.is_answer:
            raise ValidationError("Answer nodes cannot have options", field="label")
        return self.store.create_option(node.id, label, self._target(next_node_id, node.tree_id))

    def update_option(self, option_id: str, label: Optional[str], next_node_id: Optional[str] = None,
                      scope_tree_id: Optional[str] = None) -> NodeOption:
        label = _required(label, "label", "Label is required")
        option, node = self._owned_option(option_id, scope_tree_id)
        return self.store.update_option(option.id, label, self._target(next_node_id, node.tree_id))

    def delete_option(self, option_id: str, scope_tree_id: Optional[str] = None) -> NavigationContext:
        option, node = self._owned_option(option_id, scope_tree_id)
        self.store.delete_option(option.id)
        return NavigationContext(tree_id=node.tree_id, node_id=node.id)
