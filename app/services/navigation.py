import logging
from typing import List, Optional

from app.core.errors import NodeMissing, NotFound, OptionNotFound, RootNotFound
from app.db.store import GraphStore
from app.models.decision_tree import NodeOption, RenderedView, TreeNode
from app.services import blocks

logger = logging.getLogger(__name__)


def infer_root(nodes: List[TreeNode], options: List[NodeOption]) -> TreeNode:
    """Returns the single node no option of the tree points at.

    Zero or several unreferenced nodes both mean the tree has no usable entry
    point; neither case falls back to picking a node.
    """
    if not nodes:
        raise RootNotFound(RootNotFound.NO_NODES)
    referenced = {opt.next_node_id for opt in options if opt.next_node_id}
    candidates = [node for node in nodes if node.id not in referenced]
    if len(candidates) != 1:
        raise RootNotFound(RootNotFound.AMBIGUOUS)
    return candidates[0]


class NavigationEngine:
    """Moves a run from one node to the next.

    The current position is never stored. It lives in whatever surface shows
    the run (a message or a modal), and callers decide where the returned
    view goes.
    """

    def __init__(self, store: GraphStore):
        self.store = store

    def render(self, node: TreeNode) -> RenderedView:
        if node.is_answer:
            payload = blocks.build_answer_blocks(node)
        else:
            payload = blocks.build_decision_blocks(node, self.store.get_options_by_node(node.id))
        return RenderedView(node_id=node.id, node_type=node.node_type, title=node.title, blocks=payload)

    def start(self, tree_id: str) -> RenderedView:
        if not tree_id or not self.store.get_tree(tree_id):
            raise NotFound(tree_id, "Tree")
        nodes = self.store.get_nodes_by_tree(tree_id)
        try:
            root = infer_root(nodes, self.store.get_options_by_tree(tree_id))
        except RootNotFound as e:
            logger.warning(f"Tree {tree_id} is not runnable: {e.reason}")
            raise
        return self.render(root)

    def advance(self, option_id: str) -> Optional[RenderedView]:
        """Follows an option. Returns None when the option leads nowhere yet."""
        option = self.store.get_option(option_id)
        if not option:
            raise OptionNotFound(option_id)
        if not option.next_node_id:
            return None
        node = self.store.get_node(option.next_node_id)
        if not node:
            raise NodeMissing(option.next_node_id)
        return self.render(node)
