import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional
from sqlalchemy import create_engine, delete, event, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.errors import NotFound, NodeMissing, OptionNotFound
from app.db.schema import Base, DecisionTreeRow, EditTokenRow, NodeOptionRow, TreeNodeRow
from app.models.decision_tree import EditToken, NodeOption, NodeType, Tree, TreeNode

logger = logging.getLogger(__name__)


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(url, pool_pre_ping=True)


class GraphStore:
    """CRUD over trees, nodes, options and edit tokens.

    Every public method runs in its own transaction and hands back pydantic
    models, so callers never hold on to ORM state between requests.
    """

    def __init__(self, url: str):
        self.engine = build_engine(url)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self):
        Base.metadata.create_all(self.engine)

    def dispose(self):
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        with self.Session.begin() as session:
            yield session

    # Trees

    def get_tree(self, tree_id: str) -> Optional[Tree]:
        if not tree_id:
            return None
        with self.session() as s:
            row = s.get(DecisionTreeRow, tree_id)
            return Tree.model_validate(row) if row else None

    def list_trees(self) -> List[Tree]:
        with self.session() as s:
            rows = s.scalars(select(DecisionTreeRow).order_by(DecisionTreeRow.created_at)).all()
            return [Tree.model_validate(r) for r in rows]

    def create_tree(self, name: str, description: Optional[str], created_by: str) -> Tree:
        with self.session() as s:
            row = DecisionTreeRow(name=name, description=description, created_by=created_by)
            s.add(row)
            s.flush()
            return Tree.model_validate(row)

    def update_tree(self, tree_id: str, name: str, description: Optional[str]) -> Tree:
        with self.session() as s:
            row = s.get(DecisionTreeRow, tree_id)
            if not row:
                raise NotFound(tree_id, "Tree")
            row.name = name
            row.description = description
            s.flush()
            return Tree.model_validate(row)

    # Nodes

    def get_nodes_by_tree(self, tree_id: str) -> List[TreeNode]:
        with self.session() as s:
            rows = s.scalars(
                select(TreeNodeRow)
                .where(TreeNodeRow.tree_id == tree_id)
                .order_by(TreeNodeRow.order_index, TreeNodeRow.created_at)
            ).all()
            return [TreeNode.model_validate(r) for r in rows]

    def get_node(self, node_id: str) -> Optional[TreeNode]:
        if not node_id:
            return None
        with self.session() as s:
            row = s.get(TreeNodeRow, node_id)
            return TreeNode.model_validate(row) if row else None

    def create_node(self, tree_id: str, node_type: NodeType, title: str, content: Optional[str] = None) -> TreeNode:
        with self.session() as s:
            if not s.get(DecisionTreeRow, tree_id):
                raise NotFound(tree_id, "Tree")
            last = s.scalar(select(func.max(TreeNodeRow.order_index)).where(TreeNodeRow.tree_id == tree_id))
            row = TreeNodeRow(
                tree_id=tree_id,
                node_type=NodeType(node_type).value,
                title=title,
                content=content,
                order_index=0 if last is None else last + 1,
            )
            s.add(row)
            s.flush()
            return TreeNode.model_validate(row)

    def update_node(self, node_id: str, node_type: NodeType, title: str, content: Optional[str] = None) -> TreeNode:
        with self.session() as s:
            row = s.get(TreeNodeRow, node_id)
            if not row:
                raise NodeMissing(node_id)
            row.node_type = NodeType(node_type).value
            row.title = title
            row.content = content
            s.flush()
            return TreeNode.model_validate(row)

    def delete_node(self, node_id: str):
        """Removes the node, its own options, and clears every edge pointing at it."""
        with self.session() as s:
            row = s.get(TreeNodeRow, node_id)
            if not row:
                raise NodeMissing(node_id)
            s.execute(delete(NodeOptionRow).where(NodeOptionRow.node_id == node_id))
            s.execute(
                update(NodeOptionRow).where(NodeOptionRow.next_node_id == node_id).values(next_node_id=None)
            )
            s.delete(row)
        logger.info(f"Deleted node {node_id}")

    # Options

    def get_option(self, option_id: str) -> Optional[NodeOption]:
        if not option_id:
            return None
        with self.session() as s:
            row = s.get(NodeOptionRow, option_id)
            return NodeOption.model_validate(row) if row else None

    def get_options_by_node(self, node_id: str) -> List[NodeOption]:
        with self.session() as s:
            rows = s.scalars(
                select(NodeOptionRow)
                .where(NodeOptionRow.node_id == node_id)
                .order_by(NodeOptionRow.order_index, NodeOptionRow.created_at)
            ).all()
            return [NodeOption.model_validate(r) for r in rows]

    def get_options_by_tree(self, tree_id: str) -> List[NodeOption]:
        with self.session() as s:
            rows = s.scalars(
                select(NodeOptionRow)
                .join(TreeNodeRow, NodeOptionRow.node_id == TreeNodeRow.id)
                .where(TreeNodeRow.tree_id == tree_id)
                .order_by(NodeOptionRow.order_index, NodeOptionRow.created_at)
            ).all()
            return [NodeOption.model_validate(r) for r in rows]

    def get_all_options(self) -> List[NodeOption]:
        with self.session() as s:
            rows = s.scalars(select(NodeOptionRow).order_by(NodeOptionRow.created_at)).all()
            return [NodeOption.model_validate(r) for r in rows]

    def create_option(self, node_id: str, label: str, next_node_id: Optional[str] = None) -> NodeOption:
        with self.session() as s:
            if not s.get(TreeNodeRow, node_id):
                raise NodeMissing(node_id)
            if next_node_id and not s.get(TreeNodeRow, next_node_id):
                raise NodeMissing(next_node_id)
            last = s.scalar(select(func.max(NodeOptionRow.order_index)).where(NodeOptionRow.node_id == node_id))
            row = NodeOptionRow(
                node_id=node_id,
                label=label,
                next_node_id=next_node_id or None,
                order_index=0 if last is None else last + 1,
            )
            s.add(row)
            s.flush()
            return NodeOption.model_validate(row)

    def update_option(self, option_id: str, label: str, next_node_id: Optional[str] = None) -> NodeOption:
        with self.session() as s:
            row = s.get(NodeOptionRow, option_id)
            if not row:
                raise OptionNotFound(option_id)
            if next_node_id and not s.get(TreeNodeRow, next_node_id):
                raise NodeMissing(next_node_id)
            row.label = label
            row.next_node_id = next_node_id or None
            s.flush()
            return NodeOption.model_validate(row)

    def delete_option(self, option_id: str):
        with self.session() as s:
            row = s.get(NodeOptionRow, option_id)
            if not row:
                raise OptionNotFound(option_id)
            s.delete(row)

    # Edit tokens

    def create_edit_token(self, token_hash: str, tree_id: str, created_by: str, expires_at: datetime) -> EditToken:
        with self.session() as s:
            if not s.get(DecisionTreeRow, tree_id):
                raise NotFound(tree_id, "Tree")
            row = EditTokenRow(token_hash=token_hash, tree_id=tree_id, created_by=created_by, expires_at=expires_at)
            s.add(row)
            s.flush()
            return EditToken.model_validate(row)

    def get_edit_token(self, token_hash: str) -> Optional[EditToken]:
        with self.session() as s:
            row = s.scalar(select(EditTokenRow).where(EditTokenRow.token_hash == token_hash))
            return EditToken.model_validate(row) if row else None
