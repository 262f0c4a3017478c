from contextlib import contextmanager
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from app.core.errors import InvalidToken, NotFound, ValidationError
from app.models.decision_tree import CamelModel, EditToken

router = APIRouter()


class TreeInfoBody(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None


class NodeBody(CamelModel):
    node_type: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None


class OptionBody(CamelModel):
    label: Optional[str] = None
    next_node_id: Optional[str] = None


@contextmanager
def http_errors():
    try:
        yield
    except ValidationError as e:
        raise HTTPException(400, e.message)
    except InvalidToken as e:
        raise HTTPException(401, e.message)
    except NotFound as e:
        raise HTTPException(404, e.message)


async def get_edit_token(token: str, request: Request) -> EditToken:
    # The tree id always comes from the token, never from the client
    with http_errors():
        return request.app.state.tokens.validate(token)


@router.get("/editor/{token}")
async def get_tree(request: Request, edit_token: EditToken = Depends(get_edit_token)):
    store = request.app.state.store
    tree = store.get_tree(edit_token.tree_id)
    if not tree:
        raise HTTPException(404, "Tree not found")
    return {
        "tree": tree.to_json(),
        "nodes": [n.to_json() for n in store.get_nodes_by_tree(tree.id)],
        "options": [o.to_json() for o in store.get_options_by_tree(tree.id)],
        "expiresAt": edit_token.to_json()["expiresAt"],
    }


@router.put("/editor/{token}")
async def update_tree(body: TreeInfoBody, request: Request, edit_token: EditToken = Depends(get_edit_token)):
    editor = request.app.state.editor
    with http_errors():
        tree = editor.update_tree_info(edit_token.tree_id, body.name, body.description)
    return {"success": True, "tree": tree.to_json()}


@router.post("/editor/{token}/nodes")
async def create_node(body: NodeBody, request: Request, edit_token: EditToken = Depends(get_edit_token)):
    editor = request.app.state.editor
    with http_errors():
        node = editor.create_node(edit_token.tree_id, body.node_type, body.title, body.content)
    return node.to_json()


@router.put("/editor/{token}/nodes/{node_id}")
async def update_node(node_id: str, body: NodeBody, request: Request,
                      edit_token: EditToken = Depends(get_edit_token)):
    editor = request.app.state.editor
    with http_errors():
        editor.update_node(node_id, body.node_type, body.title, body.content, scope_tree_id=edit_token.tree_id)
    return {"success": True}


@router.delete("/editor/{token}/nodes/{node_id}")
async def delete_node(node_id: str, request: Request, edit_token: EditToken = Depends(get_edit_token)):
    editor = request.app.state.editor
    with http_errors():
        editor.delete_node(node_id, scope_tree_id=edit_token.tree_id)
    return {"success": True}


@router.post("/editor/{token}/nodes/{node_id}/options")
async def create_option(node_id: str, body: OptionBody, request: Request,
                        edit_token: EditToken = Depends(get_edit_token)):
    editor = request.app.state.editor
    with http_errors():
        option = editor.create_option(node_id, body.label, body.next_node_id, scope_tree_id=edit_token.tree_id)
    return option.to_json()


@router.put("/editor/{token}/options/{option_id}")
async def update_option(option_id: str, body: OptionBody, request: Request,
                        edit_token: EditToken = Depends(get_edit_token)):
    editor = request.app.state.editor
    with http_errors():
        editor.update_option(option_id, body.label, body.next_node_id, scope_tree_id=edit_token.tree_id)
    return {"success": True}


@router.delete("/editor/{token}/options/{option_id}")
async def delete_option(option_id: str, request: Request, edit_token: EditToken = Depends(get_edit_token)):
    editor = request.app.state.editor
    with http_errors():
        editor.delete_option(option_id, scope_tree_id=edit_token.tree_id)
    return {"success": True}
