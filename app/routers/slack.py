import json
import logging
from typing import Optional, Dict, Any
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, HTTPException, Request

from app.core import config
from app.core.errors import NodeMissing, NotFound, RootNotFound, SurfaceUnreachable, ValidationError
from app.models.decision_tree import NavigationContext
from app.services import blocks
from app.services.slack_client import verify_signature

logger = logging.getLogger(__name__)

router = APIRouter()

RUN_ROOT_MESSAGES = {
    RootNotFound.NO_NODES: "❌ This decision tree has no nodes yet. Please add nodes before running it.",
    RootNotFound.AMBIGUOUS: "⚠️ Could not find a starting node for this tree. "
                            "Make sure exactly one node is not the target of any option.",
}

WORKFLOW_ROOT_MESSAGES = {
    RootNotFound.NO_NODES: "This decision tree has no nodes yet.",
    RootNotFound.AMBIGUOUS: "Could not find a starting node for this tree.",
}


async def verify_slack_request(request: Request):
    body = await request.body()
    if request.url.path.endswith("/events"):
        # Slack expects the challenge echoed back before the app is configured
        try:
            if json.loads(body).get("type") == "url_verification":
                return
        except (ValueError, AttributeError):
            pass
    if not verify_signature(
        config.SLACK_SIGNING_SECRET,
        request.headers.get("x-slack-request-timestamp"),
        body,
        request.headers.get("x-slack-signature"),
        max_age=config.SLACK_REQUEST_MAX_AGE,
    ):
        logger.warning(f"Rejected unsigned or stale request to {request.url.path}")
        raise HTTPException(401, "Invalid signature")


def form_value(view: Dict[str, Any], block_id: str, action_id: str) -> Optional[str]:
    element = view.get("state", {}).get("values", {}).get(block_id, {}).get(action_id) or {}
    if "selected_option" in element:
        return (element.get("selected_option") or {}).get("value")
    if "selected_conversation" in element:
        return element.get("selected_conversation")
    return element.get("value")


def validation_errors(e: ValidationError) -> Dict[str, Any]:
    return {"response_action": "errors", "errors": {e.field or "name": e.message}}


def stale_message(e: NotFound) -> str:
    return f"⚠️ {e.message}. It may have been deleted in the meantime. Reopen the editor and try again."


async def notify_user(state, payload: Dict[str, Any], text: str):
    user_id = (payload.get("user") or {}).get("id")
    if not user_id:
        return
    try:
        await state.slack.post_message(user_id, text)
    except SurfaceUnreachable as e:
        logger.error(f"Could not notify {user_id}: {e}")


# Shared renders

async def publish_home(state, user_id: str):
    await state.slack.publish_home(user_id, blocks.build_home_view(state.store.list_trees()))


def tree_editor(state, tree_id: str) -> Dict[str, Any]:
    tree = state.store.get_tree(tree_id)
    if not tree:
        raise NotFound(tree_id, "Tree")
    return blocks.build_tree_editor_view(tree, state.store.get_nodes_by_tree(tree_id))


def node_editor(state, node_id: str) -> Dict[str, Any]:
    node = state.store.get_node(node_id)
    if not node:
        raise NotFound(node_id, "Node")
    tree = state.store.get_tree(node.tree_id)
    if not tree:
        raise NotFound(node.tree_id, "Tree")
    return blocks.build_node_editor_view(
        tree, node, state.store.get_options_by_node(node_id), state.store.get_nodes_by_tree(tree.id)
    )


def parent_view(state, ctx: NavigationContext) -> Dict[str, Any]:
    return node_editor(state, ctx.node_id) if ctx.node_id else tree_editor(state, ctx.tree_id)


async def return_to_parent(state, view: Dict[str, Any], parent: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Closes a submitted form and refreshes the modal underneath it."""
    previous_id = view.get("previous_view_id")
    if previous_id:
        await state.slack.update_view(previous_id, parent)
        return None
    return {"response_action": "update", "view": parent}


def view_context(payload: Dict[str, Any]) -> NavigationContext:
    ctx = NavigationContext.from_metadata((payload.get("view") or {}).get("private_metadata"))
    if not ctx:
        raise NotFound(entity="Editor context")
    return ctx


# Events

async def fail_workflow_step(state, execute_id: str, message: str):
    try:
        await state.slack.fail_workflow_step(execute_id, message)
    except SurfaceUnreachable as e:
        logger.error(f"Workflow step {execute_id} could not be marked failed: {e}")


async def execute_workflow_step(state, event: Dict[str, Any]):
    step = event.get("workflow_step") or {}
    inputs = step.get("inputs") or {}
    execute_id = step.get("workflow_step_execute_id")
    tree_id = (inputs.get("tree_id") or {}).get("value")

    try:
        view = state.navigator.start(tree_id)
    except RootNotFound as e:
        await fail_workflow_step(state, execute_id, WORKFLOW_ROOT_MESSAGES[e.reason])
        return
    except NotFound:
        await fail_workflow_step(state, execute_id, "This decision tree no longer exists.")
        return

    channel = step.get("workflow_instance_owner")
    if (inputs.get("send_to") or {}).get("value") == "current_channel":
        channel = (inputs.get("channel_id") or {}).get("value") or channel
    try:
        await state.slack.post_message(channel, f"Starting decision tree: {view.title}", view.blocks)
    except SurfaceUnreachable as e:
        logger.error(f"Workflow step {execute_id} could not deliver tree {tree_id} to {channel}: {e}")
        await fail_workflow_step(state, execute_id, "The decision tree could not be delivered.")
        return

    tree = state.store.get_tree(tree_id)
    await state.slack.complete_workflow_step(execute_id, {"tree_name": tree.name if tree else "Unknown"})


@router.post("/slack/events", dependencies=[Depends(verify_slack_request)])
async def slack_events(request: Request):
    state = request.app.state
    try:
        payload = json.loads(await request.body())
    except ValueError:
        raise HTTPException(400, "Invalid JSON")

    if payload.get("type") == "url_verification":
        return {"challenge": payload.get("challenge")}

    event = payload.get("event") or {}
    try:
        if event.get("type") == "app_home_opened":
            await publish_home(state, event.get("user"))
        elif event.get("type") == "workflow_step_execute":
            await execute_workflow_step(state, event)
    except SurfaceUnreachable as e:
        # Acknowledge anyway so Slack does not redeliver the event
        logger.error(f"Event {event.get('type')} not handled: {e}")
    return {"ok": True}


# Block actions

async def on_create_tree(state, payload, action):
    await state.slack.open_view(payload["trigger_id"], blocks.build_tree_form_modal())


async def on_edit_tree(state, payload, action):
    tree_id = action.get("value") or action["action_id"][len("edit_tree_"):]
    await state.slack.open_view(payload["trigger_id"], tree_editor(state, tree_id))


async def on_run_tree(state, payload, action):
    tree_id = action.get("value") or action["action_id"][len("run_tree_"):]
    try:
        view = state.navigator.start(tree_id)
    except RootNotFound as e:
        await state.slack.post_message(payload["user"]["id"], RUN_ROOT_MESSAGES[e.reason])
        return
    tree = state.store.get_tree(tree_id)
    await state.slack.open_view(payload["trigger_id"], blocks.build_run_modal(tree, tree_id, view.node_id, view.blocks))


async def on_edit_tree_info(state, payload, action):
    ctx = view_context(payload)
    tree = state.store.get_tree(ctx.tree_id)
    if not tree:
        raise NotFound(ctx.tree_id, "Tree")
    await state.slack.push_view(payload["trigger_id"], blocks.build_tree_form_modal(tree))


async def on_edit_in_browser(state, payload, action):
    ctx = view_context(payload)
    user_id = payload["user"]["id"]
    edit_token = state.tokens.issue(ctx.tree_id, user_id)
    url = config.editor_url(edit_token.token)
    await state.slack.post_message(
        user_id,
        f"Here's your temporary editor link for this decision tree:\n\n{url}",
        blocks.build_browser_link_blocks(url, config.EDIT_TOKEN_TTL_MINUTES),
    )


async def on_add_node(state, payload, action):
    ctx = view_context(payload)
    await state.slack.push_view(payload["trigger_id"], blocks.build_node_form_modal(NavigationContext(tree_id=ctx.tree_id)))


async def on_manage_node(state, payload, action):
    node_id = action.get("value") or action["action_id"][len("manage_node_"):]
    await state.slack.push_view(payload["trigger_id"], node_editor(state, node_id))


async def on_back_to_tree(state, payload, action):
    ctx = view_context(payload)
    await state.slack.update_view(payload["view"]["id"], tree_editor(state, ctx.tree_id))


async def on_edit_node(state, payload, action):
    ctx = view_context(payload)
    node = state.store.get_node(ctx.node_id) if ctx.node_id else None
    if not node:
        raise NotFound(ctx.node_id, "Node")
    await state.slack.push_view(payload["trigger_id"], blocks.build_node_form_modal(ctx, node))


async def on_delete_node(state, payload, action):
    ctx = view_context(payload)
    parent_ctx = state.editor.delete_node(ctx.node_id)
    editor_view = parent_view(state, parent_ctx)
    await state.slack.update_view(payload["view"]["id"], editor_view)
    previous_id = payload["view"].get("previous_view_id")
    if previous_id:
        await state.slack.update_view(previous_id, editor_view)


async def on_add_option(state, payload, action):
    ctx = view_context(payload)
    all_nodes = state.store.get_nodes_by_tree(ctx.tree_id)
    await state.slack.push_view(payload["trigger_id"], blocks.build_option_form_modal(ctx, all_nodes))


async def on_edit_option(state, payload, action):
    option_id = action.get("value") or action["action_id"][len("edit_option_"):]
    option = state.store.get_option(option_id)
    if not option:
        raise NotFound(option_id, "Option")
    node = state.store.get_node(option.node_id)
    if not node:
        raise NotFound(option.node_id, "Node")
    ctx = NavigationContext(tree_id=node.tree_id, node_id=node.id, option_id=option.id)
    all_nodes = state.store.get_nodes_by_tree(node.tree_id)
    await state.slack.push_view(payload["trigger_id"], blocks.build_option_form_modal(ctx, all_nodes, option))


async def on_delete_option(state, payload, action):
    parent_ctx = state.editor.delete_option(action.get("value"))
    editor_view = parent_view(state, parent_ctx)
    await state.slack.update_view(payload["view"]["id"], editor_view)
    previous_id = payload["view"].get("previous_view_id")
    if previous_id:
        await state.slack.update_view(previous_id, editor_view)


async def on_option_selected(state, payload, action):
    view = state.navigator.advance(action.get("value") or action["action_id"][len("option_"):])
    if view is None:
        return
    container = payload.get("view")
    if container and container.get("id"):
        ctx = view_context(payload)
        tree = state.store.get_tree(ctx.tree_id)
        await state.slack.update_view(
            container["id"], blocks.build_run_modal(tree, ctx.tree_id, view.node_id, view.blocks)
        )
        return
    channel_id = (payload.get("channel") or {}).get("id")
    message_ts = (payload.get("message") or {}).get("ts")
    if channel_id and message_ts:
        await state.slack.update_message(channel_id, message_ts, view.title, view.blocks)


ACTION_HANDLERS = {
    "create_tree": on_create_tree,
    "edit_tree_info": on_edit_tree_info,
    "edit_in_browser": on_edit_in_browser,
    "add_node": on_add_node,
    "back_to_tree": on_back_to_tree,
    "edit_node": on_edit_node,
    "delete_node": on_delete_node,
    "add_option": on_add_option,
    "delete_option": on_delete_option,
}

# Checked after the exact ids above, so edit_tree_info never reaches edit_tree_
ACTION_PREFIXES = [
    ("edit_tree_", on_edit_tree),
    ("run_tree_", on_run_tree),
    ("manage_node_", on_manage_node),
    ("edit_option_", on_edit_option),
    ("option_", on_option_selected),
]


def find_action_handler(action_id: str):
    if action_id in ACTION_HANDLERS:
        return ACTION_HANDLERS[action_id]
    for prefix, handler in ACTION_PREFIXES:
        if action_id.startswith(prefix):
            return handler
    return None


# View submissions

async def submit_create_tree(state, payload, view):
    user_id = payload["user"]["id"]
    state.editor.create_tree(
        form_value(view, "name", "name_input"), form_value(view, "description", "description_input"), user_id
    )
    await publish_home(state, user_id)
    return None


async def submit_edit_tree_info(state, payload, view):
    ctx = view_context(payload)
    state.editor.update_tree_info(
        ctx.tree_id, form_value(view, "name", "name_input"), form_value(view, "description", "description_input")
    )
    await publish_home(state, payload["user"]["id"])
    return await return_to_parent(state, view, tree_editor(state, ctx.tree_id))


async def submit_add_node(state, payload, view):
    ctx = view_context(payload)
    state.editor.create_node(
        ctx.tree_id,
        form_value(view, "node_type", "node_type_select"),
        form_value(view, "title", "title_input"),
        form_value(view, "content", "content_input"),
    )
    return await return_to_parent(state, view, tree_editor(state, ctx.tree_id))


async def submit_edit_node(state, payload, view):
    ctx = view_context(payload)
    state.editor.update_node(
        ctx.node_id,
        form_value(view, "node_type", "node_type_select"),
        form_value(view, "title", "title_input"),
        form_value(view, "content", "content_input"),
    )
    return await return_to_parent(state, view, node_editor(state, ctx.node_id))


async def submit_add_option(state, payload, view):
    ctx = view_context(payload)
    try:
        state.editor.create_option(
            ctx.node_id, form_value(view, "label", "label_input"), form_value(view, "next_node", "next_node_select")
        )
    except NotFound as e:
        if e.entity_id and e.entity_id != ctx.node_id:
            raise ValidationError("That node is not part of this tree", field="next_node")
        raise
    return await return_to_parent(state, view, node_editor(state, ctx.node_id))


async def submit_edit_option(state, payload, view):
    ctx = view_context(payload)
    try:
        option = state.editor.update_option(
            ctx.option_id, form_value(view, "label", "label_input"), form_value(view, "next_node", "next_node_select")
        )
    except NodeMissing:
        raise ValidationError("That node is not part of this tree", field="next_node")
    return await return_to_parent(state, view, node_editor(state, option.node_id))


async def submit_workflow_step(state, payload, view):
    metadata = json.loads(view.get("private_metadata") or "{}")
    inputs = {
        "tree_id": {"value": form_value(view, "tree_select_block", "tree_select")},
        "send_to": {"value": form_value(view, "send_to_block", "send_to_select")},
    }
    channel_id = form_value(view, "channel_block", "channel_select")
    if channel_id:
        inputs["channel_id"] = {"value": channel_id}
    await state.slack.update_workflow_step(
        metadata.get("workflow_step_edit_id"),
        inputs,
        [{"type": "text", "name": "tree_name", "label": "Decision Tree Name"}],
    )
    return None


SUBMISSION_HANDLERS = {
    "create_tree_modal": submit_create_tree,
    "edit_tree_info_modal": submit_edit_tree_info,
    "add_node_modal": submit_add_node,
    "edit_node_modal": submit_edit_node,
    "add_option_modal": submit_add_option,
    "edit_option_modal": submit_edit_option,
    blocks.WORKFLOW_CALLBACK_ID: submit_workflow_step,
}


async def handle_interaction(state, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    kind = payload.get("type")

    if kind == "workflow_step_edit":
        edit_id = (payload.get("workflow_step") or {}).get("workflow_step_edit_id")
        view = blocks.build_workflow_step_view(state.store.list_trees(), edit_id)
        await state.slack.open_view(payload["trigger_id"], view)
        return None

    if kind == "view_submission":
        view = payload.get("view") or {}
        handler = SUBMISSION_HANDLERS.get(view.get("callback_id"))
        if not handler:
            return None
        try:
            return await handler(state, payload, view)
        except ValidationError as e:
            return validation_errors(e)
        except NotFound as e:
            # Closing the form would look like a successful save
            logger.warning(f"Submission {view.get('callback_id')} referenced a missing entity: {e.message}")
            return {"response_action": "update", "view": blocks.build_error_modal(stale_message(e))}

    if kind == "block_actions":
        actions = payload.get("actions") or []
        if not actions:
            return None
        handler = find_action_handler(actions[0].get("action_id", ""))
        if handler:
            await handler(state, payload, actions[0])
    return None


@router.post("/slack/interactions", dependencies=[Depends(verify_slack_request)])
async def slack_interactions(request: Request):
    form = parse_qs((await request.body()).decode())
    raw = (form.get("payload") or [None])[0]
    if not raw:
        raise HTTPException(400, "Missing payload")
    try:
        payload = json.loads(raw)
    except ValueError:
        raise HTTPException(400, "Invalid payload")

    try:
        response = await handle_interaction(request.app.state, payload)
    except ValidationError as e:
        # Block actions have no inline error slot, so tell the user directly
        logger.info(f"Rejected interaction: {e.message}")
        await notify_user(request.app.state, payload, f"⚠️ {e.message}")
        response = None
    except NotFound as e:
        logger.warning(f"Interaction {payload.get('type')} referenced a missing entity: {e.message}")
        await notify_user(request.app.state, payload, stale_message(e))
        response = None
    except SurfaceUnreachable as e:
        logger.error(f"Interaction {payload.get('type')} not delivered: {e}")
        response = None
    return response or {}
