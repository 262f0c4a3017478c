"""Block Kit payloads for the home tab, run surfaces and editing modals.

Everything here is a pure function of store models; nothing talks to Slack.
"""
import json
from typing import List, Optional, Dict, Any

from app.models.decision_tree import NavigationContext, NodeOption, NodeType, Tree, TreeNode

NODE_TYPE_LABELS = {
    NodeType.DECISION: "❓ Decision (question with options)",
    NodeType.ANSWER: "✅ Answer (final result)",
}

TREE_EDITOR_PREFIX = "tree_editor_"
RUN_MODAL_PREFIX = "run_tree_modal_"
WORKFLOW_CALLBACK_ID = "run_decision_tree_workflow"

# Block Kit limits
BUTTON_TEXT_MAX = 75
ACTIONS_MAX = 25


def plain(text: str) -> Dict[str, Any]:
    return {"type": "plain_text", "text": text}


def mrkdwn(text: str) -> Dict[str, Any]:
    return {"type": "mrkdwn", "text": text}


def button(text: str, action_id: str, value: Optional[str] = None, style: Optional[str] = None) -> Dict[str, Any]:
    btn = {"type": "button", "text": plain(text[:BUTTON_TEXT_MAX]), "action_id": action_id}
    if value is not None:
        btn["value"] = value
    if style:
        btn["style"] = style
    return btn


def text_input(block_id: str, label: str, action_id: str, placeholder: str,
               initial: Optional[str] = None, optional: bool = False, multiline: bool = False) -> Dict[str, Any]:
    element = {"type": "plain_text_input", "action_id": action_id, "placeholder": plain(placeholder)}
    if multiline:
        element["multiline"] = True
    if initial:
        element["initial_value"] = initial
    block = {"type": "input", "block_id": block_id, "label": plain(label), "element": element}
    if optional:
        block["optional"] = True
    return block


def select_option(text: str, value: str) -> Dict[str, Any]:
    return {"text": plain(text), "value": value}


def node_label(node: TreeNode) -> str:
    icon = "❓" if node.node_type == NodeType.DECISION else "✅"
    return f"{icon} {node.title}"


# Home tab

def build_home_view(trees: List[Tree]) -> Dict[str, Any]:
    blocks = [
        {"type": "header", "text": plain("🌳 Decision Tree Manager")},
        {"type": "section", "text": mrkdwn("Create and manage decision trees for your workspace.")},
        {"type": "divider"},
        {"type": "actions", "elements": [button("➕ Create New Decision Tree", "create_tree", style="primary")]},
    ]
    if trees:
        blocks.append({"type": "divider"})
        blocks.append({"type": "header", "text": plain("Your Decision Trees")})
        for tree in trees:
            blocks.append({
                "type": "section",
                "text": mrkdwn(f"*{tree.name}*\n{tree.description or 'No description'}"),
            })
            blocks.append({
                "type": "actions",
                "elements": [
                    button("Edit", f"edit_tree_{tree.id}", value=tree.id),
                    button("▶️ Run", f"run_tree_{tree.id}", value=tree.id),
                ],
            })
    return {"type": "home", "blocks": blocks}


# Run surfaces

def build_decision_blocks(node: TreeNode, options: List[NodeOption]) -> List[Dict[str, Any]]:
    blocks = [{"type": "section", "text": mrkdwn(f"*{node.title}*\n{node.content or ''}")}]
    buttons = [button(opt.label, f"option_{opt.id}", value=opt.id) for opt in options]
    for start in range(0, len(buttons), ACTIONS_MAX):
        blocks.append({"type": "actions", "elements": buttons[start:start + ACTIONS_MAX]})
    return blocks


def build_answer_blocks(node: TreeNode) -> List[Dict[str, Any]]:
    return [
        {"type": "section", "text": mrkdwn(f"*{node.title}*\n{node.content or ''}")},
        {"type": "context", "elements": [mrkdwn("✅ Decision tree completed")]},
    ]


def build_run_modal(tree: Optional[Tree], tree_id: str, node_id: str, blocks: List[Dict[str, Any]]) -> Dict[str, Any]:
    ctx = NavigationContext(tree_id=tree_id, current_node_id=node_id)
    return {
        "type": "modal",
        "callback_id": f"{RUN_MODAL_PREFIX}{tree_id}",
        "private_metadata": ctx.to_metadata(),
        # Modal titles are capped at 24 characters
        "title": plain((tree.name if tree else "Decision Tree")[:24]),
        "close": plain("Close"),
        "blocks": blocks,
    }


# Editing modals

def build_tree_form_modal(tree: Optional[Tree] = None) -> Dict[str, Any]:
    """Create form when ``tree`` is None, otherwise the tree info editor."""
    view = {
        "type": "modal",
        "callback_id": "edit_tree_info_modal" if tree else "create_tree_modal",
        "title": plain("Edit Tree Info" if tree else "Create Decision Tree"),
        "submit": plain("Save" if tree else "Create"),
        "blocks": [
            text_input("name", "Name", "name_input", "Enter tree name", initial=tree.name if tree else None),
            text_input("description", "Description", "description_input", "Enter tree description",
                       initial=tree.description if tree else None, optional=True, multiline=True),
        ],
    }
    if tree:
        view["private_metadata"] = NavigationContext(tree_id=tree.id).to_metadata()
    return view


def build_tree_editor_view(tree: Tree, nodes: List[TreeNode]) -> Dict[str, Any]:
    blocks = [
        {"type": "section", "text": mrkdwn(f"*{tree.name}*\n{tree.description or 'No description'}")},
        {
            "type": "actions",
            "elements": [
                button("✏️ Edit Tree Info", "edit_tree_info"),
                button("➕ Add Node", "add_node", style="primary"),
                button("🌐 Edit in Browser", "edit_in_browser"),
            ],
        },
        {"type": "divider"},
    ]
    if not nodes:
        blocks.append({"type": "context", "elements": [mrkdwn("No nodes yet. Add a decision node to get started.")]})
    for node in nodes:
        blocks.append({
            "type": "section",
            "text": mrkdwn(f"{node_label(node)}\n{node.content or ''}".rstrip()),
            "accessory": button("Manage", f"manage_node_{node.id}", value=node.id),
        })
    return {
        "type": "modal",
        "callback_id": f"{TREE_EDITOR_PREFIX}{tree.id}",
        "private_metadata": NavigationContext(tree_id=tree.id).to_metadata(),
        "title": plain("Edit Decision Tree"),
        "close": plain("Close"),
        "blocks": blocks,
    }


def build_node_editor_view(tree: Tree, node: TreeNode, options: List[NodeOption],
                           all_nodes: List[TreeNode]) -> Dict[str, Any]:
    titles = {n.id: node_label(n) for n in all_nodes}
    blocks = [
        {
            "type": "section",
            "text": mrkdwn(f"*{node.title}*\n_{NODE_TYPE_LABELS[node.node_type]}_\n{node.content or ''}".rstrip()),
        },
        {
            "type": "actions",
            "elements": [
                button("⬅️ Back", "back_to_tree"),
                button("✏️ Edit Node", "edit_node"),
                button("🗑️ Delete Node", "delete_node", style="danger"),
            ],
        },
    ]
    if node.node_type == NodeType.DECISION:
        blocks.append({"type": "divider"})
        blocks.append({"type": "section", "text": mrkdwn("*Options*")})
        for opt in options:
            target = titles.get(opt.next_node_id) if opt.next_node_id else None
            blocks.append({
                "type": "section",
                "text": mrkdwn(f"*{opt.label}* → {target or '⚠️ Not set'}"),
                "accessory": button("Edit", f"edit_option_{opt.id}", value=opt.id),
            })
        blocks.append({"type": "actions", "elements": [button("➕ Add Option", "add_option", style="primary")]})
    return {
        "type": "modal",
        "callback_id": f"node_editor_{node.id}",
        "private_metadata": NavigationContext(tree_id=tree.id, node_id=node.id).to_metadata(),
        "title": plain("Manage Node"),
        "close": plain("Close"),
        "blocks": blocks,
    }


def build_node_form_modal(ctx: NavigationContext, node: Optional[TreeNode] = None) -> Dict[str, Any]:
    type_select = {
        "type": "static_select",
        "action_id": "node_type_select",
        "placeholder": plain("Select type"),
        "options": [select_option(label, t.value) for t, label in NODE_TYPE_LABELS.items()],
    }
    if node:
        type_select["initial_option"] = select_option(NODE_TYPE_LABELS[node.node_type], node.node_type.value)
    return {
        "type": "modal",
        "callback_id": "edit_node_modal" if node else "add_node_modal",
        "private_metadata": ctx.to_metadata(),
        "title": plain("Edit Node" if node else "Add Node"),
        "submit": plain("Save" if node else "Create"),
        "blocks": [
            {"type": "input", "block_id": "node_type", "label": plain("Node Type"), "element": type_select},
            text_input("title", "Title", "title_input", "Enter node title", initial=node.title if node else None),
            text_input("content", "Content", "content_input", "Enter additional details",
                       initial=node.content if node else None, optional=True, multiline=True),
        ],
    }


def build_option_form_modal(ctx: NavigationContext, all_nodes: List[TreeNode],
                            option: Optional[NodeOption] = None) -> Dict[str, Any]:
    blocks = [
        text_input("label", "Option Label", "label_input", 'e.g., "Yes", "No", "Maybe"',
                   initial=option.label if option else None),
    ]
    # Static selects reject an empty options list
    if all_nodes:
        next_select = {
            "type": "static_select",
            "action_id": "next_node_select",
            "placeholder": plain("Select a node"),
            "options": [select_option(node_label(n)[:75], n.id) for n in all_nodes],
        }
        target = next((n for n in all_nodes if option and n.id == option.next_node_id), None)
        if target:
            next_select["initial_option"] = select_option(node_label(target)[:75], target.id)
        blocks.append({
            "type": "input",
            "block_id": "next_node",
            "label": plain("Next Node (where this option leads)"),
            "optional": True,
            "element": next_select,
        })
    if option:
        blocks.append({
            "type": "actions",
            "elements": [button("Delete Option", "delete_option", value=option.id, style="danger")],
        })
    return {
        "type": "modal",
        "callback_id": "edit_option_modal" if option else "add_option_modal",
        "private_metadata": ctx.to_metadata(),
        "title": plain("Edit Option" if option else "Add Option"),
        "submit": plain("Save" if option else "Create"),
        "blocks": blocks,
    }


# Workflow step

def build_workflow_step_view(trees: List[Tree], edit_id: str) -> Dict[str, Any]:
    return {
        "type": "workflow_step",
        "callback_id": WORKFLOW_CALLBACK_ID,
        "private_metadata": json.dumps({"workflow_step_edit_id": edit_id}),
        "blocks": [
            {"type": "section", "text": mrkdwn("Select which decision tree to run when this workflow step executes:")},
            {
                "type": "input",
                "block_id": "tree_select_block",
                "label": plain("Decision Tree"),
                "element": {
                    "type": "static_select",
                    "action_id": "tree_select",
                    "placeholder": plain("Select a decision tree"),
                    "options": [select_option(t.name[:75], t.id) for t in trees],
                },
            },
            {
                "type": "input",
                "block_id": "send_to_block",
                "label": plain("Send decision tree to"),
                "element": {
                    "type": "static_select",
                    "action_id": "send_to_select",
                    "placeholder": plain("Select recipient"),
                    "options": [
                        select_option("User who triggered the workflow", "workflow_user"),
                        select_option("Current channel", "current_channel"),
                    ],
                },
            },
            {
                "type": "input",
                "block_id": "channel_block",
                "label": plain("Channel (for Current channel)"),
                "optional": True,
                "element": {
                    "type": "conversations_select",
                    "action_id": "channel_select",
                    "default_to_current_conversation": True,
                    "placeholder": plain("Select a channel"),
                },
            },
        ],
    }


def build_browser_link_blocks(url: str, ttl_minutes: int) -> List[Dict[str, Any]]:
    expiry = "1 hour" if ttl_minutes == 60 else f"{ttl_minutes} minutes"
    return [{
        "type": "section",
        "text": mrkdwn(
            f"🌐 *Web Editor Link*\n\nClick the link below to edit your decision tree in the browser:\n\n"
            f"<{url}|Open Editor>\n\n⏱️ _This link expires in {expiry}_"
        ),
    }]


def build_error_modal(message: str) -> Dict[str, Any]:
    return {
        "type": "modal",
        "title": plain("Something went wrong"),
        "close": plain("Close"),
        "blocks": [{"type": "section", "text": mrkdwn(message)}],
    }
