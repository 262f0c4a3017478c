import json
from app.core import config
from app.core.errors import SurfaceUnreachable
from app.models.decision_tree import NavigationContext, NodeType


def interact(client, payload):
    payload.setdefault("user", {"id": "U123"})
    return client.post("/api/slack/interactions", data={"payload": json.dumps(payload)})


def block_action(action_id, value=None, view=None, **extra):
    action = {"action_id": action_id}
    if value is not None:
        action["value"] = value
    payload = {"type": "block_actions", "trigger_id": "T1", "actions": [action], **extra}
    if view is not None:
        payload["view"] = view
    return payload


def submission(callback_id, values, ctx=None, previous_view_id=None):
    view = {"id": "V_FORM", "callback_id": callback_id, "state": {"values": values}}
    if ctx:
        view["private_metadata"] = ctx.to_metadata()
    if previous_view_id:
        view["previous_view_id"] = previous_view_id
    return {"type": "view_submission", "trigger_id": "T1", "view": view}


def text_value(value):
    return {"value": value}


def selected(value):
    return {"selected_option": {"value": value} if value else None}


def test_missing_payload(client):
    assert client.post("/api/slack/interactions", data={}).status_code == 400


def test_create_tree_opens_form(client, slack_mock):
    interact(client, block_action("create_tree"))
    trigger, view = slack_mock.open_view.call_args.args
    assert trigger == "T1"
    assert view["callback_id"] == "create_tree_modal"


def test_create_tree_submission(client, slack_mock, store):
    values = {"name": {"name_input": text_value("Billing")}, "description": {"description_input": text_value(None)}}
    response = interact(client, submission("create_tree_modal", values))
    assert response.status_code == 200
    assert response.json() == {}
    assert [t.name for t in store.list_trees()] == ["Billing"]
    assert slack_mock.publish_home.call_args.args[0] == "U123"


def test_create_tree_submission_empty_name(client, store):
    values = {"name": {"name_input": text_value("  ")}, "description": {"description_input": text_value(None)}}
    response = interact(client, submission("create_tree_modal", values))
    assert response.json() == {"response_action": "errors", "errors": {"name": "Name is required"}}
    assert store.list_trees() == []


def test_edit_tree_opens_tree_editor(client, slack_mock, yes_tree):
    tree_id = yes_tree["tree"].id
    interact(client, block_action(f"edit_tree_{tree_id}", tree_id))
    view = slack_mock.open_view.call_args.args[1]
    assert view["callback_id"] == f"tree_editor_{tree_id}"
    manage = [b["accessory"]["value"] for b in view["blocks"] if "accessory" in b]
    assert manage == [yes_tree["q1"].id, yes_tree["a1"].id]


def test_edit_tree_info_is_not_an_edit_tree_prefix(client, slack_mock, yes_tree):
    ctx = NavigationContext(tree_id=yes_tree["tree"].id)
    interact(client, block_action("edit_tree_info", view={"id": "V1", "private_metadata": ctx.to_metadata()}))
    view = slack_mock.push_view.call_args.args[1]
    assert view["callback_id"] == "edit_tree_info_modal"
    slack_mock.open_view.assert_not_called()


def test_run_tree_opens_modal_at_root(client, slack_mock, yes_tree):
    tree_id = yes_tree["tree"].id
    interact(client, block_action(f"run_tree_{tree_id}", tree_id))
    view = slack_mock.open_view.call_args.args[1]
    assert view["callback_id"] == f"run_tree_modal_{tree_id}"
    ctx = NavigationContext.from_metadata(view["private_metadata"])
    assert ctx.current_node_id == yes_tree["q1"].id
    assert view["blocks"][1]["elements"][0]["text"]["text"] == "Yes"


def test_run_empty_tree_messages_user(client, slack_mock, tree):
    interact(client, block_action(f"run_tree_{tree.id}", tree.id))
    user_id, text = slack_mock.post_message.call_args.args
    assert user_id == "U123"
    assert "no nodes yet" in text
    slack_mock.open_view.assert_not_called()


def test_option_in_modal_updates_view(client, slack_mock, yes_tree):
    tree_id = yes_tree["tree"].id
    ctx = NavigationContext(tree_id=tree_id, current_node_id=yes_tree["q1"].id)
    option_id = yes_tree["yes"].id
    interact(client, block_action(f"option_{option_id}", option_id,
                                  view={"id": "V_RUN", "private_metadata": ctx.to_metadata()}))
    view_id, view = slack_mock.update_view.call_args.args
    assert view_id == "V_RUN"
    assert NavigationContext.from_metadata(view["private_metadata"]).current_node_id == yes_tree["a1"].id
    assert all(b["type"] != "actions" for b in view["blocks"])


def test_option_in_message_updates_message(client, slack_mock, yes_tree):
    option_id = yes_tree["yes"].id
    interact(client, block_action(f"option_{option_id}", option_id,
                                  channel={"id": "C1"}, message={"ts": "1700000000.0001"}))
    channel, ts, text, blocks = slack_mock.update_message.call_args.args
    assert (channel, ts, text) == ("C1", "1700000000.0001", "Call support")
    assert blocks[-1]["type"] == "context"
    slack_mock.update_view.assert_not_called()


def test_unset_option_changes_nothing(client, slack_mock, store, tree):
    q1 = store.create_node(tree.id, NodeType.DECISION, "Q1")
    unset = store.create_option(q1.id, "Later")
    interact(client, block_action(f"option_{unset.id}", unset.id, channel={"id": "C1"}, message={"ts": "1.0"}))
    slack_mock.update_message.assert_not_called()
    slack_mock.update_view.assert_not_called()


def test_add_node_submission_refreshes_tree_editor(client, slack_mock, store, tree):
    values = {
        "node_type": {"node_type_select": selected("decision")},
        "title": {"title_input": text_value("First question")},
        "content": {"content_input": text_value(None)},
    }
    response = interact(client, submission("add_node_modal", values, NavigationContext(tree_id=tree.id), "V_TREE"))
    assert response.json() == {}
    view_id, view = slack_mock.update_view.call_args.args
    assert view_id == "V_TREE"
    assert view["callback_id"] == f"tree_editor_{tree.id}"
    assert [n.title for n in store.get_nodes_by_tree(tree.id)] == ["First question"]


def test_add_node_submission_without_stack(client, tree):
    values = {
        "node_type": {"node_type_select": selected("answer")},
        "title": {"title_input": text_value("Done")},
        "content": {"content_input": text_value("Thanks")},
    }
    response = interact(client, submission("add_node_modal", values, NavigationContext(tree_id=tree.id)))
    body = response.json()
    assert body["response_action"] == "update"
    assert body["view"]["callback_id"] == f"tree_editor_{tree.id}"


def test_add_node_submission_missing_type(client, store, tree):
    values = {
        "node_type": {"node_type_select": selected(None)},
        "title": {"title_input": text_value("Q")},
        "content": {"content_input": text_value(None)},
    }
    response = interact(client, submission("add_node_modal", values, NavigationContext(tree_id=tree.id)))
    assert response.json()["errors"].keys() == {"node_type"}
    assert store.get_nodes_by_tree(tree.id) == []


def test_delete_node_falls_back_to_tree_editor(client, slack_mock, store, yes_tree):
    ctx = NavigationContext(tree_id=yes_tree["tree"].id, node_id=yes_tree["a1"].id)
    interact(client, block_action("delete_node", view={
        "id": "V_NODE", "previous_view_id": "V_TREE", "private_metadata": ctx.to_metadata(),
    }))
    assert store.get_node(yes_tree["a1"].id) is None
    calls = {c.args[0]: c.args[1] for c in slack_mock.update_view.call_args_list}
    assert set(calls) == {"V_NODE", "V_TREE"}
    assert calls["V_NODE"]["callback_id"] == f"tree_editor_{yes_tree['tree'].id}"


def test_node_editor_shows_unset_targets(client, slack_mock, store, yes_tree):
    store.delete_node(yes_tree["a1"].id)
    q1 = yes_tree["q1"].id
    interact(client, block_action(f"manage_node_{q1}", q1))
    view = slack_mock.push_view.call_args.args[1]
    option_rows = [b["text"]["text"] for b in view["blocks"] if b.get("accessory", {}).get("action_id", "").startswith("edit_option_")]
    assert option_rows == ["*Yes* → ⚠️ Not set"]


def test_add_option_submission(client, slack_mock, store, yes_tree):
    ctx = NavigationContext(tree_id=yes_tree["tree"].id, node_id=yes_tree["q1"].id)
    values = {"label": {"label_input": text_value("No")}, "next_node": {"next_node_select": selected(None)}}
    response = interact(client, submission("add_option_modal", values, ctx, "V_NODE"))
    assert response.json() == {}
    assert [o.label for o in store.get_options_by_node(yes_tree["q1"].id)] == ["Yes", "No"]
    assert slack_mock.update_view.call_args.args[1]["callback_id"] == f"node_editor_{yes_tree['q1'].id}"


def test_add_option_rejects_foreign_target(client, store, yes_tree):
    other = store.create_tree("Other", None, "U9")
    foreign = store.create_node(other.id, NodeType.ANSWER, "Elsewhere")
    ctx = NavigationContext(tree_id=yes_tree["tree"].id, node_id=yes_tree["q1"].id)
    values = {"label": {"label_input": text_value("Leak")}, "next_node": {"next_node_select": selected(foreign.id)}}
    response = interact(client, submission("add_option_modal", values, ctx))
    assert response.json()["errors"] == {"next_node": "That node is not part of this tree"}
    assert len(store.get_options_by_node(yes_tree["q1"].id)) == 1


def test_edit_option_submission(client, store, yes_tree):
    ctx = NavigationContext(tree_id=yes_tree["tree"].id, node_id=yes_tree["q1"].id, option_id=yes_tree["yes"].id)
    values = {"label": {"label_input": text_value("Yep")}, "next_node": {"next_node_select": selected(None)}}
    response = interact(client, submission("edit_option_modal", values, ctx))
    assert response.json()["response_action"] == "update"
    option = store.get_option(yes_tree["yes"].id)
    assert option.label == "Yep"
    assert option.next_node_id is None


def test_delete_option_returns_to_node_editor(client, slack_mock, store, yes_tree):
    ctx = NavigationContext(tree_id=yes_tree["tree"].id, node_id=yes_tree["q1"].id, option_id=yes_tree["yes"].id)
    interact(client, block_action("delete_option", yes_tree["yes"].id,
                                  view={"id": "V_OPT", "private_metadata": ctx.to_metadata()}))
    assert store.get_option(yes_tree["yes"].id) is None
    view_id, view = slack_mock.update_view.call_args.args
    assert view_id == "V_OPT"
    assert view["callback_id"] == f"node_editor_{yes_tree['q1'].id}"


def test_edit_in_browser_sends_link(client, slack_mock, store, yes_tree):
    ctx = NavigationContext(tree_id=yes_tree["tree"].id)
    interact(client, block_action("edit_in_browser", view={"id": "V1", "private_metadata": ctx.to_metadata()}))
    user_id, text, blocks = slack_mock.post_message.call_args.args
    assert user_id == "U123"
    url = text.split("\n\n")[1]
    assert url.startswith(f"{config.APP_URL}/edit/")
    token = url.rsplit("/", 1)[1]
    assert client.app.state.tokens.validate(token).tree_id == yes_tree["tree"].id
    assert "expires in 1 hour" in blocks[0]["text"]["text"]


def test_workflow_step_edit_and_save(client, slack_mock, yes_tree):
    interact(client, {"type": "workflow_step_edit", "trigger_id": "T1",
                      "workflow_step": {"workflow_step_edit_id": "WSEDIT"}})
    view = slack_mock.open_view.call_args.args[1]
    assert view["type"] == "workflow_step"
    assert view["blocks"][1]["element"]["options"][0]["value"] == yes_tree["tree"].id

    payload = {"type": "view_submission", "view": {
        "callback_id": "run_decision_tree_workflow",
        "private_metadata": view["private_metadata"],
        "state": {"values": {
            "tree_select_block": {"tree_select": selected(yes_tree["tree"].id)},
            "send_to_block": {"send_to_select": selected("current_channel")},
            "channel_block": {"channel_select": {"selected_conversation": "C77"}},
        }},
    }}
    interact(client, payload)
    edit_id, inputs, outputs = slack_mock.update_workflow_step.call_args.args
    assert edit_id == "WSEDIT"
    assert inputs == {
        "tree_id": {"value": yes_tree["tree"].id},
        "send_to": {"value": "current_channel"},
        "channel_id": {"value": "C77"},
    }
    assert outputs[0]["name"] == "tree_name"


def test_stale_button_tells_the_user(client, slack_mock):
    response = interact(client, block_action("manage_node_gone", "gone"))
    assert response.status_code == 200
    slack_mock.push_view.assert_not_called()
    user_id, text = slack_mock.post_message.call_args.args
    assert user_id == "U123"
    assert text.startswith("⚠️ Node not found.")


def test_submission_for_deleted_node_shows_error(client, slack_mock, store, yes_tree):
    q1 = yes_tree["q1"]
    store.delete_node(q1.id)
    values = {
        "node_type": {"node_type_select": selected("decision")},
        "title": {"title_input": text_value("Renamed")},
    }
    ctx = NavigationContext(tree_id=yes_tree["tree"].id, node_id=q1.id)
    response = interact(client, submission("edit_node_modal", values, ctx, "V_NODE"))
    body = response.json()
    assert body["response_action"] == "update"
    assert "Node not found" in body["view"]["blocks"][0]["text"]["text"]
    slack_mock.update_view.assert_not_called()


def test_unreachable_slack_is_acknowledged(client, slack_mock):
    slack_mock.open_view.side_effect = SurfaceUnreachable("views.open", "expired_trigger_id")
    response = interact(client, block_action("create_tree"))
    assert response.status_code == 200
    assert response.json() == {}
