import os
import pytest

# Must be set before app.main is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SLACK_SIGNING_SECRET", "test_signing_secret")
os.environ.setdefault("LOG_LEVEL", "NONE")

from fastapi.testclient import TestClient
from app.db.store import GraphStore
from app.models.decision_tree import NodeType
from app.services.editing import TreeEditingService
from app.services.navigation import NavigationEngine
from app.services.token_service import EditTokenAuthority

STATE_KEYS = ("store", "slack", "tokens", "navigator", "editor")


@pytest.fixture
def store():
    s = GraphStore("sqlite://")
    s.create_all()
    yield s
    s.dispose()


@pytest.fixture
def tree(store):
    return store.create_tree("Support triage", "Routes tickets", "U123")


@pytest.fixture
def yes_tree(store, tree):
    """Q1 (decision) --Yes--> A1 (answer)."""
    q1 = store.create_node(tree.id, NodeType.DECISION, "Is it plugged in?")
    a1 = store.create_node(tree.id, NodeType.ANSWER, "Call support", "Dial 555-0100")
    yes = store.create_option(q1.id, "Yes", a1.id)
    return {"tree": tree, "q1": q1, "a1": a1, "yes": yes}


@pytest.fixture
def slack_mock(mocker):
    return mocker.AsyncMock()


def _attach(app, store, slack_mock):
    saved = {key: getattr(app.state, key) for key in STATE_KEYS}
    app.state.store = store
    app.state.slack = slack_mock
    app.state.tokens = EditTokenAuthority(store, 60)
    app.state.navigator = NavigationEngine(store)
    app.state.editor = TreeEditingService(store)
    return saved


@pytest.fixture
def raw_client(store, slack_mock):
    """App wired to the test store, with real signature checks."""
    from app.main import app
    saved = _attach(app, store, slack_mock)
    yield TestClient(app)
    for key, value in saved.items():
        setattr(app.state, key, value)


@pytest.fixture
def client(raw_client):
    from app.main import app
    from app.routers.slack import verify_slack_request
    app.dependency_overrides[verify_slack_request] = lambda: None
    yield raw_client
    app.dependency_overrides.clear()
