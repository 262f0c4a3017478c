import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.core import config
from app.db.store import GraphStore
from app.services.slack_client import SlackClient
from app.services.token_service import EditTokenAuthority
from app.services.navigation import NavigationEngine
from app.services.editing import TreeEditingService
from app.routers import slack, editor

# Logging
if config.LOG_LEVEL == "NONE":
    logging.getLogger("app").setLevel(logging.CRITICAL + 1)
else:
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    app.state.store.dispose()


app = FastAPI(lifespan=lifespan)

# Storage
if config.DATABASE_URL.startswith("sqlite:///") and not config.DATABASE_URL.endswith(":memory:"):
    os.makedirs(os.path.dirname(config.DATABASE_URL[len("sqlite:///"):]) or ".", exist_ok=True)

# Services
store = GraphStore(config.DATABASE_URL)
store.create_all()
slack_client = SlackClient(config.SLACK_BOT_TOKEN, config.SLACK_API_URL)
tokens = EditTokenAuthority(store, config.EDIT_TOKEN_TTL_MINUTES)
navigator = NavigationEngine(store)
tree_editor = TreeEditingService(store)

# App State
app.state.store = store
app.state.slack = slack_client
app.state.tokens = tokens
app.state.navigator = navigator
app.state.editor = tree_editor

# Include Routers
app.include_router(slack.router, prefix="/api")
app.include_router(editor.router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    import argparse

    parser = argparse.ArgumentParser(description="Run the decision tree Slack app")
    parser.add_argument("--port", type=int, default=8000, help="Port to run the service on")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Host to bind to")
    args = parser.parse_args()

    uvicorn.run(app, host=args.host, port=args.port)
