import asyncio
import logging
from typing import List, Optional, Dict, Any

import aiohttp
from slack_sdk.errors import SlackApiError, SlackClientError
from slack_sdk.signature import Clock, SignatureVerifier
from slack_sdk.web.async_client import AsyncWebClient

from app.core.errors import SurfaceUnreachable

logger = logging.getLogger(__name__)


class FixedClock(Clock):
    def __init__(self, now: float):
        self._now = now

    def now(self) -> float:
        return self._now


def verify_signature(secret: str, timestamp: Optional[str], body: bytes, signature: Optional[str],
                     now: Optional[float] = None, max_age: int = 300) -> bool:
    """Checks Slack's ``v0`` request signature over the raw body."""
    if not (secret and timestamp and signature):
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False
    clock = FixedClock(now) if now is not None else Clock()
    # SignatureVerifier has its own fixed five minute window; max_age can only tighten it
    if abs(clock.now() - ts) > max_age:
        return False
    return SignatureVerifier(secret, clock=clock).is_valid(body, timestamp, signature)


class SlackClient:
    """The few Web API methods the app needs, on top of ``AsyncWebClient``.

    Failures are reported as ``SurfaceUnreachable`` and never retried.
    """

    def __init__(self, token: str, api_url: str = "https://slack.com/api"):
        self.client = AsyncWebClient(token=token or None, base_url=api_url.rstrip("/") + "/", timeout=30)

    async def call(self, method: str, func, **kwargs) -> Dict[str, Any]:
        try:
            response = await func(**kwargs)
        except SlackApiError as e:
            error = e.response.get("error", "unknown_error") if e.response is not None else str(e)
            logger.error(f"Slack {method} rejected the call: {error}")
            raise SurfaceUnreachable(method, error) from e
        except (SlackClientError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Slack {method} unreachable: {e!r}")
            raise SurfaceUnreachable(method, str(e) or type(e).__name__) from e
        return response.data

    async def publish_home(self, user_id: str, view: Dict[str, Any]):
        return await self.call("views.publish", self.client.views_publish, user_id=user_id, view=view)

    async def open_view(self, trigger_id: str, view: Dict[str, Any]):
        return await self.call("views.open", self.client.views_open, trigger_id=trigger_id, view=view)

    async def push_view(self, trigger_id: str, view: Dict[str, Any]):
        return await self.call("views.push", self.client.views_push, trigger_id=trigger_id, view=view)

    async def update_view(self, view_id: str, view: Dict[str, Any]):
        return await self.call("views.update", self.client.views_update, view_id=view_id, view=view)

    async def post_message(self, channel: str, text: str, blocks: Optional[List[Dict[str, Any]]] = None):
        kwargs = {"channel": channel, "text": text}
        if blocks:
            kwargs["blocks"] = blocks
        return await self.call("chat.postMessage", self.client.chat_postMessage, **kwargs)

    async def update_message(self, channel: str, ts: str, text: str, blocks: List[Dict[str, Any]]):
        return await self.call("chat.update", self.client.chat_update, channel=channel, ts=ts, text=text,
                               blocks=blocks)

    async def update_workflow_step(self, edit_id: str, inputs: Dict[str, Any], outputs: List[Dict[str, Any]]):
        return await self.call("workflows.updateStep", self.client.workflows_updateStep,
                               workflow_step_edit_id=edit_id, inputs=inputs, outputs=outputs)

    async def complete_workflow_step(self, execute_id: str, outputs: Dict[str, Any]):
        return await self.call("workflows.stepCompleted", self.client.workflows_stepCompleted,
                               workflow_step_execute_id=execute_id, outputs=outputs)

    async def fail_workflow_step(self, execute_id: str, message: str):
        return await self.call("workflows.stepFailed", self.client.workflows_stepFailed,
                               workflow_step_execute_id=execute_id, error={"message": message})
