import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from app.core.errors import InvalidToken
from app.db.schema import utcnow
from app.db.store import GraphStore
from app.models.decision_tree import EditToken

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class EditTokenAuthority:
    """Issues and checks the bearer tokens behind browser editor links.

    Only the SHA-256 digest of a token is stored and looked up, so a lookup
    never compares attacker-chosen bytes against the secret itself. Tokens
    are never renewed or revoked; they just stop validating once
    ``expires_at`` has passed.
    """

    def __init__(self, store: GraphStore, ttl_minutes: int = 60):
        self.store = store
        self.ttl = timedelta(minutes=ttl_minutes)

    def issue(self, tree_id: str, actor: str, now: Optional[datetime] = None) -> EditToken:
        now = now or utcnow()
        token = secrets.token_hex(32)
        edit_token = self.store.create_edit_token(hash_token(token), tree_id, actor, now + self.ttl)
        logger.info(f"Edit token issued for tree {tree_id} to {actor}, expires {edit_token.expires_at.isoformat()}")
        return edit_token.model_copy(update={"token": token})

    def validate(self, token: str, now: Optional[datetime] = None) -> EditToken:
        if not token:
            raise InvalidToken()
        edit_token = self.store.get_edit_token(hash_token(token))
        if not edit_token or not edit_token.is_valid_at(now or utcnow()):
            raise InvalidToken()
        return edit_token
