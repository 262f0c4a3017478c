from typing import Optional


class DecisionTreeError(Exception):
    """Base class for every failure a tree command can report to an actor."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DecisionTreeError):
    """Bad input shape. The command had no effect."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFound(DecisionTreeError):
    entity = "Entity"

    def __init__(self, entity_id: Optional[str] = None, entity: Optional[str] = None):
        if entity:
            self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{self.entity} not found")


class OptionNotFound(NotFound):
    entity = "Option"


class NodeMissing(NotFound):
    entity = "Node"


class InvalidToken(DecisionTreeError):
    def __init__(self):
        super().__init__("Invalid or expired token")


class RootNotFound(DecisionTreeError):
    NO_NODES = "no nodes"
    AMBIGUOUS = "ambiguous"

    def __init__(self, reason: str):
        super().__init__(f"No unambiguous root node ({reason})")
        self.reason = reason


class SurfaceUnreachable(DecisionTreeError):
    """A call to the chat platform failed. Never retried."""

    def __init__(self, method: str, detail: str):
        super().__init__(f"{method} failed: {detail}")
        self.method = method
        self.detail = detail
