"""Error taxonomy for the thought space.

Every error carries a stable machine-readable ``code`` plus a message.
Adapters (MCP server, CLI) render ``to_dict()`` as-is so no code is lost.
"""


class ThoughtSpaceError(Exception):
    """Base class for all engine errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(ThoughtSpaceError):
    """Malformed or out-of-range input. Never retried."""

    code = "VALIDATION_ERROR"


class NotFoundError(ThoughtSpaceError):
    """A referenced thought does not exist."""

    code = "NOT_FOUND"


class StoreError(ThoughtSpaceError):
    """The vector store or the query log failed."""

    code = "STORE_ERROR"


class EmbeddingError(StoreError):
    """The embedding model failed to produce a vector."""

    code = "EMBEDDING_FAILED"
