from __future__ import annotations

from typing import List, Optional


class PromptIndexError(Exception):
    """Base class for everything the prompt index raises."""


class ValidationError(PromptIndexError):
    """Input for add/update/folder ops was rejected before touching state."""

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        msgs = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ())) or "record"
            msgs.append(f"{loc}: {err.get('msg', 'invalid')}")
        return cls("; ".join(msgs) or "invalid input", msgs)


class NotFoundError(PromptIndexError, KeyError):
    def __init__(self, kind: str, id_value: str) -> None:
        super().__init__(f"{kind} not found: {id_value}")
        self.kind = kind
        self.id = id_value

    def __str__(self) -> str:
        return self.args[0]


class BackendError(PromptIndexError):
    """The backend collaborator failed. The local change has been reverted."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None) -> None:
        msg = f"backend {operation} failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
        self.operation = operation
        self.cause = cause
