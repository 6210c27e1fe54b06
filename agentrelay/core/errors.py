"""Error taxonomy shared by the agent engine, tool registry and webhook subsystem.

Every error carries a stable ``code`` so that it can be recorded in an
execution step or a delivery attempt and mapped to an HTTP status by the
server layer without string matching on messages.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class AgentRelayError(Exception):
    """Base error for all agentrelay exceptions."""

    code: str = "AgentRelayError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.code, "message": self.message}


class NotFoundError(AgentRelayError):
    """Raised when an agent, tool, run or webhook does not exist (or is not visible)."""

    code = "NotFoundError"

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: '{identifier}'")
        self.kind = kind
        self.identifier = identifier


class ValidationError(AgentRelayError):
    """Raised for bad tool arguments or a malformed subscription."""

    code = "ValidationError"

    def __init__(self, message: str, *, errors: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.errors:
            data["errors"] = list(self.errors)
        return data


class ExecutionError(AgentRelayError):
    """Raised when the logic bound to a tool fails."""

    code = "ExecutionError"


class ExecutionLimitExceeded(AgentRelayError):
    """Raised (or recorded) when the tool-calling loop hits its iteration cap."""

    code = "ExecutionLimitExceeded"


class Cancelled(AgentRelayError):
    """Recorded when a run is cancelled at a loop boundary."""

    code = "Cancelled"


class TransportError(AgentRelayError):
    """Retryable delivery or network failure."""

    code = "TransportError"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidSignature(AgentRelayError):
    """Raised by receivers when a webhook signature does not verify."""

    code = "InvalidSignature"


class FatalProviderError(AgentRelayError):
    """LLM provider auth/quota failure (or LLM timeout); aborts the run."""

    code = "FatalProviderError"


class AuthenticationError(AgentRelayError):
    """Raised when no verified bearer credential is available."""

    code = "AuthenticationError"
