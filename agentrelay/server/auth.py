"""
Bearer Authentication Boundary.

Token issuance and verification belong to an external identity service; the
server only needs a verified credential resolving to ``{id, email, role}``.
``TokenVerifier`` is that seam. ``StaticTokenVerifier`` serves tokens
configured in settings (``AUTH__TOKENS``) for local and test deployments.
"""

from typing import Annotated, Dict, Optional, Protocol

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from agentrelay.core.errors import AuthenticationError


class CurrentUser(BaseModel):
    id: str
    email: str = ""
    role: str = "user"


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> Optional[CurrentUser]: ...


class StaticTokenVerifier:
    def __init__(self, tokens: Dict[str, CurrentUser]) -> None:
        self._tokens = dict(tokens)

    async def verify(self, token: str) -> Optional[CurrentUser]:
        return self._tokens.get(token)


_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(_bearer)],
) -> CurrentUser:
    """
    Resolve the caller from the ``Authorization: Bearer`` header.

    Raises:
        AuthenticationError: If the header is missing or the token does not verify.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("missing bearer credential")
    verifier: TokenVerifier = request.app.state.verifier
    user = await verifier.verify(credentials.credentials)
    if user is None:
        raise AuthenticationError("invalid bearer credential")
    return user


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
