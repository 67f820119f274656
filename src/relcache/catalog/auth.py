"""Caller identity and the elevated-privilege gate.

Tokens are issued elsewhere; this module only turns a presented token into a
:class:`Principal` and checks its role. Every write workflow calls
:func:`require_admin` before it touches the store.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from relcache.catalog.errors import PermissionDeniedError

if TYPE_CHECKING:
    from collections.abc import Mapping

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Principal:
    """A verified caller.

    Attributes:
        uid: Caller id, recorded in logs.
        role: Role claim; ``admin`` may write.
        token: The presented token, forwarded to the revalidation endpoint.
    """

    uid: str
    role: str
    token: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


class TokenVerifier(Protocol):
    """Resolves a bearer token to the caller it was issued to."""

    def verify(self, token: str) -> Principal:
        """Return the principal for *token*.

        Raises:
            PermissionDeniedError: If the token is unknown or invalid.
        """
        ...


class StaticTokenVerifier:
    """Verify tokens against a fixed table, as loaded from configuration.

    The table maps token to ``{"uid": ..., "role": ...}``.
    """

    def __init__(self, tokens: Mapping[str, Mapping[str, str]] | None = None) -> None:
        self._tokens = {token: dict(claims) for token, claims in (tokens or {}).items()}

    def verify(self, token: str) -> Principal:
        if not token:
            raise PermissionDeniedError("You must be logged in to perform this action.")
        for known, claims in self._tokens.items():
            if hmac.compare_digest(known.encode(), token.encode()):
                return Principal(
                    uid=claims.get("uid", "unknown"),
                    role=claims.get("role", ""),
                    token=token,
                )
        raise PermissionDeniedError("Invalid or expired token.")


def require_admin(verifier: TokenVerifier, token: str | None) -> Principal:
    """Verify *token* and require the admin role.

    Raises:
        PermissionDeniedError: If the token is rejected or is not an admin's.
    """
    principal = verifier.verify(token or "")
    if not principal.is_admin:
        raise PermissionDeniedError("Insufficient permissions.")
    return principal
