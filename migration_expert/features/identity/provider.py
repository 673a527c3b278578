"""
Identity provider protocol.

Defines the interface the pipeline relies on for accounts and bearer
tokens. Credentials never leave the provider; callers only ever receive a
verified Identity.
"""
from typing import Protocol, Optional
from dataclasses import dataclass, asdict


@dataclass(frozen=True)
class Identity:
    """A verified user. Only an IdentityProvider creates these."""
    id: str
    email: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class IdentityRejected(Exception):
    """The provider refused the credentials, the token or the signup."""


class IdentityProvider(Protocol):
    """
    Protocol for identity providers.

    Implementations raise IdentityRejected when the provider answers "no",
    and UpstreamUnavailableError when the provider cannot be reached.
    """

    async def sign_up(self, email: str, password: str) -> Identity:
        """Create a confirmed account and return its identity."""
        ...

    async def sign_in(self, email: str, password: str) -> tuple[Identity, AuthSession]:
        """Exchange email/password for an identity and a bearer session."""
        ...

    async def verify_token(self, token: str) -> Identity:
        """Verify a bearer token and resolve the user it was issued to."""
        ...
