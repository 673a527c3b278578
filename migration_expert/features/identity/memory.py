"""
In-process identity provider for local development and tests.

Passwords are bcrypt-hashed; sessions are HS256 JWTs signed with a
process secret, so tokens die with the process.
"""
import secrets
import threading
import time
from typing import Callable, Dict, Optional, Tuple
from uuid import uuid4

import bcrypt
import jwt
from starlette.concurrency import run_in_threadpool

from migration_expert.features.identity.provider import AuthSession, Identity, IdentityRejected

TOKEN_TTL_SECONDS = 3600
ISSUER = "migration-expert-local"


def _secret_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes and newer releases reject longer input
    return password.encode()[:72]


class InMemoryIdentityProvider:
    def __init__(self, secret: Optional[str] = None, *, token_ttl: int = TOKEN_TTL_SECONDS, time_fn: Callable[[], float] = time.time):
        self.secret = secret or secrets.token_urlsafe(32)
        self.token_ttl = token_ttl
        self.time_fn = time_fn
        # email -> (identity, password hash)
        self._accounts: Dict[str, Tuple[Identity, bytes]] = {}
        self._ids: Dict[str, Identity] = {}
        self._lock = threading.Lock()

    async def sign_up(self, email: str, password: str) -> Identity:
        key = email.strip().lower()
        # bcrypt is deliberately slow; keep it off the event loop
        password_hash = await run_in_threadpool(bcrypt.hashpw, _secret_bytes(password), bcrypt.gensalt())
        with self._lock:
            if key in self._accounts:
                raise IdentityRejected("A user with this email address has already been registered")
            identity = Identity(id=str(uuid4()), email=key)
            self._accounts[key] = (identity, password_hash)
            self._ids[identity.id] = identity
        return identity

    async def sign_in(self, email: str, password: str) -> tuple[Identity, AuthSession]:
        account = self._accounts.get(email.strip().lower())
        if account is None or not await run_in_threadpool(bcrypt.checkpw, _secret_bytes(password), account[1]):
            raise IdentityRejected("Invalid login credentials")
        identity = account[0]
        return identity, AuthSession(access_token=self.issue_token(identity), expires_in=self.token_ttl)

    def issue_token(self, identity: Identity) -> str:
        now = int(self.time_fn())
        payload = {
            "sub": identity.id,
            "email": identity.email,
            "iat": now,
            "exp": now + self.token_ttl,
            "iss": ISSUER,
        }
        return jwt.encode(payload, self.secret, algorithm="HS256")

    async def verify_token(self, token: str) -> Identity:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=["HS256"],
                issuer=ISSUER,
                options={"verify_signature": True, "verify_exp": True},
            )
        except jwt.ExpiredSignatureError:
            raise IdentityRejected("Token expired")
        except jwt.InvalidTokenError:
            raise IdentityRejected("Invalid token")

        identity = self._ids.get(claims.get("sub"))
        if identity is None:
            raise IdentityRejected("Unknown user")
        return identity
