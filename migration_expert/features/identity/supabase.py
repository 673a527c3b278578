"""
Supabase auth (GoTrue) identity provider.

- Signup goes through the admin API with the service-role key so accounts
  are created already confirmed.
- Tokens are verified locally when SUPABASE_JWT_SECRET is configured,
  otherwise by asking GoTrue who the token belongs to.
"""
import logging
from typing import Any, Dict, Optional

import httpx
import jwt

from migration_expert.core.errors import UpstreamUnavailableError
from migration_expert.features.identity.provider import AuthSession, Identity, IdentityRejected

logger = logging.getLogger(__name__)

JWT_AUDIENCE = "authenticated"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("msg", "error_description", "message", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"


def _identity_from_user(user: Dict[str, Any]) -> Identity:
    user_id = user.get("id")
    if not user_id:
        raise IdentityRejected("Identity provider returned no user id")
    return Identity(id=str(user_id), email=user.get("email"))


class SupabaseIdentityProvider:
    def __init__(
        self,
        url: str,
        service_role_key: str,
        *,
        jwt_secret: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = f"{url.rstrip('/')}/auth/v1"
        self.service_role_key = service_role_key
        self.jwt_secret = jwt_secret
        self.timeout = timeout
        self._client = client

    def _headers(self, bearer: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {bearer or self.service_role_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, *, bearer: Optional[str] = None, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                return await self._client.request(method, url, headers=self._headers(bearer), timeout=self.timeout, **kwargs)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, headers=self._headers(bearer), **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"Identity provider unreachable: {type(e).__name__}")
            raise UpstreamUnavailableError("Identity provider unavailable") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code >= 500:
            raise UpstreamUnavailableError("Identity provider unavailable")
        if response.status_code >= 400:
            raise IdentityRejected(_error_message(response))

    async def sign_up(self, email: str, password: str) -> Identity:
        response = await self._request(
            "POST",
            "/admin/users",
            json={"email": email, "password": password, "email_confirm": True},
        )
        self._raise_for_status(response)
        body = response.json()
        # Admin API returns the user object, some versions wrap it in {"user": ...}
        user = body.get("user", body) if isinstance(body, dict) else {}
        return _identity_from_user(user)

    async def sign_in(self, email: str, password: str) -> tuple[Identity, AuthSession]:
        response = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        self._raise_for_status(response)
        body = response.json()
        identity = _identity_from_user(body.get("user") or {})
        session = AuthSession(
            access_token=body["access_token"],
            token_type=body.get("token_type", "bearer"),
            expires_in=body.get("expires_in"),
            refresh_token=body.get("refresh_token"),
        )
        return identity, session

    async def verify_token(self, token: str) -> Identity:
        if self.jwt_secret:
            return self._verify_locally(token)

        response = await self._request("GET", "/user", bearer=token)
        self._raise_for_status(response)
        return _identity_from_user(response.json())

    def _verify_locally(self, token: str) -> Identity:
        try:
            claims = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=["HS256"],
                audience=JWT_AUDIENCE,
                options={"verify_signature": True, "verify_exp": True, "require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise IdentityRejected("Token expired")
        except jwt.InvalidTokenError as e:
            logger.debug(f"Invalid token: {e}")
            raise IdentityRejected("Invalid token")
        return Identity(id=str(claims["sub"]), email=claims.get("email"))
