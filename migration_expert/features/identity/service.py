"""Account signup/login on top of the configured identity provider."""

import logging
from typing import Optional

from migration_expert.core.errors import InvalidRequestError
from migration_expert.core.logging import log_event
from migration_expert.features.identity.memory import InMemoryIdentityProvider
from migration_expert.features.identity.provider import AuthSession, Identity, IdentityProvider, IdentityRejected
from migration_expert.features.identity.supabase import SupabaseIdentityProvider
from migration_expert.features.users.service import ProfileStore

logger = logging.getLogger("migration_expert")

MIN_PASSWORD_LENGTH = 6


def build_identity_provider(cfg) -> IdentityProvider:
    backend = (getattr(cfg, "IDENTITY_BACKEND", "auto") or "auto").lower()
    configured = bool(cfg.SUPABASE_URL and cfg.SUPABASE_SERVICE_ROLE_KEY)
    if backend == "supabase" or (backend == "auto" and configured):
        return SupabaseIdentityProvider(
            cfg.SUPABASE_URL or "",
            cfg.SUPABASE_SERVICE_ROLE_KEY or "",
            jwt_secret=cfg.SUPABASE_JWT_SECRET,
            timeout=cfg.IDENTITY_TIMEOUT_SECONDS,
        )
    logger.warning("Using in-memory identity provider; accounts are lost on restart")
    return InMemoryIdentityProvider(secret=getattr(cfg, "LOCAL_AUTH_SECRET", None))


def _validate_credentials(email: Optional[str], password: Optional[str]) -> None:
    if not email or "@" not in email:
        raise InvalidRequestError("Invalid email address")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidRequestError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


async def sign_up(provider: IdentityProvider, profiles: ProfileStore, email: Optional[str], password: Optional[str]) -> Identity:
    """Create an account and its profile row.

    Raises:
        InvalidRequestError: bad email/password or the provider refused the signup
        UpstreamUnavailableError: the provider could not be reached
    """
    _validate_credentials(email, password)
    try:
        identity = await provider.sign_up(email.strip(), password)
    except IdentityRejected as e:
        raise InvalidRequestError(str(e))

    display_name = email.split("@")[0]
    try:
        await profiles.create(identity.id, display_name)
    except Exception:
        # Incidental write: the account exists, a missing profile row is logged only
        log_event("error", "profile.create_failed", user_id=identity.id, exc_info=True)

    return identity


async def sign_in(provider: IdentityProvider, email: Optional[str], password: Optional[str]) -> tuple[Identity, AuthSession]:
    if not email or not password:
        raise InvalidRequestError("Login failed")
    try:
        return await provider.sign_in(email.strip(), password)
    except IdentityRejected:
        raise InvalidRequestError("Login failed")
