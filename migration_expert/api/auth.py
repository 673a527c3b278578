from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from migration_expert.core.dependencies import Services, get_services
from migration_expert.core.logging import log_event
from migration_expert.features.identity import service as accounts

router = APIRouter(prefix="/api", tags=["auth"])


class CredentialsIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


@router.post("/signup")
async def signup(body: CredentialsIn, services: Services = Depends(get_services)):
    identity = await accounts.sign_up(services.identity, services.profiles, body.email, body.password)
    log_event("info", "auth.signup", user_id=identity.id, event_type="signup")
    return {"success": True, "userId": identity.id}


@router.post("/login")
async def login(body: CredentialsIn, services: Services = Depends(get_services)):
    identity, session = await accounts.sign_in(services.identity, body.email, body.password)
    log_event("info", "auth.login", user_id=identity.id, event_type="login")
    return {"success": True, "user": identity.to_dict(), "session": session.to_dict()}
