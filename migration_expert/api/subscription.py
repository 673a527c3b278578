from fastapi import APIRouter, Depends

from migration_expert.core.auth import require_identity
from migration_expert.core.dependencies import Services, get_services
from migration_expert.features.identity.provider import Identity
from migration_expert.features.subscriptions.service import get_subscription

router = APIRouter(prefix="/api", tags=["subscription"])


@router.get("/subscription")
async def subscription_endpoint(
    identity: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
):
    """The caller's subscription, or null when there is none or the lookup failed."""
    subscription = await get_subscription(services.subscriptions, identity.id)
    return {"subscription": subscription}
