from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.models import Principal, Role
from app.notifications import restaurant_recipient
from app.routes.deps import get_principal, get_services
from app.services import Services

router = APIRouter(prefix="/notifications", tags=["notifications"])


def recipient_for(principal: Principal) -> str:
    """Restaurant staff share their restaurant's inbox; everyone else has their own."""
    if principal.role == Role.RESTAURANT and principal.restaurant_id:
        return restaurant_recipient(principal.restaurant_id)
    return principal.id


@router.get("")
async def list_unseen(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    notifications = await services.notifications.unseen(recipient_for(principal))
    return JSONResponse(
        status_code=200,
        content={"status": "ok", "notifications": [n.model_dump(mode="json") for n in notifications]},
    )


@router.put("/seen")
async def mark_all_seen(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Mark every unseen notification of the caller as seen. Repeating it affects nothing."""
    affected = await services.notifications.mark_all_seen(recipient_for(principal))
    return JSONResponse(status_code=200, content={"status": "ok", "marked": affected})
