# foodrelay/routers/deliveries.py
from fastapi import APIRouter, Depends

from foodrelay.core.errors import ForbiddenError
from foodrelay.core.security import Principal, get_current_principal
from foodrelay.deps import get_mailer, get_matcher, get_repo
from foodrelay.schemas import (
    ConfirmPickupIn, DeliveryOut, HistoryIn, HistoryOut, StartDeliveryIn, StartDeliveryOut, TransitionIn,
)
from foodrelay.services import deliveries

router = APIRouter(prefix="/deliveries", tags=["deliveries"])

@router.post("/start", response_model=StartDeliveryOut, status_code=201)
async def start_delivery(
    body: StartDeliveryIn,
    principal: Principal = Depends(get_current_principal),
    repo=Depends(get_repo),
    mailer=Depends(get_mailer),
    matcher=Depends(get_matcher),
):
    # callers may only start deliveries they are a party to
    own = body.ngo_id if principal.is_ngo else body.donor_id
    if own and own.strip() and own.strip() != principal.id:
        raise ForbiddenError("Cannot start a delivery on behalf of another account")
    return await deliveries.start_delivery(body.ngo_id, body.donor_id, body.food_item_id, repo, mailer, matcher)

@router.post("/history", response_model=HistoryOut)
async def delivery_history(
    body: HistoryIn,
    principal: Principal = Depends(get_current_principal),
    repo=Depends(get_repo),
):
    # history is private to the collecting NGO
    if not principal.is_ngo:
        raise ForbiddenError("Only NGOs can read delivery history")
    if body.ngo_id and body.ngo_id.strip() and body.ngo_id.strip() != principal.id:
        raise ForbiddenError("Cannot read another NGO's history")
    return {"data": await deliveries.get_history(body.ngo_id, repo)}

@router.get("/{delivery_id}", response_model=DeliveryOut)
async def get_delivery(delivery_id: str, principal: Principal = Depends(get_current_principal),
                       repo=Depends(get_repo)):
    return deliveries.serialize(await deliveries.get_delivery(delivery_id, principal, repo))

@router.post("/{delivery_id}/transition", response_model=DeliveryOut)
async def transition_delivery(delivery_id: str, body: TransitionIn,
                              principal: Principal = Depends(get_current_principal),
                              repo=Depends(get_repo), matcher=Depends(get_matcher)):
    updated = await deliveries.transition(delivery_id, body.to_status, body.version, principal, repo,
                                          body.note, matcher)
    return deliveries.serialize(updated)

@router.post("/{delivery_id}/confirm-pickup", response_model=DeliveryOut)
async def confirm_pickup(delivery_id: str, body: ConfirmPickupIn,
                         principal: Principal = Depends(get_current_principal),
                         repo=Depends(get_repo)):
    return deliveries.serialize(await deliveries.confirm_pickup(delivery_id, body.code, principal, repo))
