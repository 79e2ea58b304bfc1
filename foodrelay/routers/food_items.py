from typing import List

from fastapi import APIRouter, Depends

from foodrelay.core.errors import NotFoundError
from foodrelay.core.security import Principal, get_current_principal, require_role
from foodrelay.deps import get_geocoder, get_mailer, get_matcher, get_repo
from foodrelay.schemas import FoodItemCreated, FoodItemIn, FoodItemOut, InterestOut
from foodrelay.services import food_items

router = APIRouter(prefix="/food-items", tags=["food-items"])

@router.post("", response_model=FoodItemCreated, status_code=201)
async def create_food_item(
    body: FoodItemIn,
    principal: Principal = Depends(require_role("donor")),
    repo=Depends(get_repo),
    geocode=Depends(get_geocoder),
    matcher=Depends(get_matcher),
):
    item, started = await food_items.create_food_item(principal.id, body.model_dump(), repo, geocode, matcher)
    return {"food_item": food_items.serialize(item), "search_started": started}

@router.get("/mine", response_model=List[FoodItemOut])
async def my_food_items(principal: Principal = Depends(require_role("donor")), repo=Depends(get_repo)):
    return [food_items.serialize(d) for d in await repo.list_food_items(donor_id=principal.id)]

@router.get("/available", response_model=List[FoodItemOut])
async def available_food_items(repo=Depends(get_repo)):
    return [food_items.serialize(d) for d in await repo.list_food_items(status="available")]

@router.get("/{item_id}", response_model=FoodItemOut)
async def get_food_item(item_id: str, principal: Principal = Depends(get_current_principal),
                        repo=Depends(get_repo)):
    item = await repo.get_food_item(item_id)
    if not item:
        raise NotFoundError("Food item not found")
    return food_items.serialize(item)

@router.post("/{item_id}/interest", response_model=InterestOut)
async def register_interest(
    item_id: str,
    principal: Principal = Depends(require_role("ngo")),
    repo=Depends(get_repo),
    mailer=Depends(get_mailer),
    matcher=Depends(get_matcher),
):
    item, cancelled = await food_items.register_interest(principal.id, item_id, repo, mailer, matcher)
    return {"food_item": food_items.serialize(item), "search_cancelled": cancelled}
