# foodrelay/routers/accounts.py
from typing import List, Type

from fastapi import APIRouter, Depends, Query

from foodrelay.core.errors import ForbiddenError
from foodrelay.core.security import Principal, get_current_principal
from foodrelay.deps import get_geocoder, get_mailer, get_repo
from foodrelay.schemas import (
    AccountOut, AccountRegister, ChangePasswordIn, DonorRegister, LoginIn, MessageOut,
    NgoRegister, OtpRequestIn, RefreshIn, ResetPasswordIn, TokenOut, UpdateDetailsIn,
)
from foodrelay.services import accounts


def build_router(role: str, prefix: str, register_model: Type[AccountRegister]) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[prefix.strip("/")])

    async def current(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role != role:
            raise ForbiddenError(f"Only {role} accounts can do this")
        return principal

    @router.post("/register", response_model=AccountOut, status_code=201)
    async def register(body: register_model, repo=Depends(get_repo), geocode=Depends(get_geocoder)):
        created = await accounts.register(role, body.model_dump(), repo, geocode)
        return accounts.public(role, created)

    @router.post("/login", response_model=TokenOut)
    async def login(body: LoginIn, repo=Depends(get_repo)):
        return await accounts.login(role, body.username, body.email, body.password, repo)

    @router.post("/refresh-token", response_model=TokenOut)
    async def refresh_token(body: RefreshIn, repo=Depends(get_repo)):
        return await accounts.refresh(role, body.refresh_token, repo)

    @router.post("/logout", response_model=MessageOut)
    async def logout(principal: Principal = Depends(current), repo=Depends(get_repo)):
        await accounts.logout(role, principal.id, repo)
        return {"message": "Logged out successfully"}

    @router.get("/me", response_model=AccountOut)
    async def me(principal: Principal = Depends(current), repo=Depends(get_repo)):
        account = await repo.get_account(role, principal.id)
        return accounts.public(role, account)

    @router.patch("/me", response_model=AccountOut)
    async def update_details(body: UpdateDetailsIn, principal: Principal = Depends(current),
                             repo=Depends(get_repo), geocode=Depends(get_geocoder)):
        updated = await accounts.update_details(role, principal.id, body.model_dump(), repo, geocode)
        return accounts.public(role, updated)

    @router.post("/change-password", response_model=MessageOut)
    async def change_password(body: ChangePasswordIn, principal: Principal = Depends(current),
                              repo=Depends(get_repo)):
        await accounts.change_password(role, principal.id, body.old_password, body.new_password, repo)
        return {"message": "Password updated successfully"}

    @router.post("/get-otp", response_model=MessageOut)
    async def get_otp(body: OtpRequestIn, repo=Depends(get_repo), mailer=Depends(get_mailer)):
        await accounts.request_otp(role, body.email, repo, mailer)
        return {"message": "OTP sent successfully"}

    @router.post("/reset-password", response_model=MessageOut)
    async def reset_password(body: ResetPasswordIn, repo=Depends(get_repo)):
        await accounts.reset_password(role, body.email, body.otp, body.new_password, repo)
        return {"message": "Password reset successfully"}

    @router.get("", response_model=List[AccountOut])
    async def list_all(repo=Depends(get_repo)):
        return [accounts.public(role, d) for d in await repo.list_accounts(role)]

    return router


donors_router = build_router("donor", "/donors", DonorRegister)
ngos_router = build_router("ngo", "/ngos", NgoRegister)


@ngos_router.get("/nearby", response_model=List[AccountOut])
async def nearby_ngos(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(10.0, gt=0, alias="radiusKm"),
    repo=Depends(get_repo),
):
    return [accounts.public("ngo", d) for d in await repo.ngos_within(lat, lng, radius_km)]
