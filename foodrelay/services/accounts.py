# foodrelay/services/accounts.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from foodrelay.core.config import settings
from foodrelay.core.errors import AuthError, DispatchError, NotFoundError, ValidationError
from foodrelay.core.security import (
    create_token, decode_token, generate_code, hash_password, verify_password,
)
from foodrelay.services.geo import ensure_location_and_geo

log = logging.getLogger(__name__)

PRIVATE_FIELDS = ("password_hash", "refresh_token", "geo", "_geocode_error")

def _utcnow():
    return datetime.now(timezone.utc)

def _as_utc(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)

def public(role: str, doc: dict) -> dict:
    out = {k: v for k, v in doc.items() if k not in PRIVATE_FIELDS and k != "_id"}
    out["id"] = doc["_id"]
    out["role"] = role
    return out


async def register(role: str, payload: dict, repo, geocode) -> dict:
    doc = dict(payload)
    doc["username"] = doc["username"].strip().lower()
    doc["email"] = str(doc["email"]).strip().lower()
    if not doc["username"]:
        raise ValidationError("Required fields are missing")
    doc["password_hash"] = hash_password(doc.pop("password"))
    doc["created_at"] = _utcnow()
    doc = await ensure_location_and_geo(doc, geocode)
    if doc.get("_geocode_error"):
        log.warning("%s %s registered without a location: %s", role, doc["username"], doc["_geocode_error"])
    created = await repo.create_account(role, doc)
    log.info("%s registered: %s", role, created["username"])
    return created

async def _issue_tokens(role: str, account: dict, repo) -> dict:
    access = create_token(account["_id"], role, "access")
    refresh = create_token(account["_id"], role, "refresh")
    await repo.update_account(role, account["_id"], {"refresh_token": refresh})
    return {"access_token": access, "refresh_token": refresh, "account": public(role, account)}

async def login(role: str, username: Optional[str], email: Optional[str], password: str, repo) -> dict:
    username = (username or "").strip().lower() or None
    email = (email or "").strip().lower() or None
    if not username and not email:
        raise ValidationError("Username or email is required")
    account = await repo.find_account(role, username=username, email=email)
    if not account or not verify_password(password, account.get("password_hash", "")):
        raise AuthError("Invalid credentials")
    return await _issue_tokens(role, account, repo)

async def refresh(role: str, token: str, repo) -> dict:
    data = decode_token(token, kind="refresh")
    if data["role"] != role:
        raise AuthError("Invalid refresh token")
    account = await repo.get_account(role, data["sub"])
    if not account or account.get("refresh_token") != token:
        raise AuthError("Refresh token is expired or used")
    return await _issue_tokens(role, account, repo)

async def logout(role: str, account_id: str, repo) -> None:
    await repo.update_account(role, account_id, {"refresh_token": None})

async def update_details(role: str, account_id: str, fields: dict, repo, geocode) -> dict:
    fields = {k: v for k, v in fields.items() if v is not None}
    if not fields:
        raise ValidationError("Nothing to update")
    if "email" in fields:
        fields["email"] = str(fields["email"]).strip().lower()
    if "address" in fields or "location" in fields:
        current = await repo.get_account(role, account_id) or {}
        loc_doc = {"address": fields.get("address", current.get("address")), "location": fields.get("location")}
        loc_doc = await ensure_location_and_geo(loc_doc, geocode)
        fields["location"] = loc_doc["location"]
        # None drops the stored point so geo queries stop matching the old spot
        fields["geo"] = loc_doc.get("geo")
    updated = await repo.update_account(role, account_id, fields)
    if not updated:
        raise NotFoundError("Account not found")
    return updated

async def change_password(role: str, account_id: str, old: str, new: str, repo) -> None:
    account = await repo.get_account(role, account_id)
    if not account or not verify_password(old, account.get("password_hash", "")):
        raise ValidationError("Invalid old password")
    await repo.update_account(role, account_id, {"password_hash": hash_password(new)})


async def request_otp(role: str, email: str, repo, mailer) -> None:
    email = email.strip().lower()
    account = await repo.find_account(role, email=email)
    if not account:
        raise NotFoundError("Account not found")
    otp = generate_code()
    expires = _utcnow() + timedelta(minutes=settings.otp_ttl_min)
    await repo.put_reset(role, email, hash_password(otp), expires)
    try:
        await mailer.send(email, "Password Reset OTP", f"Your OTP to reset the password is: {otp}")
    except DispatchError:
        await repo.delete_reset(role, email)
        raise DispatchError("Failed to send OTP")

async def reset_password(role: str, email: str, otp: str, new_password: str, repo) -> None:
    email = email.strip().lower()
    pending = await repo.get_reset(role, email)
    if not pending or _as_utc(pending["expires_at"]) < _utcnow():
        raise ValidationError("OTP is invalid or expired")
    if not verify_password(otp.strip(), pending["code_hash"]):
        raise ValidationError("OTP is invalid or expired")
    account = await repo.find_account(role, email=email)
    if not account:
        raise NotFoundError("Account not found")
    await repo.update_account(role, account["_id"], {"password_hash": hash_password(new_password), "refresh_token": None})
    await repo.delete_reset(role, email)
