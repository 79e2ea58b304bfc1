from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Literal, Optional
import secrets

from fastapi import Depends, Header
from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext

from foodrelay.core.config import settings
from foodrelay.core.errors import AuthError, ForbiddenError
from foodrelay.deps import get_repo

Role = Literal["donor", "ngo"]
ROLES = ("donor", "ngo")

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password or "")

def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password or "", hashed or "")
    except ValueError:
        # empty / legacy / malformed hash
        return False

def generate_code(digits: int = 6) -> str:
    """Uniformly sampled numeric one-time code, zero padded."""
    return str(secrets.randbelow(10 ** digits)).zfill(digits)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller; downstream logic matches on ``role``."""
    id: str
    role: Role
    username: str
    email: str

    @property
    def is_ngo(self) -> bool:
        return self.role == "ngo"

    @property
    def is_donor(self) -> bool:
        return self.role == "donor"


def create_token(sub: str, role: str, kind: str = "access",
                 expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta is None:
        expires_delta = (timedelta(minutes=settings.access_ttl_min) if kind == "access"
                         else timedelta(days=settings.refresh_ttl_days))
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub, "role": role, "type": kind,
        "jti": secrets.token_hex(8),  # rotated refresh tokens must differ
        "iat": now, "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)

def decode_token(token: str, kind: str = "access") -> Dict[str, Any]:
    try:
        data = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])
    except ExpiredSignatureError:
        raise AuthError("Token expired")
    except JWTError:
        raise AuthError("Invalid token")
    if data.get("type") != kind or data.get("role") not in ROLES or not data.get("sub"):
        raise AuthError("Invalid token")
    return data


async def get_current_principal(
    authorization: str | None = Header(default=None),
    repo=Depends(get_repo),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthError("Missing token")
    data = decode_token(authorization.split(" ", 1)[1].strip())
    account = await repo.get_account(data["role"], data["sub"])
    if not account:
        raise AuthError("Invalid access token")
    return Principal(
        id=account["_id"],
        role=data["role"],
        username=account.get("username", ""),
        email=account.get("email", ""),
    )

def require_role(role: Role):
    async def checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role != role:
            raise ForbiddenError(f"Only {role} accounts can do this")
        return principal
    return checker
