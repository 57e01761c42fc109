from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, Header, HTTPException
from jwt import PyJWKClient

from app.core.config import settings


@dataclass
class UserContext:
    user_id: str
    email: str | None
    role: str | None
    claims: dict[str, Any]

    @property
    def is_admin(self) -> bool:
        return bool(self.role) and self.role.lower() in settings.admin_role_list


_jwks_client: PyJWKClient | None = None
_jwks_url: str | None = None


def _get_jwks_client() -> PyJWKClient:
    global _jwks_client, _jwks_url
    jwks_url = settings.jwt_jwks_url
    if not jwks_url:
        raise HTTPException(status_code=500, detail="JWT_JWKS_URL not configured.")
    if _jwks_client is None or _jwks_url != jwks_url:
        _jwks_client = PyJWKClient(jwks_url)
        _jwks_url = jwks_url
    return _jwks_client


def _resolve_signing_key(token: str) -> tuple[Any, str]:
    header = jwt.get_unverified_header(token)
    alg = header.get("alg")
    if not alg:
        raise HTTPException(status_code=401, detail="Invalid JWT header.")
    if alg.lower() == "none":
        raise HTTPException(status_code=401, detail="Invalid JWT algorithm.")
    if alg.startswith("HS"):
        if not settings.jwt_secret:
            raise HTTPException(status_code=500, detail="JWT_SECRET not configured for HS* tokens.")
        return settings.jwt_secret, alg
    jwks_client = _get_jwks_client()
    signing_key = jwks_client.get_signing_key_from_jwt(token).key
    return signing_key, alg


def verify_jwt(token: str) -> dict[str, Any]:
    try:
        signing_key, alg = _resolve_signing_key(token)
        return jwt.decode(
            token,
            signing_key,
            algorithms=[alg],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"verify_aud": bool(settings.jwt_audience), "verify_iss": bool(settings.jwt_issuer)},
        )
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid JWT.") from exc


def get_current_user(authorization: str = Header(default="")) -> UserContext:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Authorization header.")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing JWT token.")

    claims = verify_jwt(token)
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid JWT payload.")
    role = claims.get(settings.jwt_role_claim)
    return UserContext(user_id=user_id, email=claims.get("email"), role=role, claims=claims)


# 导入接口仅限管理员账号
def require_admin(user: UserContext = Depends(get_current_user)) -> UserContext:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required.")
    return user

