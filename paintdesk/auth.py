# paintdesk/auth.py
import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Config, get_config

logger = logging.getLogger(__name__)

SESSION_COOKIE = "sb-access-token"

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Unauthorized") -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> str:
    if credentials and credentials.scheme.lower() == "bearer" and credentials.credentials:
        return credentials.credentials
    cookie = request.cookies.get(SESSION_COOKIE)
    if cookie:
        return cookie
    raise _unauthorized()


def _decode_hs256(token: str, config: Config) -> Dict[str, Any]:
    try:
        claims = jwt.decode(
            token,
            config.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},
            issuer=f"{config.SUPABASE_URL}/auth/v1",
        )
    except JWTError as e:
        logger.info("Rejected session token: %s", e)
        raise _unauthorized()
    sub = claims.get("sub")
    if not sub:
        raise _unauthorized()
    return {"id": sub, "email": claims.get("email")}


async def _fetch_user_from_supabase(token: str, config: Config) -> Dict[str, Any]:
    """Fallback: ask Supabase who this token belongs to."""
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.get(
                f"{config.SUPABASE_URL}/auth/v1/user",
                headers={
                    "Authorization": f"Bearer {token}",
                    "apikey": config.SUPABASE_ANON_KEY or token,
                },
            )
    except httpx.HTTPError as e:
        logger.error("Supabase auth lookup failed: %s", e)
        raise HTTPException(status_code=503, detail="Auth service unavailable")

    if resp.status_code != 200:
        raise _unauthorized()
    user = resp.json()
    if not user.get("id"):
        raise _unauthorized()
    return {"id": user["id"], "email": user.get("email")}


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    """
    Resolve the caller from a Supabase access token.

    Accepts `Authorization: Bearer <jwt>` or the session cookie. HS256 tokens
    are verified locally when SUPABASE_JWT_SECRET is set; anything else is
    checked against the Supabase auth API.
    """
    token = _extract_token(request, credentials)

    try:
        alg = jwt.get_unverified_header(token).get("alg", "")
    except JWTError:
        raise _unauthorized()

    if alg.upper() == "HS256" and config.SUPABASE_JWT_SECRET:
        return _decode_hs256(token, config)
    return await _fetch_user_from_supabase(token, config)
