import logging
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config.settings import settings

logger = logging.getLogger(__name__)

# Define security scheme for Swagger UI (auto_error=False allows us to handle missing tokens gracefully)
security = HTTPBearer(auto_error=False)

def _extract_token(header_val: str) -> Optional[str]:
    """Helper to strip 'Bearer ' prefix if present."""
    if not header_val:
        return None
    hv = header_val.strip()
    if hv.lower().startswith("bearer "):
        return hv.split(None, 1)[1].strip()
    return hv  # accept raw token

def decode_token(token_value: str) -> dict:
    """
    Decode an HS256 token issued by the sign-in flow into the user dict used
    by the routes: {user_id, name, email, role}.
    """
    payload = jwt.decode(token_value, settings.JWT_SECRET, algorithms=["HS256"])
    return {
        "user_id": payload.get("sub"),
        "name": payload.get("name"),
        "email": payload.get("email"),
        "role": payload.get("role", "user"),
    }

async def get_current_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(security),
    authorization: Optional[str] = Header(None),
):
    """
    Async JWT auth dependency.
    Accepts the token from the bearer scheme, the raw Authorization header, or ?token=.
    """
    token_value = None

    if creds and creds.credentials:
        token_value = creds.credentials

    if not token_value and authorization:
        token_value = _extract_token(authorization)

    if not token_value:
        token_value = request.query_params.get("token")

    if not token_value:
        logger.warning("Authentication failed: no token found in headers or query.")
        raise HTTPException(status_code=401, detail="Missing Authorization token")

    try:
        user = decode_token(token_value)
    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning("Token decode error: %s", e)
        raise HTTPException(status_code=401, detail="Invalid token")

    if not user["user_id"]:
        raise HTTPException(status_code=401, detail="Token has no subject")
    request.state.user = user
    return user

async def require_admin(user: dict = Depends(get_current_user)):
    """Admin-only endpoints (manual reminder trigger, order summary)."""
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin role required")
    return user
