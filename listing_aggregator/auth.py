# listing_aggregator/auth.py
"""Bearer-token authentication.

Session tokens are issued by the identity provider (Clerk) and verified
with its RS256 public key. For local development an HS256 shared secret
(`AUTH_JWT_SECRET`) is accepted instead. The user id is the `sub` claim.
"""
import jwt
from fastapi import Header, HTTPException

from . import config


def decode_token(token: str) -> dict:
    if config.CLERK_JWT_PUBLIC_KEY:
        return jwt.decode(token, config.CLERK_JWT_PUBLIC_KEY, algorithms=["RS256"])
    if config.AUTH_JWT_SECRET:
        return jwt.decode(token, config.AUTH_JWT_SECRET, algorithms=["HS256"])
    raise jwt.InvalidTokenError("No token verification key configured")


def get_current_user_id(authorization: str = Header(None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        payload = decode_token(authorization.split(" ", 1)[1].strip())
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id
