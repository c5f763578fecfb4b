import json
import hashlib
from typing import Optional

import redis.asyncio as aioredis  # redis>=5.x includes async support
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from keyscope.config import get_settings
from keyscope.schemas import KeywordType
from keyscope.services.rate_limit import TokenBucketLimiter

settings = get_settings()

# ─── JWT ───
# Tokens are issued by the auth service; this API only verifies them.
security = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


async def get_token_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[dict]:
    """Claims of the bearer token, or None for anonymous visitors."""
    if credentials is None:
        return None
    return decode_token(credentials.credentials)


def require_role(*roles: str):
    """Dependency factory for role-based access control."""
    async def _check(claims: Optional[dict] = Depends(get_token_claims)):
        if claims is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        if claims.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return claims
    return _check


# ─── Redis Cache ───
_redis_client: Optional[aioredis.Redis] = None


async def get_redis() -> aioredis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def cache_key(prefix: str, **kwargs) -> str:
    raw = json.dumps(kwargs, sort_keys=True, default=str)
    h = hashlib.md5(raw.encode()).hexdigest()
    return f"keyscope:{prefix}:{h}"


async def get_cached(key: str, redis: aioredis.Redis) -> Optional[str]:
    return await redis.get(key)


async def set_cached(key: str, value: str, ttl_seconds: int, redis: aioredis.Redis):
    await redis.set(key, value, ex=ttl_seconds)


# Part of every category cache key; bumped on each upload and delete
CATALOG_VERSION_KEY = "keyscope:catalog:version"


async def catalog_version(redis: aioredis.Redis) -> str:
    return await redis.get(CATALOG_VERSION_KEY) or "0"


async def bump_catalog_version(redis: aioredis.Redis) -> None:
    await redis.incr(CATALOG_VERSION_KEY)


# ─── Rate Limiting ───
def client_identifier(request: Request, claims: Optional[dict]) -> str:
    if claims and claims.get("sub"):
        return f"user:{claims['sub']}"
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return f"ip:{forwarded_for.split(',')[0].strip()}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


async def check_rate_limit(request: Request, claims: Optional[dict] = Depends(get_token_claims)):
    limiter: TokenBucketLimiter = request.app.state.rate_limiter
    limit = settings.RATE_LIMIT_FREE
    if claims and claims.get("role") == "admin":
        limit = settings.RATE_LIMIT_ADMIN

    result = await limiter.check(client_identifier(request, claims), limit)
    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded",
            headers={"Retry-After": str(result.retry_after)},
        )
    return claims


# ─── Path parameters ───
def parse_keyword_type(value: str) -> KeywordType:
    try:
        return KeywordType(value.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown keyword type: {value}. Use regular, hpk or rk")
