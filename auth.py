# link-analytics-service/auth.py
"""
Password login with opaque session tokens.

Tokens are random strings kept in Redis with a TTL:
    auth:access:{token}  -> user id   (ACCESS_TOKEN_TTL)
    auth:refresh:{token} -> user id   (REFRESH_TOKEN_TTL)
Both are handed to the browser as HttpOnly cookies. API clients may send the
access token as `Authorization: Bearer <token>` instead.
"""
import logging
import secrets
from typing import Optional, Tuple

import redis
from beanie import PydanticObjectId
from bson import ObjectId
from cache import get_redis_db
from config import get_settings
from exceptions import AuthenticationError, InvalidInputError
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from messaging import authorize_channel
from models import User
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError
from schemas import ChannelAuthRequest, LoginRequest, RegisterRequest, UserOut

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
ACCESS_PREFIX = "auth:access:"
REFRESH_PREFIX = "auth:refresh:"

router = APIRouter(prefix="/v1/auth", tags=["Auth"])
broadcasting_router = APIRouter(tags=["Broadcasting"])


def issue_tokens(redis_client: redis.Redis, user_id) -> Tuple[str, str]:
    settings = get_settings()
    access_token = secrets.token_urlsafe(32)
    refresh_token = secrets.token_urlsafe(48)
    redis_client.set(ACCESS_PREFIX + access_token, str(user_id), ex=settings.access_token_ttl)
    redis_client.set(REFRESH_PREFIX + refresh_token, str(user_id), ex=settings.refresh_token_ttl)
    return access_token, refresh_token


def revoke_tokens(
    redis_client: redis.Redis, access_token: Optional[str], refresh_token: Optional[str]
) -> None:
    keys = []
    if access_token:
        keys.append(ACCESS_PREFIX + access_token)
    if refresh_token:
        keys.append(REFRESH_PREFIX + refresh_token)
    if keys:
        redis_client.delete(*keys)


def set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=settings.access_token_ttl,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        max_age=settings.refresh_token_ttl,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)


def extract_access_token(request: Request) -> Optional[str]:
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


async def _load_user(user_id: Optional[str]) -> Optional[User]:
    if not user_id or not ObjectId.is_valid(user_id):
        return None
    return await User.get(PydanticObjectId(user_id))


async def get_current_user(
    request: Request, redis_client: redis.Redis = Depends(get_redis_db)
) -> User:
    """
    Dependency resolving the authenticated user from the access token.
    """
    token = extract_access_token(request)
    if not token:
        raise AuthenticationError("Token not provided")

    user = await _load_user(redis_client.get(ACCESS_PREFIX + token))
    if user is None:
        raise AuthenticationError()

    # Picked up by the error handlers for log context.
    request.state.user_id = str(user.id)
    return user


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest):
    email = payload.email.strip().lower()
    if await User.find_one(User.email == email):
        raise InvalidInputError("The email has already been taken.")

    user = User(
        name=payload.name,
        email=email,
        hashed_password=pwd_context.hash(payload.password),
    )
    try:
        await user.insert()
    except DuplicateKeyError:
        # Lost a race with a concurrent registration for the same email.
        raise InvalidInputError("The email has already been taken.")
    logger.info("User registered", extra={"user_id": str(user.id)})
    return {
        "status": "success",
        "data": UserOut.from_document(user).model_dump(mode="json"),
        "message": "Registration successful.",
    }


@router.post("/login")
async def login(
    payload: LoginRequest,
    response: Response,
    redis_client: redis.Redis = Depends(get_redis_db),
):
    user = await User.find_one(User.email == payload.email.strip().lower())
    if user is None or not pwd_context.verify(payload.password, user.hashed_password):
        raise AuthenticationError("Invalid credentials")

    access_token, refresh_token = issue_tokens(redis_client, user.id)
    set_auth_cookies(response, access_token, refresh_token)
    logger.info("User logged in", extra={"user_id": str(user.id)})
    return {
        "status": "success",
        "data": UserOut.from_document(user).model_dump(mode="json"),
        "message": "Login successful.",
    }


@router.post("/refresh")
async def refresh(
    request: Request,
    response: Response,
    redis_client: redis.Redis = Depends(get_redis_db),
):
    refresh_token = request.cookies.get(REFRESH_COOKIE)
    if not refresh_token:
        raise AuthenticationError("Refresh token not provided")

    user = await _load_user(redis_client.get(REFRESH_PREFIX + refresh_token))
    if user is None:
        raise AuthenticationError()

    # Rotate: the old pair stops working immediately.
    revoke_tokens(redis_client, request.cookies.get(ACCESS_COOKIE), refresh_token)
    access_token, new_refresh_token = issue_tokens(redis_client, user.id)
    set_auth_cookies(response, access_token, new_refresh_token)
    return {"status": "success", "message": "Token refreshed."}


@router.post("/logout")
async def logout(
    request: Request,
    redis_client: redis.Redis = Depends(get_redis_db),
):
    revoke_tokens(
        redis_client,
        extract_access_token(request),
        request.cookies.get(REFRESH_COOKIE),
    )
    response = JSONResponse({"status": "success", "message": "Logged out."})
    clear_auth_cookies(response)
    return response


@router.get("/profile")
async def profile(user: User = Depends(get_current_user)):
    return {"status": "success", "data": UserOut.from_document(user).model_dump(mode="json")}


@broadcasting_router.post("/broadcasting/auth")
async def broadcasting_auth(
    payload: ChannelAuthRequest, user: User = Depends(get_current_user)
):
    """
    Subscription check for the per-user click channels.
    """
    if not authorize_channel(user.id, payload.channel_name):
        logger.warning(
            "Channel subscription denied",
            extra={"user_id": str(user.id), "channel": payload.channel_name},
        )
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"status": "error", "message": "Forbidden"},
        )
    return {"status": "success", "channel": payload.channel_name}
