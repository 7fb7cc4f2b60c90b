"""Registration and login routes. These are not behind the auth gate."""

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError

from chat_relay.config import Settings
from chat_relay.db.repository import UserRepository
from chat_relay.security import TokenService, hash_password, verify_password

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    username: str | None = None
    password: str | None = None
    email: str | None = None


class LoginRequest(BaseModel):
    username: str | None = None
    password: str | None = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, request: Request):
    """Create an account."""
    settings: Settings = request.app.state.settings
    users: UserRepository = request.app.state.users

    if not body.username or not body.password:
        return _error(status.HTTP_400_BAD_REQUEST, "Username and password are required")

    if not settings.username_min_length <= len(body.username) <= settings.username_max_length:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            f"Username must be between {settings.username_min_length} and "
            f"{settings.username_max_length} characters",
        )

    if len(body.password) < settings.password_min_length:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            f"Password must be at least {settings.password_min_length} characters",
        )

    if users.find_user_by_username(body.username):
        return _error(status.HTTP_409_CONFLICT, "Username already exists")

    try:
        user = users.create_user(body.username, hash_password(body.password), body.email or None)
    except IntegrityError:
        # Lost a race with a concurrent registration
        return _error(status.HTTP_409_CONFLICT, "Username already exists")

    logger.info(f"Registered user {user.username} (ID: {user.id})")
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"message": "User registered", "user": user.to_public_dict()},
    )


@router.post("/login")
def login(body: LoginRequest, request: Request):
    """Exchange a username and password for an access token."""
    users: UserRepository = request.app.state.users
    tokens: TokenService = request.app.state.token_service

    if not body.username or not body.password:
        logger.warning("Login failed: missing username or password")
        return _error(status.HTTP_400_BAD_REQUEST, "Username and password are required")

    user = users.find_user_by_username(body.username)
    if user is None or not verify_password(body.password, user.password_hash):
        logger.warning(f"Login failed for username {body.username}")
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid username or password")

    token = tokens.create_access_token(user.id, user.username)
    logger.info(f"User {user.username} logged in (ID: {user.id})")
    return {"token": token, "user": user.to_public_dict()}
