"""Security utilities: password hashing, access tokens and the auth gate."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from chat_relay.db.repository import UserRepository

logger = logging.getLogger(__name__)


_pwd_context = CryptContext(
    schemes=["argon2", "pbkdf2_sha256"],
    default="argon2",
    deprecated=["pbkdf2_sha256"],
)


def hash_password(password: str) -> str:
    """Hash a plain-text password."""
    return _pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against the stored hash."""
    try:
        return _pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Unrecognized hash format
        return False


# --- Access tokens ---


class AuthenticationError(Exception):
    """Raised when a request carries no valid credential."""

    pass


class TokenService:
    """Issues and verifies signed access tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expires_minutes: int = 60,
    ) -> None:
        """
        Initialize the token service.

        Args:
            secret_key: Signing key
            algorithm: JWT signing algorithm
            expires_minutes: Token lifetime
        """
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._expires = timedelta(minutes=expires_minutes)

    def create_access_token(self, user_id: int, username: str) -> str:
        expire = datetime.now(timezone.utc) + self._expires
        claims = {"sub": str(user_id), "username": username, "exp": expire}
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def decode(self, token: str) -> dict[str, Any]:
        """
        Verify a token and return its claims.

        Raises:
            AuthenticationError: If the token is expired, tampered with or
                malformed
        """
        try:
            return jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except JWTError as e:
            raise AuthenticationError(f"Invalid token: {e}")


# --- Auth gate ---


@dataclass(frozen=True)
class AuthenticatedUser:
    """The caller behind a verified credential."""

    user_id: int
    username: str


def extract_bearer_token(authorization: str | None, query_token: str | None) -> str | None:
    """
    Pick the credential from a request.

    The Authorization header wins; the ``token`` query parameter exists
    because EventSource cannot set custom headers.
    """
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:].strip()
        if token:
            return token
    if query_token:
        return query_token.strip() or None
    return None


class AuthGate:
    """
    Validates bearer credentials against the identity store.

    A credential is accepted only if it verifies, names a user, and that
    user still exists.
    """

    def __init__(self, token_service: TokenService, users: UserRepository) -> None:
        self._tokens = token_service
        self._users = users

    def authenticate(self, credential: str | None) -> AuthenticatedUser:
        """
        Resolve a credential to a user.

        Raises:
            AuthenticationError: If the credential is missing, malformed,
                expired or refers to an unknown user
        """
        if not credential:
            raise AuthenticationError("Unauthorized: a token is required")

        claims = self._tokens.decode(credential)

        try:
            user_id = int(claims["sub"])
        except (KeyError, TypeError, ValueError):
            raise AuthenticationError("Invalid token: missing subject")

        user = self._users.find_user_by_id(user_id)
        if user is None:
            logger.warning(f"Token refers to unknown user ID {user_id}")
            raise AuthenticationError("User does not exist or has been deleted")

        return AuthenticatedUser(user_id=user.id, username=user.username)


def require_user(request: Request) -> AuthenticatedUser:
    """
    FastAPI dependency guarding the chat endpoints.

    Usage in route:
        @router.get("/chat/stream")
        async def stream(user: AuthenticatedUser = Depends(require_user)):
            ...
    """
    gate: AuthGate = request.app.state.auth_gate
    token = extract_bearer_token(
        request.headers.get("Authorization"),
        request.query_params.get("token"),
    )
    try:
        return gate.authenticate(token)
    except AuthenticationError as e:
        client_host = request.client.host if request.client else "unknown"
        logger.warning(f"Rejected credential from {client_host} on {request.url.path}: {e}")
        raise


async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    """Render AuthenticationError as a 401 response."""
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"error": str(exc)},
        headers={"WWW-Authenticate": "Bearer"},
    )
