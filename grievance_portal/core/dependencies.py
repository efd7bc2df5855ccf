"""FastAPI dependencies for authentication and authorization."""

import logging
from collections.abc import Callable
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import User, UserRole
from .config import get_settings
from .database import get_session
from .security import (
    FirebaseTokenPayload,
    decode_firebase_session_cookie,
    decode_firebase_token,
    decode_token,
)

logger = logging.getLogger(__name__)
settings = get_settings()

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser:
    """Represents the authenticated user context."""

    def __init__(self, user: User):
        self.user = user

    @property
    def id(self) -> UUID:
        return self.user.id

    @property
    def role(self) -> UserRole:
        return self.user.role

    @property
    def anonymous(self) -> bool:
        return self.user.anonymous

    @property
    def is_admin(self) -> bool:
        return self.user.role == UserRole.ADMIN


def _unauthenticated(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _profile_not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="User profile not found",
    )


async def _load_firebase_user(
    session: AsyncSession,
    firebase_payload: FirebaseTokenPayload,
) -> User | None:
    result = await session.execute(
        select(User).where(
            User.auth_provider == "firebase",
            User.auth_provider_id == firebase_payload.uid,
        )
    )
    return result.scalar_one_or_none()


async def resolve_credential(
    session: AsyncSession,
    token: str,
    from_cookie: bool = False,
) -> CurrentUser:
    """Resolve an opaque credential to a stored user profile.

    Firebase is tried first when configured (session cookie or ID token),
    then the legacy HS256 token. Raises 401 for an invalid credential and
    403 when the credential is valid but no profile exists.
    """
    if settings.firebase_enabled:
        if from_cookie:
            firebase_payload = decode_firebase_session_cookie(token)
        else:
            firebase_payload = decode_firebase_token(token)
        if firebase_payload:
            user = await _load_firebase_user(session, firebase_payload)
            if not user:
                logger.warning(f"No profile for Firebase uid {firebase_payload.uid}")
                raise _profile_not_found()
            return CurrentUser(user=user)

    payload = decode_token(token)
    if not payload:
        raise _unauthenticated("Invalid or expired credential")

    if payload.type != "access":
        raise _unauthenticated("Invalid token type")

    try:
        user_id = UUID(payload.sub)
    except ValueError:
        raise _unauthenticated("Invalid token subject")

    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise _profile_not_found()

    return CurrentUser(user=user)


def _extract_credential(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None,
) -> tuple[str | None, bool]:
    if credentials:
        return credentials.credentials, False
    cookie = request.cookies.get(settings.session_cookie_name)
    if cookie:
        return cookie, True
    return None, False


async def get_current_user(
    request: Request,
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentUser:
    """Dependency to get the current authenticated user.

    Accepts a bearer token or the session cookie.
    """
    token, from_cookie = _extract_credential(request, credentials)
    if not token:
        raise _unauthenticated("Not authenticated")

    return await resolve_credential(session, token, from_cookie=from_cookie)


async def get_current_user_optional(
    request: Request,
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentUser | None:
    """Optional authentication - returns None if no valid credential is presented."""
    token, from_cookie = _extract_credential(request, credentials)
    if not token:
        return None

    try:
        return await resolve_credential(session, token, from_cookie=from_cookie)
    except HTTPException as e:
        if e.status_code == status.HTTP_401_UNAUTHORIZED:
            return None
        raise


def require_roles(
    *roles: UserRole,
    allow_anonymous_user: bool = False,
) -> Callable[..., CurrentUser]:
    """Build a dependency that admits only the given roles.

    No roles means any authenticated user. Users flagged anonymous are
    refused unless the route opts in.
    """

    def dependency(
        current_user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        if current_user.anonymous and not allow_anonymous_user:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Anonymous users are not allowed to perform this action",
            )
        if roles and current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Forbidden",
            )
        return current_user

    return dependency


require_admin = require_roles(UserRole.ADMIN)


# Type aliases for cleaner dependency injection
CurrentUserDep = Annotated[CurrentUser, Depends(require_roles(allow_anonymous_user=True))]
MemberDep = Annotated[CurrentUser, Depends(require_roles())]
AdminDep = Annotated[CurrentUser, Depends(require_admin)]
OptionalUserDep = Annotated[CurrentUser | None, Depends(get_current_user_optional)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
