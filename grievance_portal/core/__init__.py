"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    engine,
    get_session,
    init_db,
)
from .dependencies import (
    AdminDep,
    CurrentUser,
    CurrentUserDep,
    MemberDep,
    OptionalUserDep,
    SessionDep,
    get_current_user,
    get_current_user_optional,
    require_admin,
    require_roles,
    resolve_credential,
)
from .security import (
    create_access_token,
    decode_token,
    generate_tracking_code,
    hash_content,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "get_session",
    "init_db",
    "close_db",
    # Dependencies
    "CurrentUser",
    "get_current_user",
    "get_current_user_optional",
    "resolve_credential",
    "require_roles",
    "require_admin",
    "CurrentUserDep",
    "MemberDep",
    "AdminDep",
    "OptionalUserDep",
    "SessionDep",
    # Security
    "create_access_token",
    "decode_token",
    "hash_content",
    "generate_tracking_code",
]
