"""Security utilities: token verification, token issuing, hashing."""

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import jwt
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Firebase Admin SDK (lazy initialization)
_firebase_app = None


def get_firebase_app():
    """Get or initialize Firebase Admin SDK."""
    global _firebase_app

    if not settings.firebase_enabled:
        return None

    if _firebase_app is None:
        try:
            import firebase_admin
            from firebase_admin import credentials

            # The private key may arrive with escaped newlines
            private_key = settings.firebase_private_key
            if private_key:
                private_key = private_key.replace("\\n", "\n")

            cred = credentials.Certificate({
                "type": "service_account",
                "project_id": settings.firebase_project_id,
                "client_email": settings.firebase_client_email,
                "private_key": private_key,
                "token_uri": "https://oauth2.googleapis.com/token",
            })
            _firebase_app = firebase_admin.initialize_app(cred)
            logger.info(f"Firebase Admin SDK initialized for project: {settings.firebase_project_id}")
        except Exception as e:
            logger.error(f"Failed to initialize Firebase Admin SDK: {e}")
            return None

    return _firebase_app


# JWT Token handling
class TokenPayload(BaseModel):
    """Legacy JWT token payload."""

    sub: str  # User ID
    exp: datetime
    iat: datetime
    type: str = "access"


def create_access_token(
    user_id: UUID,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    payload = {
        "sub": str(user_id),
        "exp": expire,
        "iat": now,
        "type": "access",
    }

    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate a JWT token (legacy HS256)."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


class FirebaseTokenPayload(BaseModel):
    """Verified Firebase identity."""

    uid: str
    email: str | None = None
    email_verified: bool = False
    name: str | None = None


def _verify_with_firebase(token: str, session_cookie: bool) -> FirebaseTokenPayload | None:
    app = get_firebase_app()

    if not app:
        return None

    try:
        from firebase_admin import auth

        if session_cookie:
            decoded = auth.verify_session_cookie(token, check_revoked=True)
        else:
            decoded = auth.verify_id_token(token)

        return FirebaseTokenPayload(
            uid=decoded["uid"],
            email=decoded.get("email"),
            email_verified=decoded.get("email_verified", False),
            name=decoded.get("name"),
        )
    except Exception as e:
        logger.warning(f"Firebase credential verification failed: {e}")
        return None


def decode_firebase_token(token: str) -> FirebaseTokenPayload | None:
    """Decode and validate a Firebase ID token."""
    return _verify_with_firebase(token, session_cookie=False)


def decode_firebase_session_cookie(cookie: str) -> FirebaseTokenPayload | None:
    """Decode and validate a Firebase session cookie."""
    return _verify_with_firebase(cookie, session_cookie=True)


def hash_content(content: str) -> str:
    """Create SHA-256 hex digest of content."""
    return hashlib.sha256(content.encode()).hexdigest()


def generate_tracking_code() -> str:
    """Generate the 12 character code handed to anonymous submitters."""
    return uuid4().hex[:12].upper()
