from dataclasses import dataclass

from jose import jwt

from dashboard_api.core.config import get_settings


@dataclass(frozen=True)
class SessionUser:
    user_id: str
    email: str | None = None
    role: str | None = None


ANONYMOUS = SessionUser(user_id="anonymous", role="anon")


def decode_access_token(token: str) -> dict:
    # Supabase signs access tokens with the project JWT secret.
    settings = get_settings()
    return jwt.decode(
        token,
        settings.SUPABASE_JWT_SECRET,
        algorithms=[settings.SUPABASE_JWT_ALGORITHM],
        audience=settings.SUPABASE_JWT_AUDIENCE,
    )


def session_user_from_claims(claims: dict) -> SessionUser:
    return SessionUser(
        user_id=str(claims.get("sub") or ""),
        email=claims.get("email"),
        role=claims.get("role"),
    )
