from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from dashboard_api.core.config import Settings, get_settings
from dashboard_api.core.security import ANONYMOUS, SessionUser, decode_access_token, session_user_from_claims
from dashboard_api.services.dashboard import DashboardPipeline

bearer_scheme = HTTPBearer(auto_error=False)


def get_session_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> SessionUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )
    if credentials is None:
        if settings.REQUIRE_AUTH:
            raise credentials_exception
        return ANONYMOUS

    try:
        claims = decode_access_token(credentials.credentials)
    except JWTError:
        if settings.REQUIRE_AUTH:
            raise credentials_exception
        return ANONYMOUS

    user = session_user_from_claims(claims)
    if not user.user_id:
        raise credentials_exception
    return user


def get_pipeline(settings: Settings = Depends(get_settings)) -> DashboardPipeline:
    return DashboardPipeline(settings)
