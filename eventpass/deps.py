from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from .container import Services
from .domain import UserSummary
from .errors import AuthenticationFailed, NotAuthorized
from .security import read_session_token

# Clients send "Authorization: Bearer <token>" obtained from /auth/login
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user(
    token: str = Depends(oauth2_scheme),
    services: Services = Depends(get_services),
) -> UserSummary:
    settings = services.settings
    user_id = read_session_token(token, settings.SESSION_SECRET, settings.SESSION_ALGORITHM)
    if user_id is None:
        raise AuthenticationFailed("Invalid or expired token")

    user = services.users.find_user(user_id)
    if user is None:
        raise AuthenticationFailed("User not found")
    return user


def require_admin(user: UserSummary = Depends(get_current_user)) -> UserSummary:
    if not user.is_admin:
        raise NotAuthorized("Admin access required")
    return user
